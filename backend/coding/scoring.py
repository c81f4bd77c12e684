from __future__ import annotations

"""
Session score from aggregate tag counts.

Child-directed sessions use a shield score: up to 40 points of shield built
from capped praise, echo and narration on top of a base of 60, with each
question, command or criticism knocking points off. Parent-directed
sessions score the share of direct commands among all commands.
"""

import math
from dataclasses import dataclass

from backend.internal_core.contracts import InteractionMode, TagCounts

BASE_SCORE = 60
MAX_SHIELD_POINTS = 40
SKILL_POINTS_FOR_MAX_SHIELD = 30
SKILL_TARGET = 10
MAX_DONTS = 3
PASS_CAP = 100
FAIL_CAP = 89
PARENT_DIRECTED_PASS_PCT = 75


@dataclass(frozen=True)
class SessionScore:
    score: int
    passed: bool


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def child_directed_score(counts: TagCounts) -> SessionScore:
    praise = min(counts.praise, SKILL_TARGET)
    echo = min(counts.echo, SKILL_TARGET)
    narration = min(counts.narration, SKILL_TARGET)
    negatives = counts.question + counts.command + counts.criticism

    shield = (praise + echo + narration) * (MAX_SHIELD_POINTS / SKILL_POINTS_FOR_MAX_SHIELD)
    damage_per_hit = SKILL_TARGET / 3
    hits_to_break = shield / damage_per_hit

    if negatives <= hits_to_break:
        raw = BASE_SCORE + shield - negatives * damage_per_hit
    else:
        # Shield broken: back to base, one point per remaining negative.
        raw = BASE_SCORE - (negatives - hits_to_break)

    passed = (
        counts.praise >= SKILL_TARGET
        and counts.echo >= SKILL_TARGET
        and counts.narration >= SKILL_TARGET
        and negatives <= MAX_DONTS
    )
    raw = min(raw, PASS_CAP if passed else FAIL_CAP)
    return SessionScore(score=_round_half_up(max(0.0, raw)), passed=passed)


def parent_directed_score(counts: TagCounts) -> SessionScore:
    total = counts.direct_command + counts.indirect_command
    score = _round_half_up(counts.direct_command / total * 100) if total else 0
    return SessionScore(score=score, passed=score >= PARENT_DIRECTED_PASS_PCT)


def calculate_overall_score(counts: TagCounts, mode: InteractionMode) -> SessionScore:
    if mode == "child_directed":
        return child_directed_score(counts)
    return parent_directed_score(counts)
