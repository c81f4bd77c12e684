from __future__ import annotations

"""
Detect milestone evidence in a profiled session and advance child records.

Design intent:
- Detection is one reasoning call; the state transition is a pure function.
- Transitions are applied inside a single locked store call, so concurrent
  sessions for the same child never lose an evidence increment.
- Status never moves backwards and one session counts once per milestone.
"""

import logging
import time
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from backend.coding.prompts import milestone_detection_prompt
from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import (
    ChildMilestoneRecord,
    ChildRecord,
    DevelopmentalProfile,
    MilestoneDefinition,
    MilestoneDelta,
    MilestoneOutcome,
)
from backend.internal_core.providers.base import ProviderError, ReasoningProvider
from backend.internal_core.session_store import InMemorySessionStore
from backend.milestones.library import MilestoneLibrary

logger = logging.getLogger(__name__)


class MilestoneDetectionError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def advance_milestone(
    record: Optional[ChildMilestoneRecord],
    definition: MilestoneDefinition,
    *,
    child_id: str,
    session_id: str,
    baseline: bool = False,
    now: Optional[float] = None,
) -> tuple[Optional[ChildMilestoneRecord], MilestoneOutcome]:
    """Apply one session's evidence to a (child, milestone) record.

    Returns the new record (None when nothing changes) and the outcome.
    ``baseline`` marks an age-eligible claim on the child's first profiling.
    """
    ts = time.time() if now is None else now

    if record is None:
        status = "ACHIEVED" if baseline else "EMERGING"
        created = ChildMilestoneRecord(
            child_id=child_id,
            milestone_key=definition.key,
            status=status,
            evidence_count=1,
            evidence_session_ids=[session_id],
            first_observed_at=ts,
            achieved_at=ts if baseline else None,
        )
        return created, ("created_achieved" if baseline else "created_emerging")

    if record.status == "ACHIEVED":
        return None, "unchanged"

    if session_id in record.evidence_session_ids:
        if baseline:
            # Detected and baseline-claimed in the same first session.
            return record.model_copy(update={"status": "ACHIEVED", "achieved_at": ts}), "promoted"
        return None, "unchanged"

    count = record.evidence_count + 1
    sessions = [*record.evidence_session_ids, session_id]
    if count > definition.threshold:
        return (
            record.model_copy(
                update={
                    "status": "ACHIEVED",
                    "evidence_count": count,
                    "evidence_session_ids": sessions,
                    "achieved_at": ts,
                }
            ),
            "promoted",
        )
    return (
        record.model_copy(update={"evidence_count": count, "evidence_session_ids": sessions}),
        "incremented",
    )


def baseline_eligible(
    definition: MilestoneDefinition, age_months: Optional[int], *, margin_months: int = 0
) -> bool:
    if age_months is None:
        return False
    return definition.mastery_age_months + margin_months <= age_months


def _milestone_keys(
    items: Any, library: MilestoneLibrary, field_name: str, session_id: str
) -> list[str]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise MilestoneDetectionError("invalid_reply", f"{field_name} must be a list.")
    keys: list[str] = []
    for item in items:
        key = item.get("milestone_key") if isinstance(item, Mapping) else item
        key = str(key or "").strip()
        if key not in library:
            logger.warning(
                "unknown milestone key skipped session_id=%s field=%s key=%s", session_id, field_name, key
            )
            continue
        if key not in keys:
            keys.append(key)
    return keys


def build_detection_context(
    profile: DevelopmentalProfile,
    library: MilestoneLibrary,
    existing: Sequence[ChildMilestoneRecord],
    age_months: Optional[int],
    first_profiling: bool,
) -> dict[str, Any]:
    return {
        "child_age_months": age_months,
        "first_profiling": first_profiling,
        "profile": profile.model_dump(),
        "library_keys": library.keys(),
        "library": [
            {
                "key": d.key,
                "category": d.category,
                "stage": d.grouping_stage,
                "title": d.display_title,
                "median_age_months": d.median_age_months,
            }
            for d in library.definitions()
        ],
        "already_achieved": [r.milestone_key for r in existing if r.status == "ACHIEVED"],
    }


async def detect_and_apply_milestones(
    reasoning: ReasoningProvider,
    store: InMemorySessionStore,
    session_id: str,
    child: ChildRecord,
    profile: DevelopmentalProfile,
    library: MilestoneLibrary,
    cfg: PipelineConfig,
    *,
    first_profiling: bool,
    today: Optional[date] = None,
) -> list[MilestoneDelta]:
    age_months = child.context.resolved_age_months(today)
    existing = store.list_child_milestones(child.child_id)
    context = build_detection_context(profile, library, existing, age_months, first_profiling)
    prompt = milestone_detection_prompt(context, include_baseline=first_profiling)
    try:
        payload = await reasoning.generate(
            prompt,
            temperature=cfg.PLAYCOACH_MILESTONE_TEMPERATURE,
            max_tokens=cfg.PLAYCOACH_LLM_MAX_TOKENS,
        )
    except ProviderError as exc:
        raise MilestoneDetectionError(exc.code, exc.message) from exc

    detected = _milestone_keys(payload.get("detected_milestones"), library, "detected_milestones", session_id)
    claimed = (
        _milestone_keys(payload.get("baseline_achieved"), library, "baseline_achieved", session_id)
        if first_profiling
        else []
    )

    margin = cfg.PLAYCOACH_BASELINE_MARGIN_MONTHS
    baseline_keys = {k for k in claimed if baseline_eligible(library.get(k), age_months, margin_months=margin)}
    # Claims the child is too young for count as ordinary evidence.
    evidence_keys = detected + [k for k in claimed if k not in baseline_keys and k not in detected]
    all_keys = evidence_keys + [k for k in claimed if k in baseline_keys and k not in evidence_keys]

    now = time.time()

    def _updater(key: str):
        definition = library.get(key)

        def _apply(
            record: Optional[ChildMilestoneRecord],
        ) -> tuple[Optional[ChildMilestoneRecord], Optional[MilestoneDelta]]:
            updated, outcome = advance_milestone(
                record,
                definition,
                child_id=child.child_id,
                session_id=session_id,
                baseline=key in baseline_keys,
                now=now,
            )
            if updated is None or outcome == "unchanged":
                return updated, None
            return updated, MilestoneDelta(
                milestone_key=key,
                outcome=outcome,
                status=updated.status,
                evidence_count=updated.evidence_count,
                category=definition.category,
                display_title=definition.display_title,
                action_tip=definition.action_tip,
            )

        return _apply

    deltas = store.record_milestone_evidence(
        session_id, child.child_id, {key: _updater(key) for key in all_keys}
    )
    logger.info(
        "milestones applied session_id=%s child_id=%s detected=%d baseline=%d deltas=%d",
        session_id,
        child.child_id,
        len(detected),
        len(baseline_keys),
        len(deltas),
    )
    return deltas
