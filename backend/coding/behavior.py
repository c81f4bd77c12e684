from __future__ import annotations

"""
Code caregiver utterances against the fixed behavior taxonomy.

Design intent:
- Temperature 0 and a closed code set keep coding repeatable.
- Reject the whole reply on any contract violation; partial codes are never stored.
- Counts are a pure function of stored tags, written together with them.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import CodingResult, InteractionMode, TagCounts, UtteranceRecord
from backend.internal_core.providers.base import ProviderError, ReasoningProvider
from backend.pipeline.errors import ContractViolation, StageError
from backend.transcript.utterance_store import UtteranceStore
from backend.coding.prompts import behavior_coding_prompt
from backend.coding.scoring import calculate_overall_score

logger = logging.getLogger(__name__)

CODING_TEMPERATURE = 0.0

BEHAVIOR_TAGS: tuple[str, ...] = (
    "labeled_praise",
    "unlabeled_praise",
    "behavioral_description",
    "reflection",
    "negative_talk",
    "direct_command",
    "indirect_command",
    "question",
    "acknowledgment",
    "idle",
)

TAG_DISPLAY_NAMES: dict[str, str] = {
    "labeled_praise": "Labeled Praise",
    "unlabeled_praise": "Unlabeled Praise",
    "behavioral_description": "Narration",
    "reflection": "Echo",
    "negative_talk": "Criticism",
    "direct_command": "Command",
    "indirect_command": "Command",
    "question": "Question",
    "acknowledgment": "Neutral",
    "idle": "Neutral",
}


def compute_tag_counts(utterances: Sequence[UtteranceRecord]) -> TagCounts:
    raw = {tag: 0 for tag in BEHAVIOR_TAGS}
    for utt in utterances:
        if utt.kind == "speech" and utt.role == "adult" and utt.tag in raw:
            raw[utt.tag] += 1
    return TagCounts(
        echo=raw["reflection"],
        labeled_praise=raw["labeled_praise"],
        unlabeled_praise=raw["unlabeled_praise"],
        praise=raw["labeled_praise"] + raw["unlabeled_praise"],
        narration=raw["behavioral_description"],
        direct_command=raw["direct_command"],
        indirect_command=raw["indirect_command"],
        command=raw["direct_command"] + raw["indirect_command"],
        question=raw["question"],
        criticism=raw["negative_talk"],
        neutral=raw["acknowledgment"] + raw["idle"],
    )


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def validate_coding_reply(
    payload: Mapping[str, Any], adult_ids: Sequence[int]
) -> dict[int, tuple[str, Optional[str]]]:
    items = payload.get("codes")
    if not isinstance(items, list):
        raise ContractViolation("invalid_reply", "Reply is missing the codes list.")

    expected = set(adult_ids)
    coded: dict[int, tuple[str, Optional[str]]] = {}
    for item in items:
        if not isinstance(item, Mapping):
            raise ContractViolation("invalid_reply", "Code entry is not an object.")
        utt_id = _coerce_id(item.get("id"))
        if utt_id is None or utt_id not in expected:
            raise ContractViolation("unknown_id", f"Code returned for unknown or non-adult id: {item.get('id')!r}")
        if utt_id in coded:
            raise ContractViolation("duplicate_id", f"Utterance {utt_id} coded more than once.")
        code = str(item.get("code") or "").strip()
        if code not in BEHAVIOR_TAGS:
            raise ContractViolation("unknown_code", f"Code outside the taxonomy: {code or '<empty>'}")
        feedback = item.get("feedback")
        coded[utt_id] = (code, str(feedback).strip() if feedback else None)

    missing = sorted(expected - set(coded))
    if missing:
        raise ContractViolation("missing_id", f"Adult utterances left uncoded: {missing[:10]}")
    return coded


async def code_behaviors(
    reasoning: ReasoningProvider,
    utterances: Sequence[UtteranceRecord],
    mode: InteractionMode,
    *,
    max_tokens: int = 8192,
) -> dict[str, tuple[str, Optional[str]]]:
    """Return ``{utterance_id: (tag, feedback)}`` for every adult speech utterance."""
    speech = [u for u in utterances if u.kind == "speech"]
    adults = [u for u in speech if u.role == "adult"]
    if not adults:
        return {}

    prompt = behavior_coding_prompt(
        [{"id": u.order, "role": u.role or "unknown", "text": u.text} for u in speech],
        list(BEHAVIOR_TAGS),
        mode,
    )
    try:
        payload = await reasoning.classify(prompt, temperature=CODING_TEMPERATURE, max_tokens=max_tokens)
    except ProviderError as exc:
        raise StageError(exc.code, f"{exc.provider_name}: {exc.message}", "behavior_coding") from exc

    coded = validate_coding_reply(payload, [u.order for u in adults])
    by_order = {u.order: u.utterance_id for u in adults}
    return {by_order[order]: value for order, value in coded.items()}


async def run_behavior_coding(
    reasoning: ReasoningProvider,
    utterance_store: UtteranceStore,
    session_id: str,
    mode: InteractionMode,
    cfg: PipelineConfig,
) -> CodingResult:
    utterances = utterance_store.rows(session_id)
    tags = await code_behaviors(reasoning, utterances, mode, max_tokens=cfg.PLAYCOACH_LLM_MAX_TOKENS)

    tagged = [
        u.model_copy(update={"tag": tags[u.utterance_id][0], "feedback": tags[u.utterance_id][1]})
        if u.utterance_id in tags
        else u
        for u in utterances
    ]
    counts = compute_tag_counts(tagged)
    score = calculate_overall_score(counts, mode)
    result = CodingResult(
        adult_utterance_count=sum(1 for u in utterances if u.kind == "speech" and u.role == "adult"),
        tag_counts=counts,
        overall_score=score.score,
        passed=score.passed,
    )
    utterance_store.append_tags(session_id, tags, result)
    logger.info(
        "behavior coded session_id=%s adult_utterances=%d score=%d passed=%s",
        session_id,
        result.adult_utterance_count,
        result.overall_score,
        result.passed,
    )
    return result
