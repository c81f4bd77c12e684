from __future__ import annotations

"""
Classify each raw speaker label as ADULT or CHILD.

Design intent:
- Exactly one reasoning call per session; the reply covers every label.
- Fail closed: a missing, ambiguous or low-confidence label stops the
  stage instead of guessing.
"""

import logging
from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import RoleIdentification, SpeakerRoleAssignment, UtteranceRecord
from backend.internal_core.providers.base import ProviderError, ReasoningProvider
from backend.pipeline.errors import RoleClassificationError
from backend.transcript.utterance_store import UtteranceStore
from backend.coding.prompts import speaker_identification_prompt

logger = logging.getLogger(__name__)

SAMPLE_CHAR_BUDGET = 600


def build_speaker_samples(
    utterances: Sequence[UtteranceRecord], *, char_budget: int = SAMPLE_CHAR_BUDGET
) -> dict[str, dict[str, Any]]:
    speakers: dict[str, dict[str, Any]] = {}
    for utt in utterances:
        if utt.kind != "speech":
            continue
        entry = speakers.setdefault(utt.speaker, {"utterance_count": 0, "samples": [], "_chars": 0})
        entry["utterance_count"] += 1
        if entry["_chars"] < char_budget:
            entry["samples"].append(utt.text)
            entry["_chars"] += len(utt.text)
    for entry in speakers.values():
        entry.pop("_chars", None)
    return speakers


def validate_role_reply(
    payload: Mapping[str, Any],
    speakers: Mapping[str, Mapping[str, Any]],
    *,
    min_confidence: float,
) -> RoleIdentification:
    raw = payload.get("speaker_identification")
    if not isinstance(raw, Mapping):
        raise RoleClassificationError("invalid_reply", "Reply is missing speaker_identification.")

    assignments: dict[str, SpeakerRoleAssignment] = {}
    for label, info in speakers.items():
        item = raw.get(label)
        if not isinstance(item, Mapping):
            raise RoleClassificationError("missing_label", f"No role returned for speaker {label}.")
        role = str(item.get("role") or "").strip().upper()
        try:
            assignment = SpeakerRoleAssignment(
                role=role,
                confidence=float(item.get("confidence", 0.0)),
                rationale=str(item.get("rationale") or ""),
                utterance_count=int(info.get("utterance_count") or 0),
            )
        except (TypeError, ValueError, ValidationError) as exc:
            raise RoleClassificationError(
                "invalid_reply", f"Invalid role entry for speaker {label}: {role or '<empty>'}"
            ) from exc
        if assignment.confidence < min_confidence:
            raise RoleClassificationError(
                "ambiguous_label",
                f"Role for speaker {label} is ambiguous (confidence {assignment.confidence:.2f}).",
            )
        assignments[label] = assignment

    if not any(a.role == "ADULT" for a in assignments.values()):
        raise RoleClassificationError("no_adult", "No ADULT speaker identified.")
    return RoleIdentification(speakers=assignments)


async def classify_roles(
    reasoning: ReasoningProvider,
    utterances: Sequence[UtteranceRecord],
    *,
    min_confidence: float = 0.5,
    temperature: float = 0.3,
    max_tokens: int = 2048,
) -> RoleIdentification:
    speakers = build_speaker_samples(utterances)
    if not speakers:
        raise RoleClassificationError("no_speakers", "No speech utterances to classify.")
    prompt = speaker_identification_prompt(speakers)
    try:
        payload = await reasoning.classify(prompt, temperature=temperature, max_tokens=max_tokens)
    except ProviderError as exc:
        raise RoleClassificationError(exc.code, f"{exc.provider_name}: {exc.message}") from exc
    return validate_role_reply(payload, speakers, min_confidence=min_confidence)


async def run_role_classification(
    reasoning: ReasoningProvider,
    utterance_store: UtteranceStore,
    session_id: str,
    cfg: PipelineConfig,
) -> RoleIdentification:
    utterances = utterance_store.rows(session_id)
    identification = await classify_roles(
        reasoning,
        utterances,
        min_confidence=cfg.PLAYCOACH_ROLE_MIN_CONFIDENCE,
        temperature=cfg.PLAYCOACH_ROLE_TEMPERATURE,
        max_tokens=cfg.PLAYCOACH_LLM_MAX_TOKENS,
    )
    touched = utterance_store.append_roles(session_id, identification.role_map(), identification)
    logger.info(
        "roles assigned session_id=%s speakers=%d utterances=%d",
        session_id,
        len(identification.speakers),
        touched,
    )
    return identification
