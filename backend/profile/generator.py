from __future__ import annotations

"""
Generate the developmental profile and coaching guidance for a coded session.

Design intent:
- The two reasoning calls are independent and run concurrently.
- Each reply is validated on arrival; one failing does not discard the other.
- Profiling rows are upserted by session id; the child row is created lazily
  on the first successful profile.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from pydantic import ValidationError

from backend.coding.prompts import coaching_guidance_prompt, developmental_profile_prompt
from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import (
    ChildContext,
    ChildRecord,
    CoachingGuidance,
    DevelopmentalProfile,
    SessionRecord,
    UtteranceRecord,
)
from backend.internal_core.providers.base import ProviderError, ReasoningProvider
from backend.internal_core.session_store import InMemorySessionStore

logger = logging.getLogger(__name__)


class ProfileGenerationError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class ProfileOutcome:
    profile: Optional[DevelopmentalProfile]
    coaching: Optional[CoachingGuidance]
    child: Optional[ChildRecord]
    first_profiling: bool = False
    errors: dict[str, str] = field(default_factory=dict)


def build_profile_context(
    session: SessionRecord,
    utterances: list[UtteranceRecord],
    child_context: ChildContext,
    *,
    today: Optional[date] = None,
) -> dict[str, Any]:
    counts = session.coding_result.tag_counts.model_dump() if session.coding_result else {}
    return {
        "child": {
            "name": child_context.name or "the child",
            "age_months": child_context.resolved_age_months(today),
            "gender": child_context.gender,
            "presenting_concern": child_context.presenting_concern,
        },
        "mode": session.mode,
        "tag_counts": counts,
        "transcript": [
            {"id": u.order, "role": u.role, "tag": u.tag, "text": u.text}
            for u in utterances
            if u.kind == "speech"
        ],
    }


async def _request_profile(
    reasoning: ReasoningProvider, context: dict[str, Any], cfg: PipelineConfig
) -> DevelopmentalProfile:
    try:
        payload = await reasoning.generate(
            developmental_profile_prompt(context),
            temperature=cfg.PLAYCOACH_PROFILE_TEMPERATURE,
            max_tokens=cfg.PLAYCOACH_LLM_MAX_TOKENS,
        )
    except ProviderError as exc:
        raise ProfileGenerationError(exc.code, exc.message) from exc
    try:
        return DevelopmentalProfile.model_validate(payload)
    except ValidationError as exc:
        raise ProfileGenerationError("invalid_profile", str(exc)) from exc


async def _request_coaching(
    reasoning: ReasoningProvider, context: dict[str, Any], cfg: PipelineConfig
) -> CoachingGuidance:
    try:
        payload = await reasoning.generate(
            coaching_guidance_prompt(context),
            temperature=cfg.PLAYCOACH_PROFILE_TEMPERATURE,
            max_tokens=cfg.PLAYCOACH_LLM_MAX_TOKENS,
        )
    except ProviderError as exc:
        raise ProfileGenerationError(exc.code, exc.message) from exc
    try:
        return CoachingGuidance.model_validate(payload)
    except ValidationError as exc:
        raise ProfileGenerationError("invalid_coaching", str(exc)) from exc


def _unwrap(result: Any, label: str, session_id: str, errors: dict[str, str]) -> Any:
    if isinstance(result, BaseException):
        if not isinstance(result, Exception):
            raise result
        errors[label] = f"{getattr(result, 'code', type(result).__name__)}: {result}"
        logger.warning("%s generation failed session_id=%s error=%s", label, session_id, result)
        return None
    return result


async def generate_profile_and_coaching(
    reasoning: ReasoningProvider,
    store: InMemorySessionStore,
    session_id: str,
    cfg: PipelineConfig,
    *,
    today: Optional[date] = None,
) -> ProfileOutcome:
    session = store.get_session(session_id)
    utterances = store.list_utterances(session_id)
    child_context = store.get_child_context(session.user_id) or ChildContext()
    context = build_profile_context(session, utterances, child_context, today=today)

    profile_result, coaching_result = await asyncio.gather(
        _request_profile(reasoning, context, cfg),
        _request_coaching(reasoning, context, cfg),
        return_exceptions=True,
    )
    errors: dict[str, str] = {}
    profile = _unwrap(profile_result, "profile", session_id, errors)
    coaching = _unwrap(coaching_result, "coaching", session_id, errors)

    child: Optional[ChildRecord] = None
    first_profiling = False
    if profile is not None:
        child = store.ensure_child(session.user_id)
        first_profiling = store.count_profilings(child.child_id, exclude_session_id=session_id) == 0
        _, created = store.upsert_profiling(child.child_id, session_id, profile)
        logger.info(
            "profiling stored session_id=%s child_id=%s created=%s first=%s",
            session_id,
            child.child_id,
            created,
            first_profiling,
        )
    if coaching is not None:
        store.set_coaching(session_id, coaching)

    return ProfileOutcome(
        profile=profile,
        coaching=coaching,
        child=child,
        first_profiling=first_profiling,
        errors=errors,
    )
