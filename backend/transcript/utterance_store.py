from __future__ import annotations

"""
Materialize merged utterances as ordered rows, with synthesized silence.

Design intent:
- Order is assigned once by start time and never changes afterwards.
- Roles and tags are appended to existing rows; rows are never recreated.
"""

import logging
from typing import Mapping, Optional, Sequence

from backend.internal_core.contracts import (
    CodingResult,
    RoleIdentification,
    SpeakerRole,
    UtteranceRecord,
)
from backend.internal_core.session_store import InMemorySessionStore
from backend.transcript.merger import MergeResult
from backend.transcript.models import MergedUtterance
from backend.transcript.parsing import format_transcript

logger = logging.getLogger(__name__)

SILENT_SPEAKER = "__SILENT__"
DEFAULT_SILENCE_THRESHOLD_SEC = 3.0


def silence_feedback(duration_sec: float) -> str:
    if duration_sec >= 10.0:
        return (
            "This was a long quiet moment. Try narrating what your child is doing "
            "or give a labeled praise!"
        )
    if duration_sec >= 5.0:
        return "Nice pause here! You could describe what your child is doing during quiet moments."
    return "A brief pause - great opportunity to add a narration or reflection."


def utterance_id_for(session_id: str, order: int) -> str:
    return f"{session_id}:{order:04d}"


def build_utterance_records(
    session_id: str,
    merged: Sequence[MergedUtterance],
    *,
    recording_duration_sec: Optional[float] = None,
    silence_threshold_sec: float = DEFAULT_SILENCE_THRESHOLD_SEC,
) -> list[UtteranceRecord]:
    """Interleave speech with silence slots for every gap >= threshold, ordered by start."""
    speech = sorted(merged, key=lambda u: (u.start, u.end))
    slots: list[tuple[float, float, str, str, bool]] = []

    cursor = 0.0
    for utt in speech:
        gap = utt.start - cursor
        if gap >= silence_threshold_sec:
            slots.append((cursor, utt.start, SILENT_SPEAKER, "", True))
        slots.append((utt.start, utt.end, utt.speaker, utt.text, False))
        cursor = max(cursor, utt.end)

    if recording_duration_sec is not None and recording_duration_sec - cursor >= silence_threshold_sec:
        slots.append((cursor, recording_duration_sec, SILENT_SPEAKER, "", True))

    records: list[UtteranceRecord] = []
    for order, (start, end, speaker, text, is_silence) in enumerate(slots):
        records.append(
            UtteranceRecord(
                utterance_id=utterance_id_for(session_id, order),
                session_id=session_id,
                order=order,
                speaker=speaker,
                kind="silence" if is_silence else "speech",
                start=round(start, 3),
                end=round(end, 3),
                text=text,
                feedback=silence_feedback(end - start) if is_silence else None,
            )
        )
    return records


class UtteranceStore:
    def __init__(
        self,
        store: InMemorySessionStore,
        *,
        silence_threshold_sec: float = DEFAULT_SILENCE_THRESHOLD_SEC,
    ):
        self._store = store
        self._silence_threshold_sec = silence_threshold_sec

    def materialize(
        self,
        session_id: str,
        result: MergeResult,
        recording_duration_sec: Optional[float] = None,
    ) -> list[UtteranceRecord]:
        duration = recording_duration_sec if recording_duration_sec is not None else result.duration_sec
        records = build_utterance_records(
            session_id,
            result.utterances,
            recording_duration_sec=duration,
            silence_threshold_sec=self._silence_threshold_sec,
        )
        speech = [r for r in records if r.kind == "speech"]
        self._store.replace_transcript(session_id, records, result.report, format_transcript(speech))
        logger.info(
            "utterances materialized session_id=%s speech=%d silence=%d",
            session_id,
            len(speech),
            len(records) - len(speech),
        )
        return records

    def rows(self, session_id: str) -> list[UtteranceRecord]:
        return self._store.list_utterances(session_id)

    def append_role(self, session_id: str, speaker_label: str, role: SpeakerRole) -> int:
        return self._store.apply_roles(session_id, {speaker_label: role})

    def append_roles(
        self,
        session_id: str,
        roles: Mapping[str, SpeakerRole],
        identification: Optional[RoleIdentification] = None,
    ) -> int:
        return self._store.apply_roles(session_id, roles, identification)

    def append_tag(
        self, session_id: str, utterance_id: str, tag: str, feedback: Optional[str] = None
    ) -> None:
        self._store.apply_tags(session_id, {utterance_id: (tag, feedback)})

    def append_tags(
        self,
        session_id: str,
        tags: Mapping[str, tuple[str, Optional[str]]],
        coding_result: Optional[CodingResult] = None,
    ) -> None:
        self._store.apply_tags(session_id, tags, coding_result)
