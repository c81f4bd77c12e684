from __future__ import annotations

import logging
import time
import uuid
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .contracts import (
    AuditEvent,
    ChildContext,
    ChildMilestoneRecord,
    ChildProfilingRecord,
    ChildRecord,
    CoachingGuidance,
    CodingResult,
    DevelopmentalProfile,
    InteractionMode,
    MergeReport,
    MilestoneDelta,
    RoleIdentification,
    SessionRecord,
    SessionStatus,
    SpeakerRole,
    UtteranceRecord,
)

logger = logging.getLogger(__name__)

MilestoneUpdater = Callable[
    [Optional[ChildMilestoneRecord]], Tuple[Optional[ChildMilestoneRecord], Optional[MilestoneDelta]]
]


class SessionNotFoundError(KeyError):
    """Raised when a session row is missing, typically because it was deleted mid-flight."""

    def __init__(self, session_id: str):
        super().__init__(f"Unknown session_id: {session_id}")
        self.session_id = session_id


class RoleAlreadyAssignedError(ValueError):
    pass


class InMemorySessionStore:
    """Thread-safe row store for sessions, utterances, children and milestones.

    Every public write is one call under the lock, so a stage's writes land
    all together or not at all.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._child_contexts: Dict[str, ChildContext] = {}
        self._children_by_user: Dict[str, ChildRecord] = {}
        self._profilings: Dict[str, ChildProfilingRecord] = {}
        self._milestones: Dict[Tuple[str, str], ChildMilestoneRecord] = {}

    # -- sessions -----------------------------------------------------------

    def create_session(self, user_id: str, mode: InteractionMode, upload_base_url: str) -> str:
        session_id = uuid.uuid4().hex
        now = time.time()
        base = upload_base_url.rstrip("/")
        record = SessionRecord(
            session_id=session_id,
            user_id=user_id,
            mode=mode,
            status="PENDING",
            created_at=now,
            updated_at=now,
            upload_target=f"{base}/{user_id}/{session_id}.m4a",
        )
        with self._lock:
            self._sessions[session_id] = {
                "record": record,
                "utterances": [],
                "audit_events": [],
            }
        return session_id

    def _row(self, session_id: str) -> Dict[str, Any]:
        row = self._sessions.get(session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    def _update(self, session_id: str, **fields: Any) -> SessionRecord:
        row = self._row(session_id)
        fields["updated_at"] = time.time()
        row["record"] = row["record"].model_copy(update=fields)
        return row["record"]

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_session(self, session_id: str) -> SessionRecord:
        with self._lock:
            return self._row(session_id)["record"].model_copy(deep=True)

    def complete_upload(self, session_id: str, audio_ref: str, duration_sec: Optional[float]) -> None:
        with self._lock:
            self._update(session_id, audio_ref=audio_ref, duration_sec=duration_sec)

    def set_status(self, session_id: str, status: SessionStatus) -> None:
        with self._lock:
            self._update(session_id, status=status)

    def record_failed_attempt(self, session_id: str, error: str, at: float) -> int:
        with self._lock:
            record = self._row(session_id)["record"]
            updated = self._update(
                session_id,
                retry_count=record.retry_count + 1,
                last_retry_at=at,
                last_error=error,
            )
            return updated.retry_count

    def mark_completed(self, session_id: str) -> None:
        with self._lock:
            self._update(
                session_id,
                status="COMPLETED",
                permanent_failure=False,
                last_error=None,
                completed_at=time.time(),
            )

    def mark_permanent_failure(self, session_id: str, error: str) -> SessionRecord:
        with self._lock:
            updated = self._update(
                session_id,
                status="FAILED",
                permanent_failure=True,
                last_error=error,
            )
            return updated.model_copy(deep=True)

    # -- utterances ---------------------------------------------------------

    def replace_transcript(
        self,
        session_id: str,
        utterances: Iterable[UtteranceRecord],
        merge_report: MergeReport,
        transcript_text: str,
    ) -> None:
        rows = sorted((u.model_copy() for u in utterances), key=lambda u: u.order)
        with self._lock:
            row = self._row(session_id)
            row["utterances"] = rows
            self._update(
                session_id,
                merge_report=merge_report,
                transcript_text=transcript_text,
                role_identification=None,
                coding_result=None,
            )

    def list_utterances(self, session_id: str) -> List[UtteranceRecord]:
        with self._lock:
            return [u.model_copy() for u in self._row(session_id)["utterances"]]

    def apply_roles(
        self,
        session_id: str,
        roles: Mapping[str, SpeakerRole],
        identification: Optional[RoleIdentification] = None,
    ) -> int:
        """Broadcast each label's role to its utterances; a label is assigned at most once."""
        with self._lock:
            row = self._row(session_id)
            current = row["utterances"]
            for utterance in current:
                if utterance.speaker in roles and utterance.role is not None:
                    raise RoleAlreadyAssignedError(
                        f"Speaker label already has a role: {utterance.speaker}"
                    )
            updated: List[UtteranceRecord] = []
            touched = 0
            for utterance in current:
                role = roles.get(utterance.speaker)
                if role is not None and utterance.kind == "speech":
                    updated.append(utterance.model_copy(update={"role": role}))
                    touched += 1
                else:
                    updated.append(utterance)
            row["utterances"] = updated
            if identification is not None:
                self._update(session_id, role_identification=identification)
            return touched

    def apply_tags(
        self,
        session_id: str,
        tags: Mapping[str, Tuple[str, Optional[str]]],
        coding_result: Optional[CodingResult] = None,
    ) -> None:
        """Set (tag, feedback) per utterance id, last write wins, plus the aggregate in the same call."""
        with self._lock:
            row = self._row(session_id)
            known = {u.utterance_id for u in row["utterances"]}
            missing = sorted(set(tags) - known)
            if missing:
                raise KeyError(f"Unknown utterance ids: {missing}")
            row["utterances"] = [
                u.model_copy(update={"tag": tags[u.utterance_id][0], "feedback": tags[u.utterance_id][1]})
                if u.utterance_id in tags
                else u
                for u in row["utterances"]
            ]
            if coding_result is not None:
                self._update(session_id, coding_result=coding_result)

    def set_coaching(self, session_id: str, coaching: CoachingGuidance) -> None:
        with self._lock:
            self._update(session_id, coaching=coaching)

    # -- audit --------------------------------------------------------------

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            self._row(session_id)["audit_events"].append(event)

    def list_audit_events(self, session_id: str) -> List[AuditEvent]:
        with self._lock:
            return list(self._row(session_id)["audit_events"])

    # -- children -----------------------------------------------------------

    def set_child_context(self, user_id: str, context: ChildContext) -> None:
        with self._lock:
            self._child_contexts[user_id] = context
            child = self._children_by_user.get(user_id)
            if child is not None:
                self._children_by_user[user_id] = child.model_copy(update={"context": context})

    def get_child_context(self, user_id: str) -> Optional[ChildContext]:
        with self._lock:
            context = self._child_contexts.get(user_id)
            return context.model_copy() if context is not None else None

    def get_child_for_user(self, user_id: str) -> Optional[ChildRecord]:
        with self._lock:
            child = self._children_by_user.get(user_id)
            return child.model_copy(deep=True) if child is not None else None

    def ensure_child(self, user_id: str) -> ChildRecord:
        with self._lock:
            child = self._children_by_user.get(user_id)
            if child is None:
                child = ChildRecord(
                    child_id=uuid.uuid4().hex,
                    user_id=user_id,
                    context=self._child_contexts.get(user_id) or ChildContext(),
                    created_at=time.time(),
                )
                self._children_by_user[user_id] = child
            return child.model_copy(deep=True)

    def upsert_profiling(
        self, child_id: str, session_id: str, profile: DevelopmentalProfile
    ) -> Tuple[ChildProfilingRecord, bool]:
        """Insert or replace the profiling row keyed by session id; returns (row, created)."""
        now = time.time()
        with self._lock:
            self._row(session_id)
            existing = self._profilings.get(session_id)
            if existing is not None:
                record = existing.model_copy(update={"profile": profile, "updated_at": now})
                created = False
            else:
                record = ChildProfilingRecord(
                    profiling_id=uuid.uuid4().hex,
                    child_id=child_id,
                    session_id=session_id,
                    profile=profile,
                    created_at=now,
                    updated_at=now,
                )
                created = True
            self._profilings[session_id] = record
            return record.model_copy(deep=True), created

    def get_profiling_for_session(self, session_id: str) -> Optional[ChildProfilingRecord]:
        with self._lock:
            record = self._profilings.get(session_id)
            return record.model_copy(deep=True) if record is not None else None

    def count_profilings(self, child_id: str, exclude_session_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1
                for record in self._profilings.values()
                if record.child_id == child_id and record.session_id != exclude_session_id
            )

    # -- milestones ---------------------------------------------------------

    def list_child_milestones(self, child_id: str) -> List[ChildMilestoneRecord]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for (cid, _), record in sorted(self._milestones.items())
                if cid == child_id
            ]

    def record_milestone_evidence(
        self, session_id: str, child_id: str, updaters: Mapping[str, MilestoneUpdater]
    ) -> List[MilestoneDelta]:
        """Read-modify-write every (child, milestone) pair and store the session's deltas in one locked step.

        Each updater returns ``(record, delta)``; a None record leaves the row untouched.
        Raises SessionNotFoundError before any row changes when the session is gone.
        """
        deltas: List[MilestoneDelta] = []
        with self._lock:
            self._row(session_id)
            for key, updater in updaters.items():
                before = self._milestones.get((child_id, key))
                after, delta = updater(before.model_copy(deep=True) if before is not None else None)
                if after is not None:
                    self._milestones[(child_id, key)] = after
                if delta is not None:
                    deltas.append(delta)
            self._update(session_id, milestone_deltas=list(deltas))
        return [d.model_copy() for d in deltas]

    # -- lifecycle ----------------------------------------------------------

    def destroy_session(self, session_id: str, reason: str) -> bool:
        with self._lock:
            row = self._sessions.pop(session_id, None)
            self._profilings.pop(session_id, None)
        if row is not None:
            logger.info("session destroyed session_id=%s reason=%s", session_id, reason)
        return row is not None
