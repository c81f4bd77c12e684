from __future__ import annotations

"""
Per-session pipeline supervisor.

Design intent:
- Only the supervisor writes session status: PENDING -> PROCESSING ->
  COMPLETED | FAILED.
- Retries are a bounded loop over a delay table; every failed attempt is
  counted and timestamped on the session.
- Mandatory stages run in order; profile and milestone enrichment run
  afterwards and can never fail the session.
- A session deleted mid-flight ends its task quietly.
"""

import asyncio
import datetime as _dt
import logging
import time
from datetime import date
from typing import Awaitable, Callable, Optional

from backend.coding.behavior import TAG_DISPLAY_NAMES, run_behavior_coding
from backend.coding.roles import run_role_classification
from backend.internal_core import audit
from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import (
    FailureNotification,
    SessionReport,
    SessionStatus,
    SessionStatusView,
    TagCounts,
)
from backend.internal_core.providers.base import ReasoningProvider, TranscriptionProvider
from backend.internal_core.session_store import InMemorySessionStore, SessionNotFoundError
from backend.milestones.engine import detect_and_apply_milestones
from backend.milestones.library import MilestoneLibrary, load_milestone_library
from backend.pipeline.errors import StageError
from backend.pipeline.notifications import FailureNotifier, LoggingFailureNotifier
from backend.profile.generator import generate_profile_and_coaching
from backend.transcript.merger import transcribe_and_merge
from backend.transcript.utterance_store import UtteranceStore

logger = logging.getLogger(__name__)


class ReportNotReadyError(RuntimeError):
    def __init__(self, session_id: str, status: SessionStatus):
        super().__init__(f"Report for session {session_id} is not available while {status}")
        self.session_id = session_id
        self.status = status


def _ts_iso(ts: float) -> str:
    return _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc).isoformat()


def _error_summary(exc: Exception) -> str:
    if isinstance(exc, StageError):
        return exc.summary()
    return f"{type(exc).__name__}: {exc}"


class PipelineSupervisor:
    def __init__(
        self,
        store: InMemorySessionStore,
        transcription: TranscriptionProvider,
        reasoning: ReasoningProvider,
        cfg: PipelineConfig,
        *,
        notifier: Optional[FailureNotifier] = None,
        library: Optional[MilestoneLibrary] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.transcription = transcription
        self.reasoning = reasoning
        self.cfg = cfg
        self.notifier = notifier or LoggingFailureNotifier()
        self.library = library or load_milestone_library(cfg.milestone_library_path())
        self.utterances = UtteranceStore(store, silence_threshold_sec=cfg.PLAYCOACH_SILENCE_THRESHOLD_SEC)
        self._sleep = sleep
        self._clock = clock
        self._today = today or date.today
        self._tasks: set[asyncio.Task] = set()

    # -- task management ----------------------------------------------------

    def start(self, session_id: str) -> asyncio.Task:
        """Schedule the session on the running loop; one task per session."""
        task = asyncio.get_running_loop().create_task(self.run(session_id), name=f"session-{session_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- state machine ------------------------------------------------------

    async def run(self, session_id: str) -> Optional[SessionStatus]:
        try:
            return await self._run(session_id)
        except SessionNotFoundError:
            logger.info("session removed during processing session_id=%s", session_id)
            return None

    async def _run(self, session_id: str) -> SessionStatus:
        self.store.set_status(session_id, "PROCESSING")
        max_attempts = self.cfg.PLAYCOACH_MAX_ATTEMPTS
        last_error = "unknown error"

        for attempt in range(1, max_attempts + 1):
            delay = self.cfg.retry_delay_for_attempt(attempt)
            if delay > 0:
                await self._sleep(delay)
            audit.log_event(
                self.store, session_id, "ATTEMPT_STARTED", f"attempt_{attempt}", f"delay_sec={delay:g}"
            )
            started = time.monotonic()
            try:
                await self._run_mandatory(session_id)
            except SessionNotFoundError:
                raise
            except Exception as exc:
                last_error = _error_summary(exc)
                if not isinstance(exc, StageError):
                    logger.exception("unexpected stage failure session_id=%s attempt=%d", session_id, attempt)
                retry_count = self.store.record_failed_attempt(session_id, last_error, self._clock())
                audit.log_event(
                    self.store,
                    session_id,
                    "ATTEMPT_FAILED",
                    getattr(exc, "code", type(exc).__name__),
                    last_error,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                logger.warning(
                    "attempt failed session_id=%s attempt=%d/%d retry_count=%d error=%s",
                    session_id,
                    attempt,
                    max_attempts,
                    retry_count,
                    last_error,
                )
                continue

            await self._run_enrichment(session_id)
            self.store.mark_completed(session_id)
            audit.log_event(
                self.store,
                session_id,
                "COMPLETED",
                f"attempt_{attempt}",
                "",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            logger.info("session completed session_id=%s attempt=%d", session_id, attempt)
            return "COMPLETED"

        await self._fail_permanently(session_id, last_error)
        return "FAILED"

    async def _fail_permanently(self, session_id: str, error: str) -> None:
        record = self.store.mark_permanent_failure(session_id, error)
        audit.log_event(self.store, session_id, "PERMANENT_FAILURE", "retries_exhausted", error)
        notification = FailureNotification(
            session_id=session_id,
            user_id=record.user_id,
            error_summary=error,
            retry_count=record.retry_count,
            audio_ref=record.audio_ref,
            failed_at_iso=_ts_iso(self._clock()),
        )
        try:
            await self.notifier.notify(notification)
        except Exception:
            logger.exception("failure notification raised session_id=%s", session_id)

    # -- stages -------------------------------------------------------------

    async def _run_mandatory(self, session_id: str) -> None:
        session = self.store.get_session(session_id)
        if not session.audio_ref:
            raise StageError("missing_audio", "Session has no uploaded audio.", "upload")

        try:
            merge = await transcribe_and_merge(self.transcription, session.audio_ref, self.cfg)
            self.utterances.materialize(session_id, merge, session.duration_sec)
            if merge.report.diverged:
                audit.log_event(
                    self.store,
                    session_id,
                    "MERGE_DIVERGENCE",
                    "speaker_mismatch",
                    f"pass_a={merge.report.pass_a_speaker_count} pass_b={merge.report.pass_b_speaker_count} "
                    f"reassigned_ratio={merge.report.reassigned_ratio:.3f}",
                )
            audit.log_event(self.store, session_id, "STAGE_DONE", "transcription", f"utterances={len(merge.utterances)}")

            roles = await run_role_classification(self.reasoning, self.utterances, session_id, self.cfg)
            audit.log_event(self.store, session_id, "STAGE_DONE", "role_classification", f"speakers={len(roles.speakers)}")

            coding = await run_behavior_coding(self.reasoning, self.utterances, session_id, session.mode, self.cfg)
            audit.log_event(
                self.store, session_id, "STAGE_DONE", "behavior_coding", f"adult_utterances={coding.adult_utterance_count}"
            )
        except StageError as exc:
            audit.log_event(self.store, session_id, "STAGE_FAILED", f"{exc.stage}:{exc.code}", exc.message)
            raise

    async def _run_enrichment(self, session_id: str) -> None:
        today = self._today()
        try:
            outcome = await generate_profile_and_coaching(
                self.reasoning, self.store, session_id, self.cfg, today=today
            )
        except SessionNotFoundError:
            raise
        except Exception:
            logger.exception("profile generation failed session_id=%s", session_id)
            return

        for label, error in outcome.errors.items():
            audit.log_event(self.store, session_id, "STAGE_FAILED", f"enrichment:{label}", error)
        if outcome.profile is None or outcome.child is None:
            return
        try:
            await detect_and_apply_milestones(
                self.reasoning,
                self.store,
                session_id,
                outcome.child,
                outcome.profile,
                self.library,
                self.cfg,
                first_profiling=outcome.first_profiling,
                today=today,
            )
        except SessionNotFoundError:
            raise
        except Exception as exc:
            logger.warning("milestone detection failed session_id=%s error=%s", session_id, exc)

    # -- read side ----------------------------------------------------------

    def get_status(self, session_id: str) -> SessionStatusView:
        record = self.store.get_session(session_id)
        return SessionStatusView(
            session_id=record.session_id,
            status=record.status,
            permanent_failure=record.permanent_failure,
            retry_count=record.retry_count,
            last_retry_at=record.last_retry_at,
            last_error=record.last_error,
        )

    def get_report(self, session_id: str) -> SessionReport:
        record = self.store.get_session(session_id)
        if record.status != "COMPLETED":
            raise ReportNotReadyError(session_id, record.status)
        profiling = self.store.get_profiling_for_session(session_id)
        coding = record.coding_result
        utterances = self.store.list_utterances(session_id)
        return SessionReport(
            session_id=session_id,
            mode=record.mode,
            utterances=utterances,
            tag_display_names={u.utterance_id: TAG_DISPLAY_NAMES[u.tag] for u in utterances if u.tag},
            tag_counts=coding.tag_counts if coding else TagCounts(),
            overall_score=coding.overall_score if coding else 0,
            passed=coding.passed if coding else False,
            merge_report=record.merge_report,
            profile=profiling.profile if profiling else None,
            coaching=record.coaching,
            milestone_deltas=record.milestone_deltas,
        )
