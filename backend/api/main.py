from __future__ import annotations

"""
API surface for the play-session processing pipeline.

Design intent:
- Keep API orchestration thin and typed.
- Delegate all processing to the pipeline supervisor; routes only create,
  start, read and delete sessions.
- Allow tests to inject a supervisor through ``app.state``.
"""

import logging
from typing import Any, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from backend.internal_core import audit
from backend.internal_core.config import load_config
from backend.internal_core.contracts import (
    AuditEvent,
    ChildContext,
    SessionReport,
    SessionStatus,
    SessionStatusView,
)
from backend.internal_core.providers import build_providers
from backend.internal_core.session_store import InMemorySessionStore, SessionNotFoundError
from backend.pipeline.notifications import build_failure_notifier
from backend.pipeline.supervisor import PipelineSupervisor, ReportNotReadyError


class SessionCreateRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    mode: Literal["child_directed", "parent_directed"] = "child_directed"


class SessionCreateResponse(BaseModel):
    session_id: str
    upload_target: str
    status: SessionStatus


class UploadCompleteRequest(BaseModel):
    audio_ref: str = Field(min_length=1)
    duration_sec: Optional[float] = Field(default=None, ge=0.0)


class UploadCompleteResponse(BaseModel):
    session_id: str
    status: SessionStatus
    pipeline_started: bool


class AuditEventsResponse(BaseModel):
    session_id: str
    events: list[AuditEvent] = Field(default_factory=list)


app = FastAPI(title="playcoach pipeline service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _configure_logging() -> None:
    level_name = load_config().PLAYCOACH_LOG_LEVEL.upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.getLogger("backend").setLevel(level)


_configure_logging()


def _get_supervisor() -> PipelineSupervisor:
    existing = getattr(app.state, "pipeline_supervisor", None)
    if isinstance(existing, PipelineSupervisor):
        return existing
    cfg = load_config()
    transcription, reasoning = build_providers(cfg)
    created = PipelineSupervisor(
        InMemorySessionStore(),
        transcription,
        reasoning,
        cfg,
        notifier=build_failure_notifier(cfg.PLAYCOACH_FAILURE_WEBHOOK_URL),
    )
    setattr(app.state, "pipeline_supervisor", created)
    return created


def _not_found(exc: SessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Unknown session_id: {exc.session_id}")


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionCreateResponse)
async def create_session(payload: SessionCreateRequest) -> SessionCreateResponse:
    supervisor = _get_supervisor()
    store = supervisor.store
    session_id = store.create_session(payload.user_id, payload.mode, supervisor.cfg.PLAYCOACH_UPLOAD_BASE_URL)
    audit.log_event(store, session_id, "SESSION_CREATED", payload.mode, "")
    record = store.get_session(session_id)
    return SessionCreateResponse(session_id=session_id, upload_target=record.upload_target, status=record.status)


@app.put("/users/{user_id}/child-context", response_model=ChildContext)
async def put_child_context(user_id: str, payload: ChildContext) -> ChildContext:
    _get_supervisor().store.set_child_context(user_id, payload)
    return payload


@app.post("/sessions/{session_id}/complete", response_model=UploadCompleteResponse)
async def complete_upload(session_id: str, payload: UploadCompleteRequest) -> UploadCompleteResponse:
    supervisor = _get_supervisor()
    store = supervisor.store
    try:
        record = store.get_session(session_id)
        if record.status != "PENDING" or record.audio_ref:
            raise HTTPException(status_code=409, detail=f"Upload already completed (status {record.status}).")
        store.complete_upload(session_id, payload.audio_ref, payload.duration_sec)
        audit.log_event(store, session_id, "UPLOAD_COMPLETED", "audio_ref", f"duration_sec={payload.duration_sec}")
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc

    started = False
    if supervisor.cfg.PLAYCOACH_RUN_PIPELINE_ON_UPLOAD:
        supervisor.start(session_id)
        started = True
    logger.info("upload completed session_id=%s pipeline_started=%s", session_id, started)
    return UploadCompleteResponse(session_id=session_id, status=record.status, pipeline_started=started)


@app.get("/sessions/{session_id}/status", response_model=SessionStatusView)
async def get_status(session_id: str) -> SessionStatusView:
    try:
        return _get_supervisor().get_status(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc


@app.get("/sessions/{session_id}/report", response_model=SessionReport)
async def get_report(session_id: str) -> SessionReport:
    try:
        return _get_supervisor().get_report(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    except ReportNotReadyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/sessions/{session_id}/audit", response_model=AuditEventsResponse)
async def get_audit(session_id: str) -> AuditEventsResponse:
    try:
        events = _get_supervisor().store.list_audit_events(session_id)
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    return AuditEventsResponse(session_id=session_id, events=events)


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    store = _get_supervisor().store
    try:
        audit.log_event(store, session_id, "SESSION_DESTROYED", "user_request", "")
    except SessionNotFoundError as exc:
        raise _not_found(exc) from exc
    store.destroy_session(session_id, reason="user_request")
    return {"session_id": session_id, "deleted": True}
