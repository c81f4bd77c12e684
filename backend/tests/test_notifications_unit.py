import logging

import pytest

from backend.internal_core.contracts import FailureNotification
from backend.pipeline.notifications import (
    LoggingFailureNotifier,
    WebhookFailureNotifier,
    build_failure_notifier,
    format_failure_message,
)


def _notification() -> FailureNotification:
    return FailureNotification(
        session_id="sess_1",
        user_id="user_1",
        error_summary="transcription:timeout: scripted (scribe_v2): timed out",
        retry_count=3,
        audio_ref=None,
        failed_at_iso="2026-01-01T00:00:00+00:00",
    )


def test_format_failure_message_lists_fields() -> None:
    lines = format_failure_message(_notification()).splitlines()
    assert lines[0] == "Audio processing permanently failed"
    assert "Session: sess_1" in lines
    assert "Retry attempts: 3" in lines
    assert "Audio: N/A" in lines


def test_build_failure_notifier_picks_webhook_only_with_url() -> None:
    assert isinstance(build_failure_notifier(None), LoggingFailureNotifier)
    assert isinstance(build_failure_notifier(""), LoggingFailureNotifier)
    webhook = build_failure_notifier("https://hooks.example/T000")
    assert isinstance(webhook, WebhookFailureNotifier)
    assert webhook.url == "https://hooks.example/T000"


@pytest.mark.asyncio
async def test_logging_notifier_logs_error(caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="backend.pipeline.notifications"):
        await LoggingFailureNotifier().notify(_notification())
    assert "permanent failure session_id=sess_1" in caplog.text


@pytest.mark.asyncio
async def test_webhook_delivery_error_is_logged_not_raised(caplog) -> None:
    notifier = WebhookFailureNotifier("http://127.0.0.1:9/unreachable", timeout_sec=2)
    with caplog.at_level(logging.WARNING, logger="backend.pipeline.notifications"):
        await notifier.notify(_notification())
    assert "failure webhook error session_id=sess_1" in caplog.text
