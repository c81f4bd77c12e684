from __future__ import annotations

"""
Outward notification for sessions that exhausted their retry budget.

Design intent:
- One notification per permanent failure; delivery problems are logged and
  never change the session outcome.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

from backend.internal_core.contracts import FailureNotification

logger = logging.getLogger(__name__)


class FailureNotifier(ABC):
    @abstractmethod
    async def notify(self, notification: FailureNotification) -> None: ...


class LoggingFailureNotifier(FailureNotifier):
    async def notify(self, notification: FailureNotification) -> None:
        logger.error(
            "permanent failure session_id=%s user_id=%s retries=%d audio_ref=%s error=%s",
            notification.session_id,
            notification.user_id,
            notification.retry_count,
            notification.audio_ref or "N/A",
            notification.error_summary,
        )


def format_failure_message(notification: FailureNotification) -> str:
    return "\n".join(
        [
            "Audio processing permanently failed",
            f"User: {notification.user_id}",
            f"Session: {notification.session_id}",
            f"Error: {notification.error_summary}",
            f"Retry attempts: {notification.retry_count}",
            f"Audio: {notification.audio_ref or 'N/A'}",
            f"Failed at: {notification.failed_at_iso}",
        ]
    )


class WebhookFailureNotifier(FailureNotifier):
    """Post a chat-style ``{"text": ...}`` message plus the structured record to a webhook."""

    def __init__(self, url: str, timeout_sec: int = 10):
        self.url = url
        self.timeout_sec = timeout_sec

    async def notify(self, notification: FailureNotification) -> None:
        body = {"text": format_failure_message(notification), "failure": notification.model_dump()}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_sec)) as session:
                async with session.post(self.url, json=body) as resp:
                    if resp.status >= 300:
                        logger.warning(
                            "failure webhook rejected session_id=%s status=%d",
                            notification.session_id,
                            resp.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("failure webhook error session_id=%s error=%s", notification.session_id, exc)


def build_failure_notifier(webhook_url: Optional[str]) -> FailureNotifier:
    if webhook_url:
        return WebhookFailureNotifier(webhook_url)
    return LoggingFailureNotifier()
