from __future__ import annotations

"""
Async HTTP clients for the transcription and reasoning capabilities.

Design intent:
- One persistent aiohttp session per client, created lazily under a lock.
- Timeouts and transport faults surface as ProviderError so the supervisor
  treats them as ordinary retryable failures.
- No retries here; the pipeline owns the retry budget.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional

import aiohttp
from pydantic import ValidationError

from backend.transcript.models import TranscriptPass, TranscriptSpan

from .base import ProviderError, ReasoningProvider, TranscriptionProvider, parse_json_payload

logger = logging.getLogger(__name__)

_SPAN_KINDS = {"word", "spacing", "audio_event"}


class _HttpClientBase:
    def __init__(self, base_url: str, api_key: str, timeout_sec: int, connector_limit: int = 10):
        if not base_url:
            raise ValueError(f"{type(self).__name__} requires a base URL")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self._connector_limit = connector_limit
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(
                    limit=self._connector_limit,
                    limit_per_host=self._connector_limit,
                    keepalive_timeout=60,
                )
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
                    connector=connector,
                )
            return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _post(self, url: str, provider_name: str, **kwargs: Any) -> dict[str, Any]:
        try:
            session = await self._get_session()
            async with session.post(url, **kwargs) as resp:
                if resp.status != 200:
                    body = (await resp.text())[:300]
                    raise ProviderError(
                        f"http_{resp.status}",
                        f"{provider_name} request failed ({resp.status}): {body}",
                        provider_name,
                    )
                return await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise ProviderError("connection_error", f"{provider_name} connection error: {exc}", provider_name) from exc
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                "timeout", f"{provider_name} request timed out after {self.timeout_sec}s", provider_name
            ) from exc


class HttpTranscriptionProvider(_HttpClientBase, TranscriptionProvider):
    """Word-level transcription over a multipart endpoint taking a storage reference."""

    def name(self) -> str:
        return "http_transcription"

    async def transcribe(
        self,
        audio_ref: str,
        *,
        model: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> TranscriptPass:
        opts = dict(options or {})
        form = aiohttp.FormData()
        form.add_field("model_id", model)
        form.add_field("cloud_storage_url", audio_ref)
        form.add_field("diarize", "true" if opts.get("diarize", True) else "false")
        form.add_field("tag_audio_events", "true" if opts.get("tag_audio_events", True) else "false")
        form.add_field("timestamps_granularity", "word")
        if opts.get("num_speakers"):
            form.add_field("num_speakers", str(int(opts["num_speakers"])))

        headers = {"xi-api-key": self.api_key} if self.api_key else {}
        logger.info("transcription request model=%s provider=%s", model, self.name())
        payload = await self._post(self.base_url, self.name(), data=form, headers=headers)
        return _transcript_pass_from_payload(payload, model, self.name())


def _transcript_pass_from_payload(payload: Mapping[str, Any], model: str, provider_name: str) -> TranscriptPass:
    words = payload.get("words")
    if not isinstance(words, list):
        raise ProviderError("invalid_payload", "Transcription reply is missing the words list.", provider_name)
    spans: list[TranscriptSpan] = []
    try:
        for word in words:
            if not isinstance(word, Mapping):
                continue
            kind = str(word.get("type") or "word")
            spans.append(
                TranscriptSpan(
                    start=float(word.get("start") or 0.0),
                    end=float(word.get("end") or word.get("start") or 0.0),
                    text=str(word.get("text") or ""),
                    speaker=word.get("speaker_id") or None,
                    kind=kind if kind in _SPAN_KINDS else "word",
                )
            )
    except (TypeError, ValueError, ValidationError) as exc:
        raise ProviderError("invalid_payload", f"Malformed transcription span: {exc}", provider_name) from exc
    duration = payload.get("audio_duration_secs")
    return TranscriptPass(
        model=model,
        spans=spans,
        language=payload.get("language_code"),
        duration_sec=float(duration) if isinstance(duration, (int, float)) else None,
    )


class HttpReasoningProvider(_HttpClientBase, ReasoningProvider):
    """Chat-completions style JSON endpoint."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout_sec: int):
        super().__init__(base_url, api_key, timeout_sec)
        self.model = model

    def name(self) -> str:
        return f"http_reasoning:{self.model}"

    async def _complete(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = await self._post(self.base_url, self.name(), json=body, headers=headers)
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("invalid_payload", "Reasoning reply has no message content.", self.name()) from exc
        return parse_json_payload(str(content or ""), self.name())

    async def classify(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return await self._complete(prompt, temperature=temperature, max_tokens=max_tokens)

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return await self._complete(prompt, temperature=temperature, max_tokens=max_tokens)
