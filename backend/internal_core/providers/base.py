from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from backend.transcript.models import TranscriptPass


class ProviderError(RuntimeError):
    def __init__(self, code: str, message: str, provider_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name


class TranscriptionProvider(ABC):
    @abstractmethod
    async def transcribe(
        self,
        audio_ref: str,
        *,
        model: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> TranscriptPass: ...

    @abstractmethod
    def name(self) -> str: ...


class ReasoningProvider(ABC):
    """Structured-output reasoning capability.

    ``classify`` is used for deterministic labelling (roles, behavior codes);
    ``generate`` for open-ended structured documents (profile, coaching,
    milestones). Both return the decoded JSON object.
    """

    @abstractmethod
    async def classify(
        self, prompt: str, *, temperature: float, max_tokens: int
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def generate(
        self, prompt: str, *, temperature: float, max_tokens: int
    ) -> dict[str, Any]: ...

    @abstractmethod
    def name(self) -> str: ...


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_payload(raw: str, provider_name: str) -> dict[str, Any]:
    """Decode a model reply into a JSON object, tolerating code fences and chatter."""
    data = _parse_json_object(_FENCE_RE.sub("", (raw or "").strip()))
    if data is None:
        raise ProviderError("invalid_json", "Provider reply did not contain a JSON object.", provider_name)
    return data


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = _extract_first_json_object(raw)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
        if isinstance(data, dict):
            return data
    except ValueError:
        return None
    return None


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""
