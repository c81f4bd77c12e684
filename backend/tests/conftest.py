from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Mapping, Optional

import pytest

from backend.internal_core.config import PipelineConfig, load_config
from backend.internal_core.contracts import FailureNotification
from backend.internal_core.providers.base import ProviderError, ReasoningProvider, TranscriptionProvider
from backend.internal_core.providers.mock import prompt_task_and_input
from backend.internal_core.session_store import InMemorySessionStore
from backend.pipeline.notifications import FailureNotifier
from backend.transcript.models import TranscriptPass, TranscriptSpan

FIVE_DOMAINS = ("language", "cognitive", "social", "emotional", "connection")


def make_pass(model: str, rows: list[tuple[Optional[str], float, float, str]], duration: float | None = None) -> TranscriptPass:
    """Spread each row's words evenly over its window, with spacing spans between words."""
    spans: list[TranscriptSpan] = []
    for speaker, start, end, text in rows:
        words = text.split()
        step = (end - start) / max(1, len(words))
        for idx, word in enumerate(words):
            w_start = start + idx * step
            if idx:
                spans.append(TranscriptSpan(start=w_start, end=w_start, text=" ", speaker=speaker, kind="spacing"))
            spans.append(TranscriptSpan(start=w_start, end=w_start + step, text=word, speaker=speaker))
    return TranscriptPass(model=model, spans=spans, duration_sec=duration)


class ScriptedReasoning(ReasoningProvider):
    """Reasoning fake answering per prompt task; a handler may return a dict or raise."""

    def __init__(self, handlers: Mapping[str, Callable[[dict[str, Any]], dict[str, Any]]]):
        self.handlers = dict(handlers)
        self.calls: list[tuple[str, str, float]] = []

    def name(self) -> str:
        return "scripted"

    async def classify(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return self._answer("classify", prompt, temperature)

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return self._answer("generate", prompt, temperature)

    def _answer(self, method: str, prompt: str, temperature: float) -> dict[str, Any]:
        task, payload = prompt_task_and_input(prompt)
        self.calls.append((method, task, temperature))
        handler = self.handlers.get(task)
        if handler is None:
            raise ProviderError("no_handler", f"no handler for {task}", self.name())
        return handler(payload)

    def tasks(self) -> list[str]:
        return [task for _, task, _ in self.calls]


class ScriptedTranscription(TranscriptionProvider):
    """Returns passes by model name; ``failures`` raises ProviderError for the first N calls."""

    def __init__(self, passes: Mapping[str, TranscriptPass], failures: int = 0):
        self.passes = dict(passes)
        self.failures = failures
        self.calls: list[str] = []

    def name(self) -> str:
        return "scripted"

    async def transcribe(self, audio_ref: str, *, model: str, options=None) -> TranscriptPass:
        self.calls.append(model)
        if self.failures > 0:
            self.failures -= 1
            raise ProviderError("timeout", "transcription timed out", self.name())
        return self.passes[model]


class RecordingNotifier(FailureNotifier):
    def __init__(self) -> None:
        self.sent: list[FailureNotification] = []

    async def notify(self, notification: FailureNotification) -> None:
        self.sent.append(notification)


def roles_by_prefix(payload: dict[str, Any]) -> dict[str, Any]:
    """Label ``adult*`` speakers ADULT and everyone else CHILD."""
    return {
        "speaker_identification": {
            label: {
                "role": "ADULT" if label.startswith("adult") else "CHILD",
                "confidence": 0.95,
                "rationale": "test",
            }
            for label in payload["speakers"]
        }
    }


def code_everything_as(code: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _handler(payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "codes": [
                {"id": item["id"], "code": code, "feedback": "ok"}
                for item in payload["utterances"]
                if item["role"] == "adult"
            ]
        }

    return _handler


def profile_reply(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "summary": "Engaged and talkative.",
        "domains": [
            {"domain": name, "current_level": "on track", "observations": [{"text": f"{name} note", "evidence_utterance_ids": [0]}]}
            for name in FIVE_DOMAINS
        ],
    }


def coaching_reply(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "summary": "Keep narrating.",
        "items": [{"observed_pattern": "Many questions", "suggested_alternative": "Describe instead"}],
        "tomorrow_goal": "Five labeled praises",
    }


def no_milestones(payload: dict[str, Any]) -> dict[str, Any]:
    return {"detected_milestones": [], "baseline_achieved": []}


def default_handlers(**overrides: Callable[[dict[str, Any]], dict[str, Any]]) -> dict[str, Callable]:
    handlers: dict[str, Callable] = {
        "speaker_identification": roles_by_prefix,
        "behavior_coding": code_everything_as("behavioral_description"),
        "developmental_profile": profile_reply,
        "coaching_guidance": coaching_reply,
        "milestone_detection": no_milestones,
    }
    handlers.update(overrides)
    return handlers


CONVERSATION = [
    ("adult_a", 0.0, 2.0, "You are building a tower."),
    ("child_b", 2.5, 3.5, "Big tower!"),
    ("adult_a", 4.0, 6.0, "Big tower, you said."),
    ("child_b", 10.0, 11.0, "Car goes vroom."),
]


@pytest.fixture
def cfg(monkeypatch) -> PipelineConfig:
    for name in ("PLAYCOACH_RETRY_DELAYS", "PLAYCOACH_MAX_ATTEMPTS", "PLAYCOACH_TRANSCRIPTION_MODE"):
        monkeypatch.delenv(name, raising=False)
    return replace(load_config(), PLAYCOACH_PROVIDER="mock")


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def two_pass_transcription(cfg) -> ScriptedTranscription:
    return ScriptedTranscription(
        {
            cfg.PLAYCOACH_TEXT_MODEL: make_pass(cfg.PLAYCOACH_TEXT_MODEL, CONVERSATION, duration=12.0),
            cfg.PLAYCOACH_DIARIZE_MODEL: make_pass(cfg.PLAYCOACH_DIARIZE_MODEL, CONVERSATION, duration=12.0),
        }
    )
