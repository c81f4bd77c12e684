from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from backend.transcript.models import TranscriptPass, TranscriptSpan

from .base import ProviderError, ReasoningProvider, TranscriptionProvider

_MOCK_SCRIPT: list[tuple[str, float, float, str]] = [
    ("speaker_0", 0.4, 2.6, "You are stacking the red block on top."),
    ("speaker_1", 3.0, 4.2, "Big tower!"),
    ("speaker_0", 4.5, 6.0, "Big tower, you said."),
    ("speaker_0", 10.0, 11.8, "Great job building so carefully."),
    ("speaker_1", 12.2, 13.5, "Doggy goes in the car."),
    ("speaker_0", 14.0, 15.6, "What color is the car?"),
]


def _script_spans() -> list[TranscriptSpan]:
    spans: list[TranscriptSpan] = []
    for speaker, start, end, text in _MOCK_SCRIPT:
        words = text.split()
        step = (end - start) / max(1, len(words))
        for idx, word in enumerate(words):
            w_start = round(start + idx * step, 3)
            w_end = round(start + (idx + 1) * step, 3)
            if idx:
                spans.append(TranscriptSpan(start=w_start, end=w_start, text=" ", speaker=speaker, kind="spacing"))
            spans.append(TranscriptSpan(start=w_start, end=w_end, text=word, speaker=speaker, kind="word"))
    return spans


class MockTranscriptionProvider(TranscriptionProvider):
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def transcribe(
        self,
        audio_ref: str,
        *,
        model: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> TranscriptPass:
        if not audio_ref:
            raise ProviderError("missing_audio", "audio_ref is required", self.name())
        self.calls.append(model)
        return TranscriptPass(model=model, spans=_script_spans(), language="en", duration_sec=18.0)

    def name(self) -> str:
        return "mock"


def prompt_task_and_input(prompt: str) -> tuple[str, dict[str, Any]]:
    task = ""
    payload: dict[str, Any] = {}
    for line in prompt.splitlines():
        if line.startswith("### TASK:"):
            task = line.split(":", 1)[1].strip()
            break
    marker = "### INPUT\n"
    if marker in prompt:
        raw = prompt.split(marker, 1)[1]
        try:
            payload = json.loads(raw.split("\n### ", 1)[0])
        except ValueError:
            payload = {}
    return task, payload


def _mock_code(text: str) -> str:
    lowered = text.strip().lower()
    if lowered.endswith("?"):
        return "question"
    if lowered.startswith(("great job", "good job", "nice job")):
        return "labeled_praise" if len(lowered.split()) > 2 else "unlabeled_praise"
    if lowered.startswith(("you are", "you're")):
        return "behavioral_description"
    if "you said" in lowered:
        return "reflection"
    if lowered.startswith(("put ", "give ", "stop ")):
        return "direct_command"
    return "acknowledgment"


class MockReasoningProvider(ReasoningProvider):
    """Deterministic replies keyed on the prompt's task header."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, float]] = []

    def name(self) -> str:
        return "mock"

    async def classify(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return self._reply(prompt, temperature)

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        return self._reply(prompt, temperature)

    def _reply(self, prompt: str, temperature: float) -> dict[str, Any]:
        task, payload = prompt_task_and_input(prompt)
        self.calls.append((task, temperature))
        if task == "speaker_identification":
            speakers = payload.get("speakers") or {}
            ranked = sorted(
                speakers,
                key=lambda label: (-_avg_words(speakers[label].get("samples") or []), label),
            )
            return {
                "speaker_identification": {
                    label: {
                        "role": "ADULT" if idx == 0 else "CHILD",
                        "confidence": 0.9,
                        "rationale": "mock",
                    }
                    for idx, label in enumerate(ranked)
                }
            }
        if task == "behavior_coding":
            return {
                "codes": [
                    {"id": item["id"], "code": _mock_code(str(item.get("text") or "")), "feedback": ""}
                    for item in payload.get("utterances") or []
                    if item.get("role") == "adult"
                ]
            }
        if task == "developmental_profile":
            return {
                "summary": "Mock developmental summary.",
                "domains": [
                    {"domain": name, "current_level": "on track", "age_benchmark": "", "observations": []}
                    for name in ("language", "cognitive", "social", "emotional", "connection")
                ],
                "session_metadata": {"source": "mock"},
            }
        if task == "coaching_guidance":
            return {
                "summary": "Mock coaching summary.",
                "items": [
                    {
                        "observed_pattern": "Asked a question during play.",
                        "suggested_alternative": "Describe what your child is doing instead.",
                        "worked_example": "You are driving the car into the garage.",
                    }
                ],
                "tomorrow_goal": "Give five labeled praises.",
            }
        if task == "milestone_detection":
            keys = payload.get("library_keys") or []
            detected = [
                {"milestone_key": key, "evidence_summary": "mock evidence"}
                for key in keys
                if key == "language_brown_stage1_semantic"
            ]
            return {"detected_milestones": detected, "baseline_achieved": []}
        raise ProviderError("unknown_task", f"Mock provider has no reply for task: {task or '<none>'}", self.name())


def _avg_words(samples: list[Any]) -> float:
    if not samples:
        return 0.0
    return sum(len(str(s).split()) for s in samples) / len(samples)
