from __future__ import annotations

"""
Typed transcript contracts shared by the merger and the capability clients.

Design intent:
- Enforce timestamp-valid spans at the provider boundary.
- Keep the pass-level speaker labels explicit so merge decisions stay auditable.
"""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

SpanKind = Literal["word", "spacing", "audio_event"]


class TranscriptSpan(BaseModel):
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    text: str
    speaker: str | None = None
    kind: SpanKind = "word"

    @model_validator(mode="after")
    def _validate_window(self) -> "TranscriptSpan":
        if self.end < self.start:
            raise ValueError("TranscriptSpan.end must be >= TranscriptSpan.start")
        return self

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2.0


class TranscriptPass(BaseModel):
    model: str
    spans: list[TranscriptSpan] = Field(default_factory=list)
    language: str | None = None
    duration_sec: float | None = Field(default=None, ge=0.0)


class PassUtterance(BaseModel):
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    speaker: str
    text: str

    @model_validator(mode="after")
    def _validate_window(self) -> "PassUtterance":
        if self.end < self.start:
            raise ValueError("PassUtterance.end must be >= PassUtterance.start")
        return self

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2.0


class MergedUtterance(BaseModel):
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    speaker: str
    source_speaker: str
    text: str
    reason: str = "overlap_majority"
    overlap_sec: float = 0.0
