from __future__ import annotations


class StageError(RuntimeError):
    """A mandatory stage failed; the supervisor decides whether to retry."""

    stage = "pipeline"

    def __init__(self, code: str, message: str, stage: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if stage is not None:
            self.stage = stage

    def summary(self) -> str:
        return f"{self.stage}:{self.code}: {self.message}"


class TranscriptionError(StageError):
    stage = "transcription"


class RoleClassificationError(StageError):
    stage = "role_classification"


class ContractViolation(StageError):
    """A provider reply did not satisfy its declared schema."""

    stage = "behavior_coding"
