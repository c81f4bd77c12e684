from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # backend/internal_core/config.py -> backend -> project root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_float_tuple(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if not parts:
        return default
    return tuple(float(part) for part in parts)


@dataclass(frozen=True)
class PipelineConfig:
    PLAYCOACH_PROVIDER: str
    PLAYCOACH_TRANSCRIPTION_MODE: str
    PLAYCOACH_TEXT_MODEL: str
    PLAYCOACH_DIARIZE_MODEL: str
    PLAYCOACH_TRANSCRIBE_URL: str
    PLAYCOACH_TRANSCRIBE_API_KEY: str
    PLAYCOACH_LLM_URL: str
    PLAYCOACH_LLM_API_KEY: str
    PLAYCOACH_LLM_MODEL: str
    PLAYCOACH_LLM_MAX_TOKENS: int
    PLAYCOACH_PROVIDER_TIMEOUT_SEC: int
    PLAYCOACH_MAX_ATTEMPTS: int
    PLAYCOACH_RETRY_DELAYS: tuple[float, ...]
    PLAYCOACH_SILENCE_THRESHOLD_SEC: float
    PLAYCOACH_DIVERGENCE_REASSIGN_RATIO: float
    PLAYCOACH_ROLE_MIN_CONFIDENCE: float
    PLAYCOACH_ROLE_TEMPERATURE: float
    PLAYCOACH_PROFILE_TEMPERATURE: float
    PLAYCOACH_MILESTONE_TEMPERATURE: float
    PLAYCOACH_BASELINE_MARGIN_MONTHS: int
    PLAYCOACH_MILESTONE_LIBRARY_PATH: Optional[str]
    PLAYCOACH_FAILURE_WEBHOOK_URL: Optional[str]
    PLAYCOACH_UPLOAD_BASE_URL: str
    PLAYCOACH_RUN_PIPELINE_ON_UPLOAD: bool
    PLAYCOACH_LOG_LEVEL: str

    def retry_delay_for_attempt(self, attempt: int) -> float:
        """Delay applied before 1-based ``attempt``; the last entry repeats when the table is short."""
        delays = self.PLAYCOACH_RETRY_DELAYS
        if not delays:
            return 0.0
        index = min(max(attempt, 1) - 1, len(delays) - 1)
        return float(delays[index])

    def milestone_library_path(self) -> Optional[Path]:
        if not self.PLAYCOACH_MILESTONE_LIBRARY_PATH:
            return None
        path = Path(self.PLAYCOACH_MILESTONE_LIBRARY_PATH).expanduser()
        if not path.is_absolute():
            path = _project_root() / path
        return path.resolve()


def load_config() -> PipelineConfig:
    mode = _getenv_str("PLAYCOACH_TRANSCRIPTION_MODE", "two_pass").strip().lower()
    if mode not in {"two_pass", "text", "diarize"}:
        raise ValueError(f"Unsupported PLAYCOACH_TRANSCRIPTION_MODE: {mode}")

    max_attempts = _getenv_int("PLAYCOACH_MAX_ATTEMPTS", 3)
    if max_attempts < 1:
        raise ValueError("PLAYCOACH_MAX_ATTEMPTS must be >= 1")

    return PipelineConfig(
        PLAYCOACH_PROVIDER=_getenv_str("PLAYCOACH_PROVIDER", "mock").strip().lower(),
        PLAYCOACH_TRANSCRIPTION_MODE=mode,
        PLAYCOACH_TEXT_MODEL=_getenv_str("PLAYCOACH_TEXT_MODEL", "scribe_v2"),
        PLAYCOACH_DIARIZE_MODEL=_getenv_str("PLAYCOACH_DIARIZE_MODEL", "scribe_v1"),
        PLAYCOACH_TRANSCRIBE_URL=_getenv_str("PLAYCOACH_TRANSCRIBE_URL", ""),
        PLAYCOACH_TRANSCRIBE_API_KEY=_getenv_str("PLAYCOACH_TRANSCRIBE_API_KEY", ""),
        PLAYCOACH_LLM_URL=_getenv_str("PLAYCOACH_LLM_URL", ""),
        PLAYCOACH_LLM_API_KEY=_getenv_str("PLAYCOACH_LLM_API_KEY", ""),
        PLAYCOACH_LLM_MODEL=_getenv_str("PLAYCOACH_LLM_MODEL", "default"),
        PLAYCOACH_LLM_MAX_TOKENS=_getenv_int("PLAYCOACH_LLM_MAX_TOKENS", 8192),
        PLAYCOACH_PROVIDER_TIMEOUT_SEC=_getenv_int("PLAYCOACH_PROVIDER_TIMEOUT_SEC", 300),
        PLAYCOACH_MAX_ATTEMPTS=max_attempts,
        PLAYCOACH_RETRY_DELAYS=_getenv_float_tuple("PLAYCOACH_RETRY_DELAYS", (0.0, 5.0, 15.0)),
        PLAYCOACH_SILENCE_THRESHOLD_SEC=_getenv_float("PLAYCOACH_SILENCE_THRESHOLD_SEC", 3.0),
        PLAYCOACH_DIVERGENCE_REASSIGN_RATIO=_getenv_float(
            "PLAYCOACH_DIVERGENCE_REASSIGN_RATIO", 0.2
        ),
        PLAYCOACH_ROLE_MIN_CONFIDENCE=_getenv_float("PLAYCOACH_ROLE_MIN_CONFIDENCE", 0.5),
        PLAYCOACH_ROLE_TEMPERATURE=_getenv_float("PLAYCOACH_ROLE_TEMPERATURE", 0.3),
        PLAYCOACH_PROFILE_TEMPERATURE=_getenv_float("PLAYCOACH_PROFILE_TEMPERATURE", 0.5),
        PLAYCOACH_MILESTONE_TEMPERATURE=_getenv_float("PLAYCOACH_MILESTONE_TEMPERATURE", 0.2),
        PLAYCOACH_BASELINE_MARGIN_MONTHS=_getenv_int("PLAYCOACH_BASELINE_MARGIN_MONTHS", 0),
        PLAYCOACH_MILESTONE_LIBRARY_PATH=_getenv_opt_str("PLAYCOACH_MILESTONE_LIBRARY_PATH"),
        PLAYCOACH_FAILURE_WEBHOOK_URL=_getenv_opt_str("PLAYCOACH_FAILURE_WEBHOOK_URL"),
        PLAYCOACH_UPLOAD_BASE_URL=_getenv_str("PLAYCOACH_UPLOAD_BASE_URL", "s3://playcoach-audio"),
        PLAYCOACH_RUN_PIPELINE_ON_UPLOAD=_getenv_bool("PLAYCOACH_RUN_PIPELINE_ON_UPLOAD", True),
        PLAYCOACH_LOG_LEVEL=_getenv_str("PLAYCOACH_LOG_LEVEL", "INFO"),
    )
