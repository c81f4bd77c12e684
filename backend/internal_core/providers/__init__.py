from __future__ import annotations

"""
Capability clients for transcription and structured reasoning.

Design intent:
- Keep the pipeline coded against two abstract capabilities.
- Build concrete clients from config in one place.
"""

from ..config import PipelineConfig
from .base import ProviderError, ReasoningProvider, TranscriptionProvider, parse_json_payload
from .http import HttpReasoningProvider, HttpTranscriptionProvider
from .mock import MockReasoningProvider, MockTranscriptionProvider


def build_providers(cfg: PipelineConfig) -> tuple[TranscriptionProvider, ReasoningProvider]:
    if cfg.PLAYCOACH_PROVIDER == "mock":
        return MockTranscriptionProvider(), MockReasoningProvider()
    if cfg.PLAYCOACH_PROVIDER == "http":
        return (
            HttpTranscriptionProvider(
                cfg.PLAYCOACH_TRANSCRIBE_URL,
                cfg.PLAYCOACH_TRANSCRIBE_API_KEY,
                cfg.PLAYCOACH_PROVIDER_TIMEOUT_SEC,
            ),
            HttpReasoningProvider(
                cfg.PLAYCOACH_LLM_URL,
                cfg.PLAYCOACH_LLM_API_KEY,
                cfg.PLAYCOACH_LLM_MODEL,
                cfg.PLAYCOACH_PROVIDER_TIMEOUT_SEC,
            ),
        )
    raise ValueError(f"Unsupported PLAYCOACH_PROVIDER: {cfg.PLAYCOACH_PROVIDER}")


__all__ = [
    "ProviderError",
    "ReasoningProvider",
    "TranscriptionProvider",
    "parse_json_payload",
    "HttpReasoningProvider",
    "HttpTranscriptionProvider",
    "MockReasoningProvider",
    "MockTranscriptionProvider",
    "build_providers",
]
