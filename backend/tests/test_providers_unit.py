from dataclasses import replace

import pytest

from backend.coding.prompts import behavior_coding_prompt, speaker_identification_prompt
from backend.internal_core.providers import (
    HttpReasoningProvider,
    HttpTranscriptionProvider,
    MockReasoningProvider,
    MockTranscriptionProvider,
    ProviderError,
    build_providers,
    parse_json_payload,
)
from backend.internal_core.providers.http import _transcript_pass_from_payload
from backend.internal_core.providers.mock import prompt_task_and_input


def test_parse_json_payload_strips_code_fences() -> None:
    raw = '```json\n{"codes": [{"id": 1, "code": "question"}]}\n```'
    assert parse_json_payload(raw, "test") == {"codes": [{"id": 1, "code": "question"}]}


def test_parse_json_payload_extracts_object_from_chatter() -> None:
    raw = 'Sure! Here is the result: {"summary": "a {nested} brace", "items": []} Hope it helps.'
    assert parse_json_payload(raw, "test") == {"summary": "a {nested} brace", "items": []}


def test_parse_json_payload_rejects_non_object() -> None:
    with pytest.raises(ProviderError) as exc:
        parse_json_payload("[1, 2, 3]", "test")
    assert exc.value.code == "invalid_json"
    assert exc.value.provider_name == "test"


def test_transcript_pass_from_payload_maps_words() -> None:
    payload = {
        "language_code": "en",
        "audio_duration_secs": 4.5,
        "words": [
            {"text": "Hi", "start": 0.0, "end": 0.3, "type": "word", "speaker_id": "speaker_0"},
            {"text": " ", "start": 0.3, "end": 0.3, "type": "spacing", "speaker_id": "speaker_0"},
            {"text": "(laughs)", "start": 0.4, "end": 0.9, "type": "audio_event"},
            {"text": "there", "start": 1.0, "end": 1.2, "type": "mystery", "speaker_id": "speaker_1"},
        ],
    }
    result = _transcript_pass_from_payload(payload, "scribe_v1", "http_transcription")
    assert result.model == "scribe_v1"
    assert result.language == "en"
    assert result.duration_sec == 4.5
    assert [s.kind for s in result.spans] == ["word", "spacing", "audio_event", "word"]
    assert result.spans[2].speaker is None
    assert result.spans[3].speaker == "speaker_1"


def test_transcript_pass_from_payload_requires_words() -> None:
    with pytest.raises(ProviderError) as exc:
        _transcript_pass_from_payload({"text": "hello"}, "scribe_v2", "http_transcription")
    assert exc.value.code == "invalid_payload"


def test_prompt_task_and_input_reads_header_and_payload() -> None:
    prompt = speaker_identification_prompt({"speaker_0": {"samples": ["hello there"], "utterance_count": 1}})
    task, payload = prompt_task_and_input(prompt)
    assert task == "speaker_identification"
    assert payload["speakers"]["speaker_0"]["samples"] == ["hello there"]


@pytest.mark.asyncio
async def test_mock_transcription_returns_scripted_pass() -> None:
    provider = MockTranscriptionProvider()
    result = await provider.transcribe("s3://bucket/a.m4a", model="scribe_v1")
    assert result.duration_sec == 18.0
    assert {s.speaker for s in result.spans} == {"speaker_0", "speaker_1"}
    assert provider.calls == ["scribe_v1"]
    with pytest.raises(ProviderError):
        await provider.transcribe("", model="scribe_v1")


@pytest.mark.asyncio
async def test_mock_reasoning_codes_only_adult_utterances() -> None:
    provider = MockReasoningProvider()
    prompt = behavior_coding_prompt(
        [
            {"id": 0, "role": "adult", "text": "What color is the car?"},
            {"id": 1, "role": "child", "text": "Red!"},
            {"id": 2, "role": "adult", "text": "Great job building so carefully."},
        ],
        ["question", "labeled_praise"],
        "child_directed",
    )
    reply = await provider.classify(prompt, temperature=0.0, max_tokens=100)
    assert reply == {
        "codes": [
            {"id": 0, "code": "question", "feedback": ""},
            {"id": 2, "code": "labeled_praise", "feedback": ""},
        ]
    }
    assert provider.calls == [("behavior_coding", 0.0)]


@pytest.mark.asyncio
async def test_mock_reasoning_rejects_unknown_task() -> None:
    with pytest.raises(ProviderError) as exc:
        await MockReasoningProvider().generate("no header here", temperature=0.5, max_tokens=10)
    assert exc.value.code == "unknown_task"


def test_build_providers_selects_clients(cfg) -> None:
    transcription, reasoning = build_providers(cfg)
    assert isinstance(transcription, MockTranscriptionProvider)
    assert isinstance(reasoning, MockReasoningProvider)

    http_cfg = replace(
        cfg,
        PLAYCOACH_PROVIDER="http",
        PLAYCOACH_TRANSCRIBE_URL="https://asr.example/v1/speech-to-text/",
        PLAYCOACH_LLM_URL="https://llm.example/v1/chat/completions",
        PLAYCOACH_LLM_MODEL="coach-large",
    )
    transcription, reasoning = build_providers(http_cfg)
    assert isinstance(transcription, HttpTranscriptionProvider)
    assert transcription.base_url == "https://asr.example/v1/speech-to-text"
    assert isinstance(reasoning, HttpReasoningProvider)
    assert reasoning.name() == "http_reasoning:coach-large"


def test_build_providers_rejects_unknown_provider(cfg) -> None:
    with pytest.raises(ValueError):
        build_providers(replace(cfg, PLAYCOACH_PROVIDER="carrier-pigeon"))


def test_http_provider_requires_url(cfg) -> None:
    with pytest.raises(ValueError):
        build_providers(replace(cfg, PLAYCOACH_PROVIDER="http", PLAYCOACH_TRANSCRIBE_URL=""))
