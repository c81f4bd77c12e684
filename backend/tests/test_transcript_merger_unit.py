from dataclasses import replace

import pytest

from backend.pipeline.errors import TranscriptionError
from backend.transcript.merger import assign_speaker, merge_passes, single_pass, transcribe_and_merge
from backend.transcript.models import PassUtterance, TranscriptPass, TranscriptSpan
from backend.transcript.parsing import format_transcript, parse_spans

from conftest import ScriptedTranscription, make_pass


def test_parse_spans_splits_on_speaker_change_and_sentence_end() -> None:
    spans = [
        TranscriptSpan(start=0.0, end=0.4, text="Look", speaker="s0"),
        TranscriptSpan(start=0.4, end=0.4, text=" ", speaker="s0", kind="spacing"),
        TranscriptSpan(start=0.4, end=0.9, text="here.", speaker="s0"),
        TranscriptSpan(start=1.0, end=1.5, text="Red", speaker="s0"),
        TranscriptSpan(start=1.6, end=2.0, text="car", speaker="s1"),
        TranscriptSpan(start=2.0, end=2.4, text="(laughter)", speaker="s1", kind="audio_event"),
    ]

    utterances = parse_spans(spans)

    assert [(u.speaker, u.text) for u in utterances] == [("s0", "Look here."), ("s0", "Red"), ("s1", "car")]
    assert utterances[0].start == 0.0 and utterances[0].end == 0.9


def test_parse_spans_drops_event_only_runs_and_labels_unknown_speaker() -> None:
    spans = [
        TranscriptSpan(start=0.0, end=1.0, text="(music)", speaker="s0", kind="audio_event"),
        TranscriptSpan(start=1.0, end=1.5, text="Hi!", speaker=None),
    ]

    utterances = parse_spans(spans)

    assert len(utterances) == 1
    assert utterances[0].speaker == "speaker_unknown"
    assert utterances[0].text == "Hi!"


def test_merge_takes_overlap_majority_speaker_from_pass_b() -> None:
    pass_a = make_pass("a", [("speaker_0", 0.0, 4.0, "one two three four.")])
    pass_b = make_pass("b", [("spk_x", 0.0, 1.0, "one"), ("spk_y", 1.0, 4.0, "two three four")])

    result = merge_passes(pass_a, pass_b)

    assert len(result.utterances) == 1
    assert result.utterances[0].speaker == "spk_y"
    assert result.utterances[0].reason == "overlap_majority"
    assert result.utterances[0].text == "one two three four."


def test_merge_overlap_tie_goes_to_earlier_speaker() -> None:
    utterance = PassUtterance(start=0.0, end=2.0, speaker="a0", text="tie case")
    pass_b = make_pass("b", [("spk_early", 0.0, 1.0, "tie"), ("spk_late", 1.0, 2.0, "case")])

    assert assign_speaker(utterance, pass_b) == "spk_early"


def test_merge_falls_back_to_nearest_midpoint_when_no_overlap() -> None:
    pass_a = make_pass("a", [("speaker_0", 5.0, 6.0, "hello.")])
    pass_b = make_pass("b", [("spk_far", 0.0, 1.0, "far"), ("spk_near", 7.0, 8.0, "near")])

    result = merge_passes(pass_a, pass_b)

    assert result.utterances[0].speaker == "spk_near"
    assert result.report.reason_counts == {"fallback_nearest": 1}
    assert result.report.fallback_rate == 1.0


def test_merge_keeps_native_label_when_pass_b_has_no_speakers() -> None:
    pass_a = make_pass("a", [("speaker_0", 0.0, 1.0, "hello."), ("speaker_1", 1.5, 2.0, "hi.")])
    pass_b = make_pass("b", [(None, 0.0, 2.0, "hello hi")])

    result = merge_passes(pass_a, pass_b)

    assert [u.speaker for u in result.utterances] == ["speaker_0", "speaker_1"]
    assert all(u.reason == "fallback_native" for u in result.utterances)


def test_merge_is_complete_every_pass_a_utterance_is_labelled() -> None:
    rows = [("s0", float(i), float(i) + 0.8, f"word{i}.") for i in range(0, 20, 2)]
    pass_a = make_pass("a", rows)
    pass_b = make_pass("b", [("b0", 0.0, 3.0, "x y z"), ("b1", 30.0, 31.0, "late")])

    result = merge_passes(pass_a, pass_b)

    assert len(result.utterances) == len(rows)
    assert all(u.speaker in {"b0", "b1"} for u in result.utterances)


def test_divergence_flag_set_when_speaker_counts_differ() -> None:
    pass_a = make_pass("a", [("s0", 0.0, 1.0, "hi."), ("s1", 2.0, 3.0, "yo.")])
    pass_b = make_pass("b", [("s0", 0.0, 1.0, "hi"), ("s1", 2.0, 3.0, "yo"), ("s2", 5.0, 6.0, "extra")])

    result = merge_passes(pass_a, pass_b)

    assert result.report.pass_a_speaker_count == 2
    assert result.report.pass_b_speaker_count == 3
    assert result.report.diverged is True


def test_divergence_flag_set_when_reassignment_ratio_exceeds_threshold() -> None:
    pass_a = make_pass("a", [("s0", 0.0, 1.0, "a."), ("s1", 2.0, 3.0, "b."), ("s0", 4.0, 5.0, "c.")])
    pass_b = make_pass("b", [("s1", 0.0, 1.0, "a"), ("s0", 2.0, 3.0, "b"), ("s0", 4.0, 5.0, "c")])

    result = merge_passes(pass_a, pass_b)

    assert result.report.reassigned_count == 2
    assert result.report.diverged is True


def test_divergence_flag_clear_when_passes_agree() -> None:
    rows = [("s0", 0.0, 1.0, "a."), ("s1", 2.0, 3.0, "b.")]

    result = merge_passes(make_pass("a", rows), make_pass("b", rows))

    assert result.report.diverged is False
    assert result.report.reassigned_ratio == 0.0


def _alternating(count: int) -> list[tuple[str, float, float, str]]:
    return [(f"s{i % 2}", float(2 * i), float(2 * i + 1), f"w{i}.") for i in range(count)]


def _with_swapped_label(rows: list[tuple[str, float, float, str]], index: int) -> list[tuple[str, float, float, str]]:
    speaker, start, end, text = rows[index]
    swapped = "s1" if speaker == "s0" else "s0"
    return [*rows[:index], (swapped, start, end, text), *rows[index + 1 :]]


def test_divergence_flag_clear_for_small_nonzero_reassignment() -> None:
    rows = _alternating(10)

    result = merge_passes(make_pass("a", rows), make_pass("b", _with_swapped_label(rows, 3)))

    assert result.report.pass_a_speaker_count == result.report.pass_b_speaker_count == 2
    assert result.report.reassigned_count == 1
    assert result.report.reassigned_ratio == pytest.approx(0.1)
    assert result.report.diverged is False


def test_divergence_flag_clear_at_exactly_the_threshold() -> None:
    rows = _alternating(5)

    result = merge_passes(make_pass("a", rows), make_pass("b", _with_swapped_label(rows, 2)))

    assert result.report.reassigned_count == 1
    assert result.report.reassigned_ratio == pytest.approx(0.2)
    assert result.report.diverged is False


def test_single_pass_keeps_native_labels() -> None:
    result = single_pass(make_pass("a", [("s0", 0.0, 1.0, "hello.")], duration=4.0), "text")

    assert result.report.mode == "text"
    assert result.utterances[0].speaker == "s0"
    assert result.duration_sec == 4.0


def test_format_transcript_renders_numbered_lines() -> None:
    utterances = [PassUtterance(start=0.0, end=1.25, speaker="s0", text="Hi.")]
    assert format_transcript(utterances) == "[00] s0 | 0.00-1.25 | Hi."


@pytest.mark.asyncio
async def test_transcribe_and_merge_wraps_provider_errors(cfg) -> None:
    provider = ScriptedTranscription({}, failures=1)

    with pytest.raises(TranscriptionError) as excinfo:
        await transcribe_and_merge(provider, "s3://bucket/a.m4a", cfg)

    assert excinfo.value.code == "timeout"
    assert excinfo.value.stage == "transcription"


@pytest.mark.asyncio
async def test_transcribe_and_merge_runs_both_passes_in_order(cfg, two_pass_transcription) -> None:
    result = await transcribe_and_merge(two_pass_transcription, "s3://bucket/a.m4a", cfg)

    assert two_pass_transcription.calls == [cfg.PLAYCOACH_TEXT_MODEL, cfg.PLAYCOACH_DIARIZE_MODEL]
    assert result.report.mode == "two_pass"
    assert result.report.utterance_count == 4


@pytest.mark.asyncio
async def test_transcribe_and_merge_rejects_empty_transcript(cfg) -> None:
    empty = TranscriptPass(model="m", spans=[])
    provider = ScriptedTranscription({cfg.PLAYCOACH_TEXT_MODEL: empty})
    single_cfg = replace(cfg, PLAYCOACH_TRANSCRIPTION_MODE="text")

    with pytest.raises(TranscriptionError) as excinfo:
        await transcribe_and_merge(provider, "s3://bucket/a.m4a", single_cfg)

    assert excinfo.value.code == "empty_transcript"
