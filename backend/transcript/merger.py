from __future__ import annotations

"""
Reconcile a text-fidelity pass with a speaker-separation pass.

Design intent:
- Keep pass A's wording and timing, take speaker labels from pass B by
  temporal overlap.
- Never leave an utterance unlabeled: nearest-midpoint and native-label
  fallbacks cover every gap in pass B.
- Report divergence between the passes without halting processing.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from backend.internal_core.config import PipelineConfig
from backend.internal_core.contracts import MergeReport
from backend.internal_core.providers.base import ProviderError, TranscriptionProvider
from backend.pipeline.errors import TranscriptionError
from backend.transcript.models import MergedUtterance, PassUtterance, TranscriptPass, TranscriptSpan
from backend.transcript.parsing import parse_pass

logger = logging.getLogger(__name__)

DEFAULT_DIVERGENCE_RATIO = 0.2


@dataclass(frozen=True)
class MergeResult:
    utterances: list[MergedUtterance]
    report: MergeReport
    duration_sec: float | None = None


def _overlap_duration(a_start: float, a_end: float, b_start: float, b_end: float) -> float:
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    return max(0.0, end - start)


def _labelled_spans(transcript: TranscriptPass) -> list[TranscriptSpan]:
    spans = [s for s in transcript.spans if s.kind != "spacing" and s.speaker]
    return sorted(spans, key=lambda s: (s.start, s.end))


def _assigned_speaker_with_reason(
    utterance: PassUtterance,
    spans: Sequence[TranscriptSpan],
) -> tuple[str, str, float]:
    if not spans:
        return utterance.speaker, "fallback_native", 0.0

    totals: dict[str, float] = {}
    for span in spans:
        overlap = _overlap_duration(utterance.start, utterance.end, span.start, span.end)
        if overlap > 0.0:
            # dict preserves first-seen order, which breaks ties toward the earlier speaker
            totals[span.speaker] = totals.get(span.speaker, 0.0) + overlap

    if totals:
        best_speaker = None
        best_total = -1.0
        for speaker, total in totals.items():
            if total > best_total:
                best_speaker, best_total = speaker, total
        return str(best_speaker), "overlap_majority", float(best_total)

    target = utterance.midpoint
    nearest = spans[0]
    nearest_dist = abs(nearest.midpoint - target)
    for span in spans[1:]:
        dist = abs(span.midpoint - target)
        if dist < nearest_dist:
            nearest, nearest_dist = span, dist
    return str(nearest.speaker), "fallback_nearest", 0.0


def assign_speaker(utterance: PassUtterance, pass_b: TranscriptPass) -> str:
    speaker, _, _ = _assigned_speaker_with_reason(utterance, _labelled_spans(pass_b))
    return speaker


def detect_divergence(
    pass_a_utterances: Sequence[PassUtterance],
    pass_b: TranscriptPass,
    merged: Sequence[MergedUtterance],
    *,
    reassign_ratio_threshold: float = DEFAULT_DIVERGENCE_RATIO,
) -> tuple[int, int, int, float, bool]:
    """Return (pass A speakers, pass B speakers, reassigned, ratio, diverged)."""
    a_speakers = len({u.speaker for u in pass_a_utterances})
    b_speakers = len({s.speaker for s in _labelled_spans(pass_b)})
    reassigned = sum(1 for u in merged if u.speaker != u.source_speaker)
    ratio = reassigned / len(merged) if merged else 0.0
    diverged = a_speakers != b_speakers or ratio > reassign_ratio_threshold
    return a_speakers, b_speakers, reassigned, ratio, diverged


def merge_passes(
    pass_a: TranscriptPass,
    pass_b: TranscriptPass,
    *,
    reassign_ratio_threshold: float = DEFAULT_DIVERGENCE_RATIO,
) -> MergeResult:
    base = parse_pass(pass_a)
    spans = _labelled_spans(pass_b)
    reason_counts: Counter[str] = Counter()
    merged: list[MergedUtterance] = []

    for utterance in base:
        speaker, reason, overlap = _assigned_speaker_with_reason(utterance, spans)
        reason_counts[reason] += 1
        merged.append(
            MergedUtterance(
                start=utterance.start,
                end=utterance.end,
                speaker=speaker,
                source_speaker=utterance.speaker,
                text=utterance.text,
                reason=reason,
                overlap_sec=round(overlap, 3),
            )
        )

    a_count, b_count, reassigned, ratio, diverged = detect_divergence(
        base, pass_b, merged, reassign_ratio_threshold=reassign_ratio_threshold
    )
    fallbacks = sum(count for reason, count in reason_counts.items() if reason != "overlap_majority")
    report = MergeReport(
        mode="two_pass",
        pass_a_speaker_count=a_count,
        pass_b_speaker_count=b_count,
        utterance_count=len(merged),
        reassigned_count=reassigned,
        reassigned_ratio=round(ratio, 4),
        diverged=diverged,
        reason_counts=dict(reason_counts),
        fallback_rate=round(fallbacks / len(merged), 4) if merged else 0.0,
    )
    duration = pass_a.duration_sec if pass_a.duration_sec is not None else pass_b.duration_sec
    return MergeResult(utterances=merged, report=report, duration_sec=duration)


def single_pass(transcript: TranscriptPass, mode: str) -> MergeResult:
    base = parse_pass(transcript)
    merged = [
        MergedUtterance(
            start=u.start,
            end=u.end,
            speaker=u.speaker,
            source_speaker=u.speaker,
            text=u.text,
            reason="native_label",
        )
        for u in base
    ]
    speakers = len({u.speaker for u in base})
    report = MergeReport(
        mode=mode,
        pass_a_speaker_count=speakers,
        pass_b_speaker_count=speakers,
        utterance_count=len(merged),
        reason_counts={"native_label": len(merged)} if merged else {},
    )
    return MergeResult(utterances=merged, report=report, duration_sec=transcript.duration_sec)


async def _transcribe(
    provider: TranscriptionProvider, audio_ref: str, model: str, *, diarize: bool
) -> TranscriptPass:
    try:
        return await provider.transcribe(
            audio_ref, model=model, options={"diarize": diarize, "tag_audio_events": True}
        )
    except ProviderError as exc:
        raise TranscriptionError(exc.code, f"{exc.provider_name} ({model}): {exc.message}") from exc


async def transcribe_and_merge(
    provider: TranscriptionProvider,
    audio_ref: str,
    cfg: PipelineConfig,
) -> MergeResult:
    mode = cfg.PLAYCOACH_TRANSCRIPTION_MODE
    if mode == "two_pass":
        # Passes are issued one after the other: one in-flight call per session.
        pass_a = await _transcribe(provider, audio_ref, cfg.PLAYCOACH_TEXT_MODEL, diarize=True)
        pass_b = await _transcribe(provider, audio_ref, cfg.PLAYCOACH_DIARIZE_MODEL, diarize=True)
        result = merge_passes(
            pass_a, pass_b, reassign_ratio_threshold=cfg.PLAYCOACH_DIVERGENCE_REASSIGN_RATIO
        )
    else:
        model = cfg.PLAYCOACH_TEXT_MODEL if mode == "text" else cfg.PLAYCOACH_DIARIZE_MODEL
        result = single_pass(await _transcribe(provider, audio_ref, model, diarize=True), mode)

    if not result.utterances:
        raise TranscriptionError("empty_transcript", "No utterances parsed from transcription.")
    logger.info(
        "transcript merged mode=%s utterances=%d diverged=%s reassigned_ratio=%.3f",
        result.report.mode,
        result.report.utterance_count,
        result.report.diverged,
        result.report.reassigned_ratio,
    )
    return result
