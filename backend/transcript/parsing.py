from __future__ import annotations

"""
Turn word-level transcription spans into sentence-sized utterances.

Design intent:
- Split on speaker changes and sentence-final punctuation only.
- Drop audio-event annotations so downstream coding sees speech text.
"""

import re
from typing import Iterable, Sequence

from backend.transcript.models import PassUtterance, TranscriptPass, TranscriptSpan

UNKNOWN_SPEAKER = "speaker_unknown"

_SENTENCE_END_RE = re.compile(r"[.!?。！？]$")
_PAREN_RE = re.compile(r"\([^)]*\)")
_WS_RE = re.compile(r"\s+")


def clean_utterance_text(text: str) -> str:
    return _WS_RE.sub(" ", _PAREN_RE.sub("", text or "")).strip()


def _flush(speaker: str, words: list[TranscriptSpan], out: list[PassUtterance]) -> None:
    if not words:
        return
    text = clean_utterance_text(" ".join(w.text.strip() for w in words))
    if not text:
        return
    out.append(
        PassUtterance(
            start=words[0].start,
            end=max(w.end for w in words),
            speaker=speaker,
            text=text,
        )
    )


def parse_spans(spans: Iterable[TranscriptSpan]) -> list[PassUtterance]:
    utterances: list[PassUtterance] = []
    current_speaker: str | None = None
    current_words: list[TranscriptSpan] = []

    for span in spans:
        if span.kind == "spacing":
            continue
        speaker = span.speaker or UNKNOWN_SPEAKER
        if current_speaker is not None and speaker != current_speaker:
            _flush(current_speaker, current_words, utterances)
            current_words = []
        current_speaker = speaker
        current_words.append(span)
        if span.kind == "word" and _SENTENCE_END_RE.search(span.text.strip()):
            _flush(current_speaker, current_words, utterances)
            current_words = []

    if current_speaker is not None:
        _flush(current_speaker, current_words, utterances)
    return utterances


def parse_pass(transcript: TranscriptPass) -> list[PassUtterance]:
    return parse_spans(transcript.spans)


def _fmt_ts(seconds: float) -> str:
    return f"{seconds:.2f}"


def format_transcript(utterances: Sequence[object]) -> str:
    """Render ``[NN] speaker | start-end | text`` lines for anything with those attributes."""
    lines: list[str] = []
    for idx, utt in enumerate(utterances):
        speaker = getattr(utt, "speaker", UNKNOWN_SPEAKER)
        start = float(getattr(utt, "start", 0.0))
        end = float(getattr(utt, "end", start))
        text = getattr(utt, "text", "")
        lines.append(f"[{idx:02d}] {speaker} | {_fmt_ts(start)}-{_fmt_ts(end)} | {text}")
    return "\n".join(lines)
