"""Text helpers for the rolling transcript: chunk dedup, clean and display versions."""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Sequence

SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
MIN_SENTENCE_CHARS = 10

# A sentence filter gets the candidate and the sentences kept so far.
SentenceFilter = Callable[[str, Sequence[str]], bool]


def _normalize(text: str) -> str:
    return (text or "").strip().lower()


def overlaps(a: str, b: str) -> bool:
    """Case-insensitive equality or containment in either direction."""
    na, nb = _normalize(a), _normalize(b)
    return na == nb or na in nb or nb in na


def is_duplicate_chunk(text: str, existing: Iterable[str]) -> bool:
    return any(overlaps(prev, text) for prev in existing)


def _long_enough(sentence: str, kept: Sequence[str]) -> bool:
    return len(sentence) > MIN_SENTENCE_CHARS


def _not_overlapping(sentence: str, kept: Sequence[str]) -> bool:
    return not any(overlaps(prev, sentence) for prev in kept)


SENTENCE_FILTERS: List[SentenceFilter] = [_not_overlapping, _long_enough]


def clean_transcript(transcript: str) -> str:
    """Sentence-level dedup used for the summary input.

    Splits on sentence terminators, drops short sentences and sentences that
    contain or are contained in one already kept.
    """
    if not transcript:
        return ""
    sentences = [s.strip() for s in SENTENCE_SPLIT_RE.split(transcript)]
    kept: List[str] = []
    for sentence in sentences:
        if not sentence:
            continue
        if all(check(sentence, kept) for check in SENTENCE_FILTERS):
            kept.append(sentence)
    if not kept:
        return ""
    return ". ".join(kept).strip() + "."


def format_transcript_with_separators(chunks: Sequence[str], window_seconds: int = 15) -> str:
    parts: List[str] = []
    for index, chunk in enumerate(chunks or []):
        text = (chunk or "").strip()
        if not text:
            continue
        # Estimated end of the window this chunk came from
        parts.append(f"\n\n--- {index * window_seconds + window_seconds}s ---\n{text}")
    return "".join(parts)


def word_count(text: str) -> int:
    return len((text or "").split())


def recommend_summary_mode(elapsed_seconds: int, live_transcript: str) -> tuple[str, int]:
    """Return (recommended mode, estimated word count) for the stop prompt."""
    words = word_count(live_transcript)
    if elapsed_seconds < 5 * 60:
        return "short", words
    if 0 < words < 600:
        return "short", words
    return "detailed", words
