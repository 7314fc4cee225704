from __future__ import annotations

import re
from typing import Iterable, Tuple


def _word_pattern(word: str) -> "re.Pattern[str]":
    return re.compile(rf"\b{re.escape(word)}\b", re.IGNORECASE)


def apply_corrections(text: str, entries: Iterable[Tuple[str, str]]) -> str:
    """Replace every whole-word, case-insensitive occurrence of each wrong word."""
    corrected = text or ""
    for incorrect, correct in entries:
        if not incorrect:
            continue
        corrected = _word_pattern(incorrect).sub(lambda _m, c=correct: c, corrected)
    return corrected


def replace_word(text: str, word: str, replacement: str, replace_all: bool) -> str:
    if not word:
        return text
    if replace_all:
        return _word_pattern(word).sub(lambda _m: replacement, text)
    return text.replace(word, replacement, 1)
