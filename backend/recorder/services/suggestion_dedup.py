"""Near-duplicate filtering of AI-generated questions before they are stored.

The live analyzer tends to ask the same question many times with small
wording changes ("Pourriez-vous préciser le budget ?" / "Est-ce que le budget
est précisé ?"). Before persistence every text is reduced to a canonical token
string and compared pairwise with Jaccard similarity.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence

from recorder.services.suggestion_analyzer import SuggestionRecord

JACCARD_THRESHOLD = 0.8

BOILERPLATE_PATTERNS = [
    re.compile(r"^pourriez[-\s]vous\s+", re.IGNORECASE),
    re.compile(r"^est[-\s]ce\s+que\s+", re.IGNORECASE),
    re.compile(r"^est[-\s]il\s+possible\s+de\s+", re.IGNORECASE),
    re.compile(r"^pourrait[-\s]on\s+", re.IGNORECASE),
    re.compile(r"^peut[-\s]on\s+", re.IGNORECASE),
    re.compile(r"^serait[-\s]il\s+utile\s+de\s+", re.IGNORECASE),
    re.compile(r"^pouvez[-\s]vous\s+", re.IGNORECASE),
]

STOPWORDS = frozenset(
    """
    le la les de des du un une et ou dans au aux pour sur avec chez par que qui quoi dont
    leur leurs vos nos ses son sa ce cette ces il elle ils elles on nous vous est sont sera
    etre ete devoir falloir faire peut possible utile
    """.split()
)

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_TRAILING_PUNCT_RE = re.compile(r"[?.!]+$")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def _lower(text: str) -> str:
    return str(text).strip().lower()


def _trim_punctuation(text: str) -> str:
    return _TRAILING_PUNCT_RE.sub("", text)


def _strip_boilerplate(text: str) -> str:
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)
    return text


def _drop_stopwords(text: str) -> str:
    tokens = [t for t in _TOKEN_SPLIT_RE.split(text) if t and t not in STOPWORDS]
    return " ".join(tokens)


# Applied in order to the candidate text
CANONICAL_PIPELINE: List[Callable[[str], str]] = [
    _lower,
    strip_diacritics,
    _trim_punctuation,
    _strip_boilerplate,
    _drop_stopwords,
]


def canonicalize(raw: str) -> str:
    text = raw or ""
    for step in CANONICAL_PIPELINE:
        text = step(text)
    return text


def jaccard(a: str, b: str) -> float:
    set_a = set(a.split(" "))
    set_b = set(b.split(" "))
    union = len(set_a | set_b) or 1
    return len(set_a & set_b) / union


@dataclass
class UniqueSuggestion:
    text: str
    segment_number: int
    canonical: str


def dedupe(items: Iterable[tuple[str, int]], threshold: float = JACCARD_THRESHOLD) -> List[UniqueSuggestion]:
    """Keep the first of every group of near-identical texts.

    ``items`` yields ``(raw text, segment number)`` pairs in display order.
    Texts whose canonical form is empty are dropped.
    """
    kept: List[UniqueSuggestion] = []
    for raw, segment_number in items:
        canon = canonicalize(raw)
        if not canon:
            continue
        if any(jaccard(k.canonical, canon) >= threshold for k in kept):
            continue
        kept.append(UniqueSuggestion(text=str(raw).strip(), segment_number=segment_number, canonical=canon))
    return kept


def unique_clarifications(records: Sequence[SuggestionRecord]) -> List[UniqueSuggestion]:
    return dedupe((text, r.segment_number) for r in records for text in (r.suggestions or []))


def unique_topics(records: Sequence[SuggestionRecord]) -> List[UniqueSuggestion]:
    return dedupe((text, r.segment_number) for r in records for text in (r.topics_to_explore or []))
