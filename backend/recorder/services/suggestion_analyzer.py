from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger("recorder.suggestions")

AnalyzeFn = Callable[[str], Dict[str, List[str]]]


@dataclass(frozen=True)
class SuggestionRecord:
    segment_number: int
    suggestions: List[str] = field(default_factory=list)
    topics_to_explore: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "segment_number": self.segment_number,
            "suggestions": list(self.suggestions),
            "topics_to_explore": list(self.topics_to_explore),
        }


class LiveSuggestionAnalyzer:
    """Requests clarification questions for recent transcript windows.

    Each submission runs as its own task so a slow answer never holds up the
    transcription cadence. Results are kept ordered by segment number.
    """

    def __init__(self, analyze: AnalyzeFn) -> None:
        self._analyze = analyze
        self._segment = 0
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self.records: List[SuggestionRecord] = []

    def submit(self, text: str) -> Optional[asyncio.Task]:
        text = (text or "").strip()
        if not text:
            return None
        self._segment += 1
        task = asyncio.create_task(self.analyze(text, self._segment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def analyze(self, text: str, segment_number: int) -> Optional[SuggestionRecord]:
        generation = self._generation
        try:
            result = await asyncio.to_thread(self._analyze, text)
        except Exception:
            logger.warning("Suggestion analysis failed", extra={"segment": segment_number}, exc_info=True)
            return None
        if generation != self._generation:
            # Session was reset while the request was in flight
            return None
        suggestions = list(result.get("suggestions") or [])
        topics = list(result.get("topics_to_explore") or [])
        if not suggestions and not topics:
            return None
        record = SuggestionRecord(segment_number=segment_number, suggestions=suggestions, topics_to_explore=topics)
        self.records.append(record)
        self.records.sort(key=lambda r: r.segment_number)
        return record

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight analyses, giving up silently after ``timeout``."""
        pending = list(self._tasks)
        if not pending:
            return
        await asyncio.wait(pending, timeout=timeout)

    def snapshot(self) -> List[SuggestionRecord]:
        return list(self.records)

    def clear(self) -> None:
        self._generation += 1
        self._segment = 0
        self.records = []
