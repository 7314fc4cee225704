from __future__ import annotations

import asyncio
import bisect
import logging
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Set, Tuple

from recorder.services.suggestion_analyzer import LiveSuggestionAnalyzer
from recorder.services.transcript_cleaning import is_duplicate_chunk

logger = logging.getLogger("recorder.rolling")

SnapshotFn = Callable[[float], bytes]
TranscribeFn = Callable[[bytes, float, str], str]


class RollingTranscriptionDriver:
    """Transcribes the trailing audio window on a fixed cadence.

    Every tick gets a sequence number when it is scheduled. Ticks run as
    independent tasks, so a slow request never delays the next window; accepted
    chunks are inserted by sequence number to keep recording order even when
    responses come back out of order.
    """

    def __init__(
        self,
        snapshot: SnapshotFn,
        transcribe: TranscribeFn,
        analyzer: Optional[LiveSuggestionAnalyzer] = None,
        window_seconds: int = 15,
        min_window_bytes: int = 5000,
        min_chunk_chars: int = 5,
    ) -> None:
        self._snapshot = snapshot
        self._transcribe = transcribe
        self._analyzer = analyzer
        self.window_seconds = window_seconds
        self.min_window_bytes = min_window_bytes
        self.min_chunk_chars = min_chunk_chars

        self._entries: List[Tuple[int, str]] = []
        self._recent: Deque[str] = deque(maxlen=2)
        self.live_transcript: str = ""
        self._next_seq = 0
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()

    @property
    def chunks(self) -> List[str]:
        return [text for _, text in self._entries]

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run_timer())

    def stop(self) -> None:
        """Stop scheduling windows. In-flight ticks finish on their own."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            self._schedule_tick()

    def _schedule_tick(self) -> asyncio.Task:
        seq = self._next_seq
        self._next_seq += 1
        task = asyncio.create_task(self.process_window(seq))
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def process_window(self, seq: Optional[int] = None) -> Optional[str]:
        """Capture, transcribe and fold in one window. Returns the accepted chunk."""
        if seq is None:
            seq = self._next_seq
            self._next_seq += 1
        generation = self._generation
        try:
            clip = await asyncio.to_thread(self._snapshot, float(self.window_seconds))
            if not clip or len(clip) < self.min_window_bytes:
                return None
            logger.info("Transcribing window", extra={"seq": seq, "kb": len(clip) // 1024})
            filename = f"window{self.window_seconds}s_{int(time.time() * 1000)}.wav"
            text = await asyncio.to_thread(self._transcribe, clip, 0, filename)
        except Exception:
            logger.warning("Window transcription failed, skipping", extra={"seq": seq}, exc_info=True)
            return None
        if generation != self._generation:
            return None
        return self.accept_chunk(text, seq)

    def accept_chunk(self, text: str, seq: Optional[int] = None) -> Optional[str]:
        cleaned = (text or "").strip()
        if len(cleaned) <= self.min_chunk_chars:
            return None
        if is_duplicate_chunk(cleaned, self.chunks):
            logger.debug("Duplicate chunk ignored", extra={"seq": seq})
            return None
        if seq is None:
            seq = self._next_seq
            self._next_seq += 1
        bisect.insort(self._entries, (seq, cleaned))
        self.live_transcript = " ".join(self.chunks).strip()

        self._recent.append(cleaned)
        if self._analyzer is not None:
            self._analyzer.submit(" ".join(self._recent).strip())
        return cleaned

    async def drain(self, timeout: Optional[float] = None) -> None:
        pending = list(self._ticks)
        if pending:
            await asyncio.wait(pending, timeout=timeout)

    def reset(self) -> None:
        self.stop()
        self._generation += 1
        self._entries = []
        self._recent.clear()
        self.live_transcript = ""
        self._next_seq = 0
