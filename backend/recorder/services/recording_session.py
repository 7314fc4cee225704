from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from recorder.config import Settings
from recorder.models.app_settings import SUMMARY_MODES
from recorder.models.base import utc_now
from recorder.services.audio_capture import AudioSource
from recorder.services.finalization import FinalizationResult, FinalizationWorkflow, RecordingSnapshot
from recorder.services.quota import QuotaSource, exceeds_during_recording
from recorder.services.rolling_transcription import RollingTranscriptionDriver
from recorder.services.speech_client import SpeechClient
from recorder.services.suggestion_analyzer import LiveSuggestionAnalyzer
from recorder.services.transcript_cleaning import recommend_summary_mode

logger = logging.getLogger("recorder.session")

SubscriptionLoader = Callable[[str], Optional[QuotaSource]]

PROCESSING_ERROR_MESSAGE = "Une erreur est survenue lors du traitement."


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
    FINALIZING_TRANSCRIPT = "finalizing_transcript"
    FINALIZING_SUMMARY = "finalizing_summary"
    SUMMARY_FAILED = "summary_failed"
    DONE = "done"
    DISCARDED = "discarded"


ACTIVE_STATES = {SessionState.RECORDING, SessionState.PAUSED}
FINISHED_STATES = {SessionState.DONE, SessionState.DISCARDED}


class InvalidTransition(RuntimeError):
    pass


class SessionNotFound(KeyError):
    pass


@dataclass
class SessionEvent:
    kind: str  # long_recording_reminder | recording_limit_reached | quota_reached | short_recording | processing_error
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utc_now)


@dataclass
class StopDecision:
    status: str  # needs_confirmation | needs_summary_mode | stopped
    elapsed_seconds: int
    recommended_mode: Optional[str] = None
    word_estimate: int = 0


class RecordingSessionController:
    """Owns one recording: timers, reminders, quota polling and the stop policy."""

    def __init__(
        self,
        session_id: str,
        user_id: str,
        audio: AudioSource,
        speech: SpeechClient,
        finalizer: FinalizationWorkflow,
        load_subscription: SubscriptionLoader,
        settings: Optional[Settings] = None,
        title: Optional[str] = None,
        notes: Optional[str] = None,
        default_summary_mode: Optional[str] = None,
        language: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or Settings()
        self.session_id = session_id
        self.user_id = user_id
        self.title = title
        self.notes = notes
        self.default_summary_mode = default_summary_mode if default_summary_mode in SUMMARY_MODES else None
        self._audio = audio
        self._finalizer = finalizer
        self._load_subscription = load_subscription
        self._clock = clock

        transcribe = speech.transcribe_audio
        if language:
            transcribe = functools.partial(speech.transcribe_audio, language=language)

        self.analyzer = LiveSuggestionAnalyzer(speech.analyze_partial_transcript)
        self.driver = RollingTranscriptionDriver(
            snapshot=audio.snapshot_wav,
            transcribe=transcribe,
            analyzer=self.analyzer,
            window_seconds=self._settings.window_seconds,
            min_window_bytes=self._settings.min_window_bytes,
            min_chunk_chars=self._settings.min_chunk_chars,
        )

        self.state = SessionState.IDLE
        self.events: List[SessionEvent] = []
        self.result: Optional[FinalizationResult] = None
        self._accumulated = 0.0
        self._active_since: Optional[float] = None
        self._reminder_sent = False
        self._limit_reached = False
        self._processing = False
        self._quota_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._finalize_task: Optional[asyncio.Task] = None
        self._audio_stopping: Optional[asyncio.Future] = None

    # -- clock ---------------------------------------------------------------

    @property
    def elapsed_seconds(self) -> int:
        running = self._clock() - self._active_since if self._active_since is not None else 0.0
        return int(self._accumulated + running)

    def _freeze_clock(self) -> None:
        if self._active_since is not None:
            self._accumulated += self._clock() - self._active_since
            self._active_since = None

    def _emit(self, kind: str, message: str, **data: Any) -> SessionEvent:
        event = SessionEvent(kind=kind, message=message, data=data)
        self.events.append(event)
        logger.info("Session event", extra={"session": self.session_id, "kind": kind})
        return event

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise InvalidTransition(f"Cannot do that while {self.state.value}")

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self._require(SessionState.IDLE)
        await asyncio.to_thread(self._audio.start)
        self.state = SessionState.RECORDING
        self._active_since = self._clock()
        self.driver.start()
        self._start_quota_polling()
        self._watch_task = asyncio.create_task(self._watch_duration())
        logger.info("Recording started", extra={"session": self.session_id, "user": self.user_id})

    def pause(self) -> None:
        self._require(SessionState.RECORDING)
        self._freeze_clock()
        self._audio.pause()
        self.driver.stop()
        self.state = SessionState.PAUSED

    def resume(self) -> None:
        self._require(SessionState.PAUSED)
        self._audio.resume()
        self._active_since = self._clock()
        self.state = SessionState.RECORDING
        self.driver.start()
        self._start_quota_polling()

    async def request_stop(self, mode: Optional[str] = None) -> StopDecision:
        """Stop unless the recording is too short to be worth keeping.

        A short recording leaves the session running and asks the caller to
        either ``continue_recording()`` or ``discard()``.
        """
        self._require(*ACTIVE_STATES)
        elapsed = self.elapsed_seconds
        if elapsed < self._settings.min_recording_seconds:
            self._emit("short_recording", "Enregistrement trop court", elapsed_seconds=elapsed)
            return StopDecision(status="needs_confirmation", elapsed_seconds=elapsed)
        await self._halt()
        return self.summary_mode_decision(mode)

    stop = request_stop

    def summary_mode_decision(self, mode: Optional[str] = None) -> StopDecision:
        elapsed = self.elapsed_seconds
        recommended, words = recommend_summary_mode(elapsed, self.driver.live_transcript)
        if self.resolve_summary_mode(mode) is None:
            return StopDecision(
                status="needs_summary_mode",
                elapsed_seconds=elapsed,
                recommended_mode=recommended,
                word_estimate=words,
            )
        return StopDecision(status="stopped", elapsed_seconds=elapsed, recommended_mode=recommended, word_estimate=words)

    def resolve_summary_mode(self, mode: Optional[str] = None) -> Optional[str]:
        if mode in SUMMARY_MODES:
            return mode
        return self.default_summary_mode

    def continue_recording(self) -> None:
        """The user chose to keep going after a too-short stop request."""
        self._require(*ACTIVE_STATES)

    async def discard(self) -> None:
        self._require(*ACTIVE_STATES, SessionState.STOPPING)
        if self.state in ACTIVE_STATES:
            await self._halt()
        self._reset_live_state()
        self.state = SessionState.DISCARDED
        logger.info("Recording discarded", extra={"session": self.session_id})

    async def _halt(self) -> None:
        self._freeze_clock()
        self.driver.stop()
        for task in (self._quota_task, self._watch_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self._quota_task = None
        self._watch_task = None
        self.state = SessionState.STOPPING
        # Closing the device can block for a second, keep it off the loop
        self._audio_stopping = asyncio.ensure_future(asyncio.to_thread(self._audio.stop))
        info = await self._audio_stopping or {}
        logger.info(
            "Recording stopped",
            extra={"session": self.session_id, "elapsed": self.elapsed_seconds, "frames": info.get("frames")},
        )

    def _reset_live_state(self) -> None:
        self.driver.reset()
        self.analyzer.clear()

    async def dispose(self) -> None:
        if self.state in ACTIVE_STATES:
            await self._halt()
        for task in (self._quota_task, self._watch_task):
            if task is not None:
                task.cancel()
        self.driver.stop()
        if self._finalize_task is not None:
            await asyncio.wait([self._finalize_task])

    # -- quota and duration --------------------------------------------------

    def _start_quota_polling(self) -> None:
        if self._quota_task is None or self._quota_task.done():
            self._quota_task = asyncio.create_task(self._poll_quota())

    async def _poll_quota(self) -> None:
        while self.state == SessionState.RECORDING:
            if await self.check_quota():
                return
            await asyncio.sleep(self._settings.quota_check_seconds)

    async def check_quota(self) -> bool:
        """Pause the session when this recording would exhaust the monthly quota."""
        try:
            subscription = await asyncio.to_thread(self._load_subscription, self.user_id)
        except Exception:
            logger.warning("Quota check failed", extra={"session": self.session_id}, exc_info=True)
            return False
        if self.state != SessionState.RECORDING:
            return False
        if not exceeds_during_recording(subscription, self.elapsed_seconds):
            return False
        logger.warning("Quota reached during recording, pausing", extra={"session": self.session_id})
        self.pause()
        self._emit(
            "quota_reached",
            "Quota de minutes atteint, l'enregistrement est en pause.",
            minutes_used=subscription.minutes_used_this_month,
            quota=subscription.minutes_quota,
        )
        return True

    async def _watch_duration(self) -> None:
        while self.state in ACTIVE_STATES:
            await self.check_duration()
            if self.state not in ACTIVE_STATES:
                return
            await asyncio.sleep(1)

    async def check_duration(self) -> None:
        if self.state != SessionState.RECORDING:
            return
        elapsed = self.elapsed_seconds
        if not self._reminder_sent and elapsed >= self._settings.reminder_seconds:
            self._reminder_sent = True
            self._emit(
                "long_recording_reminder",
                "Vous enregistrez depuis plus de 2 heures. Besoin d'une pause ?",
                elapsed_seconds=elapsed,
            )
        if not self._limit_reached and elapsed >= self._settings.recording_limit_seconds:
            self._limit_reached = True
            self._emit(
                "recording_limit_reached",
                "Votre enregistrement de 4h est terminé. Nous générons le résumé.",
                elapsed_seconds=elapsed,
            )
            await self._halt()
            mode = self.default_summary_mode or recommend_summary_mode(elapsed, self.driver.live_transcript)[0]
            self._finalize_task = asyncio.create_task(self._finalize_in_background(mode))

    # -- finalize ------------------------------------------------------------

    def _set_state(self, value: str) -> None:
        self.state = SessionState(value)

    async def finalize(self, mode: str) -> Optional[FinalizationResult]:
        if self._processing:
            logger.info("Finalize already running, ignoring", extra={"session": self.session_id})
            return None
        self._require(SessionState.STOPPING)
        if mode not in SUMMARY_MODES:
            raise ValueError(f"Unknown summary mode: {mode}")

        self._processing = True
        try:
            if self._audio_stopping is not None:
                await asyncio.wait([self._audio_stopping])
            await self.driver.drain(timeout=self._settings.request_timeout)
            await self.analyzer.drain(timeout=self._settings.request_timeout)
            snapshot = RecordingSnapshot(
                user_id=self.user_id,
                duration=self.elapsed_seconds,
                chunks=self.driver.chunks,
                live_transcript=self.driver.live_transcript,
                suggestions=self.analyzer.snapshot(),
                load_audio=self._audio.export_audio,
                title=self.title,
                notes=self.notes,
                audio_format=getattr(self._audio, "audio_format", "webm"),
            )
            try:
                result = await self._finalizer.run(snapshot, mode, on_state=self._set_state)
            except Exception:
                # Keep the recording so the caller can retry
                self.state = SessionState.STOPPING
                raise
        finally:
            self._processing = False

        self.result = result
        self._reset_live_state()
        self.state = SessionState.DONE
        return result

    async def _finalize_in_background(self, mode: str) -> None:
        try:
            await self.finalize(mode)
        except Exception:
            logger.exception("Automatic finalize failed", extra={"session": self.session_id})
            self._emit("processing_error", PROCESSING_ERROR_MESSAGE, summary_mode=mode)

    def status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "elapsed_seconds": self.elapsed_seconds,
            "chunks": self.driver.chunks,
            "live_transcript": self.driver.live_transcript,
            "suggestions": [r.to_dict() for r in self.analyzer.records],
            "events": [
                {"kind": e.kind, "message": e.message, "data": e.data, "at": e.at.isoformat()}
                for e in self.events
            ],
            "meeting_id": self.result.meeting_id if self.result else None,
        }


_sessions: Dict[str, RecordingSessionController] = {}


def register_session(controller: RecordingSessionController) -> None:
    prune_finished_sessions()
    _sessions[controller.session_id] = controller


def prune_finished_sessions() -> int:
    """Forget controllers whose recording is saved or thrown away; the meeting row outlives them."""
    finished = [sid for sid, c in _sessions.items() if c.state in FINISHED_STATES]
    for sid in finished:
        del _sessions[sid]
    return len(finished)


def get_session_controller(session_id: str) -> RecordingSessionController:
    controller = _sessions.get(session_id)
    if controller is None:
        raise SessionNotFound(session_id)
    return controller


def active_session_for_user(user_id: str) -> Optional[RecordingSessionController]:
    for controller in _sessions.values():
        if controller.user_id == user_id and controller.state in ACTIVE_STATES:
            return controller
    return None


def remove_session(session_id: str) -> Optional[RecordingSessionController]:
    return _sessions.pop(session_id, None)
