"""Stop-time pipeline: transcript → durable meeting row → summary → audio upload.

The meeting row is written with its transcripts before the summary service is
called, so a summary failure can only ever leave a meeting without a summary,
never a lost transcript.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from recorder.config import Settings
from recorder.models.meeting import Meeting
from recorder.models.suggestion import MeetingClarification, MeetingTopic
from recorder.repositories.dictionary import DictionaryRepository
from recorder.repositories.meetings import MeetingsRepository
from recorder.repositories.settings import get_user_settings
from recorder.repositories.suggestions import SuggestionsRepository
from recorder.services.dictionary import apply_corrections
from recorder.services.speech_client import SpeechClient, SummaryResult
from recorder.services.storage import AudioStorage, StorageError, build_audio_path
from recorder.services.suggestion_analyzer import SuggestionRecord
from recorder.services.suggestion_dedup import unique_clarifications, unique_topics
from recorder.services.transcript_cleaning import clean_transcript, format_transcript_with_separators

logger = logging.getLogger("recorder.finalize")

SUMMARY_FAILED_WARNING = (
    "Votre réunion a été sauvegardée avec la transcription, mais la génération du résumé a échoué. "
    "Vous pouvez régénérer le résumé depuis les détails de la réunion."
)

StateCallback = Callable[[str], None]


class FinalizationError(RuntimeError):
    pass


@dataclass
class RecordingSnapshot:
    """Everything finalize needs from a stopped session."""

    user_id: str
    duration: int
    chunks: List[str]
    live_transcript: str
    suggestions: List[SuggestionRecord]
    load_audio: Callable[[], bytes]
    title: Optional[str] = None
    notes: Optional[str] = None
    audio_format: str = "webm"


@dataclass
class FinalizationResult:
    meeting_id: int
    title: str
    transcript: str
    display_transcript: str
    summary_mode: str
    summary: Optional[str] = None
    summary_failed: bool = False
    warning: Optional[str] = None
    clarifications_saved: int = 0
    topics_saved: int = 0
    upload_task: Optional["asyncio.Task[Optional[str]]"] = field(default=None, repr=False)


def _default_session_factory() -> Session:
    from recorder.models.base import engine

    return Session(engine)


class FinalizationWorkflow:
    def __init__(
        self,
        speech: SpeechClient,
        storage: AudioStorage,
        session_factory: Callable[[], Session] = _default_session_factory,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._speech = speech
        self._storage = storage
        self._session_factory = session_factory
        self._settings = settings or Settings()
        self._now = now

    async def run(
        self,
        snapshot: RecordingSnapshot,
        mode: str,
        on_state: Optional[StateCallback] = None,
    ) -> FinalizationResult:
        notify = on_state or (lambda _state: None)

        notify("finalizing_transcript")
        transcript, display = await self.build_transcripts(snapshot)
        transcript, display = await asyncio.to_thread(self._apply_dictionary, snapshot.user_id, transcript, display)

        provisional_title = snapshot.title or f"Réunion du {self._now():%d/%m/%Y}"
        try:
            meeting_id = await asyncio.to_thread(
                self._insert_draft, snapshot, mode, provisional_title, transcript, display
            )
        except SQLAlchemyError as exc:
            logger.exception("Meeting insert failed")
            raise FinalizationError("Une erreur est survenue lors du traitement.") from exc
        logger.info("Meeting stored before summary", extra={"meeting_id": meeting_id})

        notify("finalizing_summary")
        summary, title, failed = await self._summarize(meeting_id, transcript, snapshot, mode, provisional_title)
        if failed:
            notify("summary_failed")

        clarifications, topics = await asyncio.to_thread(self._persist_suggestions, meeting_id, snapshot)

        result = FinalizationResult(
            meeting_id=meeting_id,
            title=title,
            transcript=transcript,
            display_transcript=display,
            summary_mode=mode,
            summary=summary,
            summary_failed=failed,
            warning=SUMMARY_FAILED_WARNING if failed else None,
            clarifications_saved=clarifications,
            topics_saved=topics,
        )
        result.upload_task = asyncio.create_task(self.upload_audio(meeting_id, snapshot))
        return result

    async def build_transcripts(self, snapshot: RecordingSnapshot) -> Tuple[str, str]:
        """Return (clean transcript for the summary, display transcript)."""
        live = (snapshot.live_transcript or "").strip()
        if len(live) > self._settings.live_transcript_min_chars:
            display = format_transcript_with_separators(snapshot.chunks, self._settings.window_seconds)
            if not display.strip():
                display = clean_transcript(live)
            transcript = clean_transcript(" ".join(snapshot.chunks).strip())
            return transcript, display

        # Nothing usable was accumulated live: transcribe the whole recording
        try:
            audio = await asyncio.to_thread(snapshot.load_audio)
            text = await asyncio.to_thread(
                self._speech.transcribe_audio, audio, 0, f"recording.{snapshot.audio_format}"
            )
        except Exception as exc:
            logger.exception("Full recording transcription failed")
            raise FinalizationError("Une erreur est survenue lors du traitement.") from exc
        return text, text

    def _apply_dictionary(self, user_id: str, transcript: str, display: str) -> Tuple[str, str]:
        with self._session_factory() as session:
            prefs = get_user_settings(session, user_id)
            if not prefs.get("transcription", {}).get("apply_dictionary", True):
                return transcript, display
            entries = [(e.incorrect_word, e.correct_word) for e in DictionaryRepository(session).list_for_user(user_id)]
        if not entries:
            return transcript, display
        return apply_corrections(transcript, entries), apply_corrections(display, entries)

    def _insert_draft(
        self,
        snapshot: RecordingSnapshot,
        mode: str,
        title: str,
        transcript: str,
        display: str,
    ) -> int:
        meeting = Meeting(
            user_id=snapshot.user_id,
            title=title,
            transcript=transcript,
            display_transcript=display,
            summary=None,
            summary_short=None,
            summary_detailed=None,
            summary_mode=mode,
            summary_regenerated=False,
            duration=snapshot.duration,
            notes=snapshot.notes or None,
            suggestions=json.dumps([s.to_dict() for s in snapshot.suggestions], ensure_ascii=False),
            audio_url=None,
        )
        with self._session_factory() as session:
            meeting = MeetingsRepository(session).create(meeting)
            return int(meeting.id)  # type: ignore[arg-type]

    async def _summarize(
        self,
        meeting_id: int,
        transcript: str,
        snapshot: RecordingSnapshot,
        mode: str,
        provisional_title: str,
    ) -> Tuple[Optional[str], str, bool]:
        try:
            result: SummaryResult = await asyncio.to_thread(
                self._speech.generate_summary, transcript, snapshot.user_id, 0, mode
            )
        except Exception:
            logger.warning("Summary generation failed, meeting kept", extra={"meeting_id": meeting_id}, exc_info=True)
            await asyncio.to_thread(self._mark_summary_failed, meeting_id)
            return None, provisional_title, True

        title = snapshot.title or result.title or provisional_title
        try:
            await asyncio.to_thread(self._store_summary, meeting_id, mode, result.summary, title)
        except SQLAlchemyError:
            logger.exception("Summary update failed", extra={"meeting_id": meeting_id})
            await asyncio.to_thread(self._mark_summary_failed, meeting_id)
            return None, provisional_title, True
        return result.summary, title, False

    def _store_summary(self, meeting_id: int, mode: str, summary: Optional[str], title: str) -> None:
        with self._session_factory() as session:
            MeetingsRepository(session).patch(
                meeting_id,
                title=title,
                summary=summary,
                summary_short=summary if mode == "short" else None,
                summary_detailed=summary if mode == "detailed" else None,
                summary_failed=False,
            )

    def _mark_summary_failed(self, meeting_id: int) -> None:
        try:
            with self._session_factory() as session:
                MeetingsRepository(session).patch(meeting_id, summary_failed=True)
        except SQLAlchemyError:
            logger.warning("Could not flag summary failure", extra={"meeting_id": meeting_id}, exc_info=True)

    def _persist_suggestions(self, meeting_id: int, snapshot: RecordingSnapshot) -> Tuple[int, int]:
        clarifications = unique_clarifications(snapshot.suggestions)
        topics = unique_topics(snapshot.suggestions)
        try:
            with self._session_factory() as session:
                repo = SuggestionsRepository(session)
                if clarifications:
                    repo.add_clarifications(
                        MeetingClarification(
                            meeting_id=meeting_id,
                            content=c.text,
                            segment_number=c.segment_number,
                            user_id=snapshot.user_id,
                        )
                        for c in clarifications
                    )
                if topics:
                    repo.add_topics(
                        MeetingTopic(
                            meeting_id=meeting_id,
                            topic=t.text,
                            segment_number=t.segment_number,
                            user_id=snapshot.user_id,
                        )
                        for t in topics
                    )
        except SQLAlchemyError:
            logger.warning("Suggestion insert failed", extra={"meeting_id": meeting_id}, exc_info=True)
            return 0, 0
        return len(clarifications), len(topics)

    async def upload_audio(self, meeting_id: int, snapshot: RecordingSnapshot) -> Optional[str]:
        """Store the raw recording and link it to the meeting. Never raises."""
        path = build_audio_path(snapshot.user_id, snapshot.title, self._now(), snapshot.audio_format)
        try:
            audio = await asyncio.to_thread(snapshot.load_audio)
            if not audio:
                logger.info("No audio to upload", extra={"meeting_id": meeting_id})
                return None
            path = await asyncio.to_thread(self._storage.available_path, path)
            await asyncio.to_thread(self._storage.upload, path, audio)
            url = self._storage.public_url(path)
            await asyncio.to_thread(self._link_audio, meeting_id, url)
        except (StorageError, OSError, SQLAlchemyError):
            logger.exception("Background audio upload failed", extra={"meeting_id": meeting_id})
            return None
        logger.info("Audio uploaded and linked", extra={"meeting_id": meeting_id, "path": path})
        return url

    def _link_audio(self, meeting_id: int, url: str) -> None:
        with self._session_factory() as session:
            MeetingsRepository(session).patch(meeting_id, audio_url=url)
