import asyncio
import json
from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from recorder.models.base import engine
from recorder.models.meeting import Meeting
from recorder.repositories.dictionary import DictionaryRepository
from recorder.repositories.meetings import MeetingsRepository
from recorder.repositories.suggestions import SuggestionsRepository
from recorder.services.finalization import (
    SUMMARY_FAILED_WARNING,
    FinalizationError,
    FinalizationWorkflow,
    RecordingSnapshot,
)
from recorder.services.speech_client import SpeechServiceError
from recorder.services.suggestion_analyzer import SuggestionRecord
from recorder.services.storage import StorageError

FIXED_NOW = datetime(2025, 3, 14, 10, 30, 5)

CHUNKS = [
    "Bonjour à tous, on commence par le budget du trimestre.",
    "Le budjet marketing passe à vingt mille euros.",
    "Ensuite le planning de la démo client.",
]


def _snapshot(chunks=CHUNKS, suggestions=None, title=None, payload=b"RIFF-audio"):
    return RecordingSnapshot(
        user_id="user-1",
        duration=420,
        chunks=list(chunks),
        live_transcript=" ".join(chunks),
        suggestions=suggestions or [],
        load_audio=lambda: payload,
        title=title,
        notes="Notes prises pendant la réunion",
        audio_format="wav",
    )


def _workflow(speech, storage, settings):
    return FinalizationWorkflow(speech, storage, settings=settings, now=lambda: FIXED_NOW)


def _run(workflow, snapshot, mode="short", states=None):
    async def scenario():
        result = await workflow.run(snapshot, mode, on_state=(states.append if states is not None else None))
        url = await result.upload_task
        return result, url

    return asyncio.run(scenario())


def _meeting(meeting_id):
    with Session(engine) as session:
        return MeetingsRepository(session).get(meeting_id)


def test_meeting_is_stored_with_summary(speech, storage, settings):
    states = []
    result, _ = _run(_workflow(speech, storage, settings), _snapshot(), states=states)

    meeting = _meeting(result.meeting_id)
    assert meeting.title == "Point budget"
    assert meeting.summary == "Résumé de la réunion."
    assert meeting.summary_short == "Résumé de la réunion."
    assert meeting.summary_detailed is None
    assert meeting.summary_failed is False
    assert meeting.duration == 420
    assert "--- 15s ---" in meeting.display_transcript
    assert "--- 45s ---" in meeting.display_transcript
    assert meeting.transcript.endswith(".")
    assert states == ["finalizing_transcript", "finalizing_summary"]


def test_user_title_wins_over_generated_one(speech, storage, settings):
    result, _ = _run(_workflow(speech, storage, settings), _snapshot(title="Comité de pilotage"))

    assert _meeting(result.meeting_id).title == "Comité de pilotage"


def test_transcript_is_durable_before_summary_is_requested(speech, storage, settings):
    seen = []
    original = speech.generate_summary

    def generate_summary(transcript, user_id=None, attempt=0, mode="short"):
        with Session(engine) as session:
            rows = list(session.exec(select(Meeting)))
        seen.extend((row.transcript, row.summary) for row in rows)
        return original(transcript, user_id, attempt, mode)

    speech.generate_summary = generate_summary
    _run(_workflow(speech, storage, settings), _snapshot())

    assert len(seen) == 1
    transcript, summary = seen[0]
    assert transcript
    assert summary is None


def test_summary_failure_keeps_the_meeting(speech, storage, settings, speech_error):
    speech.summary = speech_error
    states = []

    result, _ = _run(_workflow(speech, storage, settings), _snapshot(), states=states)

    assert result.summary_failed is True
    assert result.warning == SUMMARY_FAILED_WARNING
    assert result.title == "Réunion du 14/03/2025"
    meeting = _meeting(result.meeting_id)
    assert meeting.summary_failed is True
    assert meeting.summary is None
    assert meeting.summary_short is None
    assert meeting.summary_detailed is None
    assert meeting.transcript == result.transcript
    assert meeting.display_transcript == result.display_transcript
    assert states[-1] == "summary_failed"


def test_without_live_transcript_the_full_recording_is_transcribed(speech, storage, settings):
    result, _ = _run(_workflow(speech, storage, settings), _snapshot(chunks=["trop court"]))

    assert "recording.wav" in speech.transcribe_calls
    assert result.transcript == speech.full_transcript
    assert result.display_transcript == speech.full_transcript


def test_full_transcription_failure_raises_and_stores_nothing(speech, storage, settings):
    speech.full_transcript = SpeechServiceError("Transcription error: 500")

    with pytest.raises(FinalizationError):
        _run(_workflow(speech, storage, settings), _snapshot(chunks=[]))

    with Session(engine) as session:
        assert list(session.exec(select(Meeting))) == []


def test_insert_failure_raises_before_any_summary(speech, storage, settings, monkeypatch):
    def broken_create(self, meeting):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(MeetingsRepository, "create", broken_create)

    with pytest.raises(FinalizationError):
        _run(_workflow(speech, storage, settings), _snapshot())
    assert speech.summary_calls == []


def test_detailed_mode_fills_detailed_column(speech, storage, settings):
    result, _ = _run(_workflow(speech, storage, settings), _snapshot(), mode="detailed")

    meeting = _meeting(result.meeting_id)
    assert meeting.summary_mode == "detailed"
    assert meeting.summary_detailed == "Résumé de la réunion."
    assert meeting.summary_short is None
    assert speech.summary_calls[0][3] == "detailed"


def test_suggestions_are_deduplicated_before_insert(speech, storage, settings):
    suggestions = [
        SuggestionRecord(1, ["Pourriez-vous préciser le budget ?"], ["Budget marketing"]),
        SuggestionRecord(2, ["Pouvez-vous préciser le budget?", "Qui présente la démo ?"], ["budget marketing"]),
    ]

    result, _ = _run(_workflow(speech, storage, settings), _snapshot(suggestions=suggestions))

    assert result.clarifications_saved == 2
    assert result.topics_saved == 1
    with Session(engine) as session:
        repo = SuggestionsRepository(session)
        assert [c.content for c in repo.list_clarifications(result.meeting_id)] == [
            "Pourriez-vous préciser le budget ?",
            "Qui présente la démo ?",
        ]
        assert [t.topic for t in repo.list_topics(result.meeting_id)] == ["Budget marketing"]
    raw = json.loads(_meeting(result.meeting_id).suggestions)
    assert [r["segment_number"] for r in raw] == [1, 2]


def test_audio_is_uploaded_and_linked(speech, storage, settings):
    result, url = _run(_workflow(speech, storage, settings), _snapshot())

    path = "user-1/2025-03-14/reunion_10-30-05.wav"
    assert storage.exists(path)
    assert url == storage.public_url(path)
    assert _meeting(result.meeting_id).audio_url == url


def test_same_second_recordings_get_distinct_paths(speech, storage, settings):
    storage.upload("user-1/2025-03-14/reunion_10-30-05.wav", b"already there")

    result, url = _run(_workflow(speech, storage, settings), _snapshot())

    path = "user-1/2025-03-14/reunion_10-30-05-2.wav"
    assert storage.exists(path)
    assert url == storage.public_url(path)
    assert _meeting(result.meeting_id).audio_url == url


def test_upload_failure_does_not_raise(speech, storage, settings, monkeypatch):
    def refuse(path, data):
        raise StorageError(f"Upload failed for {path}")

    monkeypatch.setattr(storage, "upload", refuse)

    result, url = _run(_workflow(speech, storage, settings), _snapshot())

    assert url is None
    assert _meeting(result.meeting_id).audio_url is None


def test_dictionary_corrections_apply_to_both_transcripts(speech, storage, settings):
    with Session(engine) as session:
        DictionaryRepository(session).upsert("user-1", "Budjet", "budget")

    result, _ = _run(_workflow(speech, storage, settings), _snapshot())

    assert "budjet" not in result.transcript.lower()
    assert "budjet" not in result.display_transcript.lower()
    assert "Le budget marketing" in result.display_transcript
