"""
Pytest fixtures for the meeting recorder backend.

The ``MR_`` environment is pointed at a throwaway directory before any
``recorder`` module is imported, so the shared engine uses a temp database.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

_HOME = Path(tempfile.mkdtemp(prefix="meeting-recorder-tests-"))
os.environ["MR_APPDATA_DIR"] = str(_HOME)
os.environ["MR_DATA_DIR"] = str(_HOME / "data")
os.environ["MR_AUDIO_DIR"] = str(_HOME / "audio")
os.environ["MR_STORAGE_DIR"] = str(_HOME / "storage")
os.environ["MR_LOGS_DIR"] = str(_HOME / "logs")
os.environ["MR_DATABASE_PATH"] = str(_HOME / "data" / "test.db")

from sqlmodel import Session, SQLModel  # noqa: E402

from recorder.config import Settings  # noqa: E402
from recorder.models.base import engine, init_db  # noqa: E402
from recorder.services import recording_session  # noqa: E402
from recorder.services.speech_client import SpeechServiceError, SummaryResult  # noqa: E402
from recorder.services.storage import AudioStorage  # noqa: E402


class FakeSpeechClient:
    """Stands in for the hosted model endpoint."""

    def __init__(self) -> None:
        self.transcripts: List[object] = []
        self.full_transcript = "Transcription complète de la réunion."
        self.summary: object = SummaryResult(summary="Résumé de la réunion.", title="Point budget")
        self.analysis: Dict[str, List[str]] = {"suggestions": [], "topics_to_explore": []}
        self.transcribe_calls: List[Optional[str]] = []
        self.summary_calls: List[tuple] = []

    def transcribe_audio(self, audio, offset_seconds=0, filename_hint=None, language=None):
        self.transcribe_calls.append(filename_hint)
        if filename_hint and filename_hint.startswith("recording."):
            if isinstance(self.full_transcript, Exception):
                raise self.full_transcript
            return self.full_transcript
        if not self.transcripts:
            return ""
        item = self.transcripts.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def generate_summary(self, transcript, user_id=None, attempt=0, mode="short"):
        self.summary_calls.append((transcript, user_id, attempt, mode))
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary

    def analyze_partial_transcript(self, text):
        return self.analysis


class FakeAudio:
    audio_format = "wav"

    def __init__(self, payload: bytes = b"RIFF" + b"\x00" * 6000) -> None:
        self.payload = payload
        self.calls: List[str] = []

    def start(self) -> None:
        self.calls.append("start")

    def pause(self) -> None:
        self.calls.append("pause")

    def resume(self) -> None:
        self.calls.append("resume")

    def stop(self):
        self.calls.append("stop")
        return {"frames": 0}

    def snapshot_wav(self, seconds):
        return self.payload

    def export_audio(self):
        return self.payload


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def database():
    init_db()
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clear_sessions():
    recording_session._sessions.clear()
    yield
    recording_session._sessions.clear()


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings(tmp_path):
    return Settings(storage_dir=tmp_path / "storage", audio_dir=tmp_path / "audio")


@pytest.fixture
def speech():
    return FakeSpeechClient()


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(settings):
    return AudioStorage(settings)


@pytest.fixture
def speech_error():
    return SpeechServiceError("Summary service returned no summary")
