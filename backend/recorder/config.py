from __future__ import annotations

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings
import os


def _default_home() -> Path:
    return Path(os.getenv("APPDATA", "") or Path.home()) / "MeetingRecorder"


class Settings(BaseSettings):
    app_name: str = "Meeting Recorder"

    # Base app data dir (e.g., %APPDATA%\MeetingRecorder)
    appdata_dir: Path = Field(default_factory=_default_home)
    data_dir: Path = Field(default_factory=lambda: _default_home() / "data")
    audio_dir: Path = Field(default_factory=lambda: _default_home() / "audio")
    storage_dir: Path = Field(default_factory=lambda: _default_home() / "storage")
    logs_dir: Path = Field(default_factory=lambda: _default_home() / "logs")

    database_path: Path = Field(default_factory=lambda: _default_home() / "data" / "meeting_recorder.db")

    # Remote speech/summary endpoint (OpenAI-compatible)
    speech_api_url: str = "https://api.openai.com"
    speech_api_key: str = ""
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4o-mini"
    request_timeout: int = 120

    # Audio storage bucket, served under public_base_url
    storage_bucket: str = "Compte-rendu"
    public_base_url: str = "http://127.0.0.1:8000/storage"

    # Rolling transcription and session policy
    window_seconds: int = 15
    min_window_bytes: int = 5000
    min_chunk_chars: int = 5
    live_transcript_min_chars: int = 50
    quota_check_seconds: int = 5
    min_recording_seconds: int = 60
    reminder_seconds: int = 2 * 60 * 60
    recording_limit_seconds: int = 4 * 60 * 60
    sample_rate: int = 16000

    # Report emails
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    sender_email: str = "no-reply@localhost"
    tracking_base_url: str = "http://127.0.0.1:8000"

    class Config:
        env_prefix = "MR_"
        case_sensitive = False

    def ensure_dirs(self) -> None:
        for d in [self.appdata_dir, self.data_dir, self.audio_dir, self.storage_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
