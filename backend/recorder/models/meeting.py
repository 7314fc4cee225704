from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

from recorder.models.base import utc_now


class Meeting(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str = Field(default="Untitled Meeting")
    transcript: Optional[str] = None  # clean version used for summaries
    display_transcript: Optional[str] = None  # chunked version with time separators
    summary: Optional[str] = None
    summary_short: Optional[str] = None
    summary_detailed: Optional[str] = None
    summary_mode: str = Field(default="short")  # short|detailed
    summary_regenerated: bool = Field(default=False)
    summary_failed: Optional[bool] = None
    duration: int = Field(default=0)  # seconds
    notes: Optional[str] = None
    suggestions: str = Field(default="[]")  # JSON list
    audio_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, index=True)
