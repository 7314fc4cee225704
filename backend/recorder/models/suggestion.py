from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

from recorder.models.base import utc_now


class MeetingClarification(SQLModel, table=True):
    __tablename__ = "meeting_clarifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: int = Field(index=True, foreign_key="meeting.id")
    content: str
    segment_number: int
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)


class MeetingTopic(SQLModel, table=True):
    __tablename__ = "meeting_topics"

    id: Optional[int] = Field(default=None, primary_key=True)
    meeting_id: int = Field(index=True, foreign_key="meeting.id")
    topic: str
    segment_number: int
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
