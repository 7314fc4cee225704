from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field

from recorder.models.base import utc_now


class EmailHistory(SQLModel, table=True):
    __tablename__ = "email_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    meeting_id: Optional[int] = Field(default=None, foreign_key="meeting.id")
    recipients: str  # one primary recipient per row
    cc_recipients: Optional[str] = None
    subject: str
    html_body: str
    method: str = Field(default="smtp")
    status: str = Field(default="sent")  # sent|failed
    error_message: Optional[str] = None
    tracking_id: str = Field(index=True)
    message_id: Optional[str] = None
    sent_at: datetime = Field(default_factory=utc_now)
    first_opened_at: Optional[datetime] = None
    first_opened_recipient: Optional[str] = None
    open_count: int = Field(default=0)


class EmailOpenEvent(SQLModel, table=True):
    __tablename__ = "email_open_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    email_history_id: int = Field(index=True, foreign_key="email_history.id")
    recipient_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    opened_at: datetime = Field(default_factory=utc_now)
