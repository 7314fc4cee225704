from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from recorder.models.base import utc_now


class DictionaryEntry(SQLModel, table=True):
    """A user's preferred spelling for a word the speech model keeps getting wrong."""

    __tablename__ = "custom_dictionary"
    __table_args__ = (UniqueConstraint("user_id", "incorrect_word"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    incorrect_word: str  # stored lowercased
    correct_word: str
    updated_at: datetime = Field(default_factory=utc_now)
