from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from recorder.models.base import utc_now
from recorder.models.dictionary import DictionaryEntry


class DictionaryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_user(self, user_id: str) -> list[DictionaryEntry]:
        statement = (
            select(DictionaryEntry)
            .where(DictionaryEntry.user_id == user_id)
            .order_by(DictionaryEntry.incorrect_word.asc())
        )
        return list(self.session.exec(statement))

    def get(self, user_id: str, incorrect_word: str) -> Optional[DictionaryEntry]:
        statement = select(DictionaryEntry).where(
            DictionaryEntry.user_id == user_id,
            DictionaryEntry.incorrect_word == incorrect_word.lower(),
        )
        return self.session.exec(statement).first()

    def upsert(self, user_id: str, incorrect_word: str, correct_word: str) -> DictionaryEntry:
        entry = self.get(user_id, incorrect_word)
        if entry is None:
            entry = DictionaryEntry(
                user_id=user_id,
                incorrect_word=incorrect_word.lower(),
                correct_word=correct_word,
            )
        else:
            entry.correct_word = correct_word
            entry.updated_at = utc_now()
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def delete(self, user_id: str, incorrect_word: str) -> bool:
        entry = self.get(user_id, incorrect_word)
        if entry is None:
            return False
        self.session.delete(entry)
        self.session.commit()
        return True
