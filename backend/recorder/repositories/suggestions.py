from __future__ import annotations

from typing import Iterable, List
from sqlmodel import Session, select

from recorder.models.suggestion import MeetingClarification, MeetingTopic


class SuggestionsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add_clarifications(self, rows: Iterable[MeetingClarification]) -> List[MeetingClarification]:
        saved = list(rows)
        for row in saved:
            self.session.add(row)
        self.session.commit()
        return saved

    def add_topics(self, rows: Iterable[MeetingTopic]) -> List[MeetingTopic]:
        saved = list(rows)
        for row in saved:
            self.session.add(row)
        self.session.commit()
        return saved

    def list_clarifications(self, meeting_id: int) -> list[MeetingClarification]:
        statement = (
            select(MeetingClarification)
            .where(MeetingClarification.meeting_id == meeting_id)
            .order_by(MeetingClarification.segment_number.asc(), MeetingClarification.id.asc())
        )
        return list(self.session.exec(statement))

    def list_topics(self, meeting_id: int) -> list[MeetingTopic]:
        statement = (
            select(MeetingTopic)
            .where(MeetingTopic.meeting_id == meeting_id)
            .order_by(MeetingTopic.segment_number.asc(), MeetingTopic.id.asc())
        )
        return list(self.session.exec(statement))

    def delete_for_meeting(self, meeting_id: int) -> int:
        rows = [*self.list_clarifications(meeting_id), *self.list_topics(meeting_id)]
        for row in rows:
            self.session.delete(row)
        self.session.commit()
        return len(rows)
