from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from recorder.models.email import EmailHistory, EmailOpenEvent


class EmailHistoryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, row: EmailHistory) -> EmailHistory:
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def update(self, row: EmailHistory) -> EmailHistory:
        return self.create(row)

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> list[EmailHistory]:
        statement = (
            select(EmailHistory)
            .where(EmailHistory.user_id == user_id)
            .order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.exec(statement))

    def find_by_tracking(self, tracking_id: str, recipient: Optional[str] = None) -> Optional[EmailHistory]:
        """Most recent row for a tracking id, narrowed to one recipient when given."""
        statement = select(EmailHistory).where(EmailHistory.tracking_id == tracking_id)
        if recipient:
            statement = statement.where(EmailHistory.recipients.ilike(f"%{recipient}%"))
        statement = statement.order_by(EmailHistory.sent_at.desc(), EmailHistory.id.desc())
        return self.session.exec(statement).first()

    def add_open_event(self, event: EmailOpenEvent) -> EmailOpenEvent:
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def list_open_events(self, email_history_id: int) -> list[EmailOpenEvent]:
        statement = select(EmailOpenEvent).where(EmailOpenEvent.email_history_id == email_history_id)
        return list(self.session.exec(statement))
