from __future__ import annotations

from typing import Any, Optional
from sqlmodel import Session, select

from recorder.models.subscription import UserSubscription


class SubscriptionsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_for_user(self, user_id: str) -> Optional[UserSubscription]:
        statement = select(UserSubscription).where(UserSubscription.user_id == user_id)
        return self.session.exec(statement).first()

    def upsert(self, user_id: str, **fields: Any) -> UserSubscription:
        row = self.get_for_user(user_id)
        if row is None:
            row = UserSubscription(user_id=user_id, **fields)
        else:
            for key, value in fields.items():
                setattr(row, key, value)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row
