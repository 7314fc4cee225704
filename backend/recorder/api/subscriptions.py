from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from recorder.deps import get_session
from recorder.models.subscription import UserSubscription
from recorder.repositories.subscriptions import SubscriptionsRepository


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class SubscriptionUpdate(BaseModel):
    plan_type: Optional[str] = None
    minutes_quota: Optional[int] = Field(default=None, ge=0)
    minutes_used_this_month: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


@router.get("/{user_id}")
def read_subscription(user_id: str, session: Session = Depends(get_session)) -> UserSubscription:
    row = SubscriptionsRepository(session).get_for_user(user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return row


@router.put("/{user_id}")
def update_subscription(
    user_id: str, body: SubscriptionUpdate, session: Session = Depends(get_session)
) -> UserSubscription:
    return SubscriptionsRepository(session).upsert(user_id, **body.model_dump(exclude_none=True))
