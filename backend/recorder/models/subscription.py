from __future__ import annotations

from typing import Optional
from sqlmodel import SQLModel, Field


class UserSubscription(SQLModel, table=True):
    __tablename__ = "user_subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    plan_type: str = Field(default="starter")  # starter|unlimited
    minutes_quota: int = Field(default=600)
    minutes_used_this_month: int = Field(default=0)
    is_active: bool = Field(default=True)
