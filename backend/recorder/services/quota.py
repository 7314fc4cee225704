from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Protocol

STARTER_PLAN = "starter"
LOW_QUOTA_RATIO = 0.9


class QuotaSource(Protocol):
    plan_type: str
    minutes_quota: int
    minutes_used_this_month: int


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None  # quota_full | low_quota
    remaining_minutes: Optional[int] = None


def is_metered(subscription: Optional[QuotaSource]) -> bool:
    # Only starter plans carry a monthly minutes quota
    return subscription is not None and subscription.plan_type == STARTER_PLAN


def check_before_start(subscription: Optional[QuotaSource]) -> QuotaDecision:
    if not is_metered(subscription):
        return QuotaDecision(allowed=True)
    used = subscription.minutes_used_this_month
    quota = subscription.minutes_quota
    if used >= quota:
        return QuotaDecision(allowed=False, reason="quota_full", remaining_minutes=0)
    if quota > 0 and used / quota > LOW_QUOTA_RATIO:
        return QuotaDecision(allowed=False, reason="low_quota", remaining_minutes=quota - used)
    return QuotaDecision(allowed=True, remaining_minutes=quota - used)


def session_minutes(elapsed_seconds: float) -> int:
    """Minutes billed for the running session; any started minute counts."""
    return math.ceil(max(0, int(elapsed_seconds)) / 60)


def exceeds_during_recording(subscription: Optional[QuotaSource], elapsed_seconds: float) -> bool:
    if not is_metered(subscription):
        return False
    total = subscription.minutes_used_this_month + session_minutes(elapsed_seconds)
    return total >= subscription.minutes_quota
