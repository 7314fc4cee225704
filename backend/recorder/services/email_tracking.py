from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlmodel import Session

from recorder.models.base import utc_now
from recorder.models.email import EmailOpenEvent
from recorder.repositories.emails import EmailHistoryRepository

logger = logging.getLogger("recorder.email")

# 1x1 transparent PNG
PIXEL_PNG = bytes(
    [
        0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,
        0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,
        0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,
        0x08, 0x06, 0x00, 0x00, 0x00, 0x1F, 0x15, 0xC4,
        0x89, 0x00, 0x00, 0x00, 0x0A, 0x49, 0x44, 0x41,
        0x54, 0x78, 0x9C, 0x63, 0x00, 0x01, 0x00, 0x00,
        0x05, 0x00, 0x01, 0x0D, 0x0A, 0x2D, 0xB4, 0x00,
        0x00, 0x00, 0x00, 0x49, 0x45, 0x4E, 0x44, 0xAE,
        0x42, 0x60, 0x82,
    ]
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

MIN_DELAY_SECONDS = 5

# Bots, link scanners and mail proxies that fetch images on their own
SUSPICIOUS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"bot", r"crawler", r"spider", r"scan", r"check", r"monitor", r"preview",
        r"prerender", r"validator", r"fetcher", r"googleimageproxy", r"google-proxy",
        r"yahoo.*slurp", r"outlook", r"microsoft.*office", r"ms-office", r"windows-mail",
        r"mailchimp", r"sendgrid", r"mailgun", r"postmark", r"sparkpost", r"amazonses",
        r"barracuda", r"proofpoint", r"mimecast", r"messagelabs", r"websense", r"bluecoat",
        r"fortinet", r"sophos", r"symantec", r"mcafee", r"kaspersky", r"antivirus",
        r"security", r"safelinks\.protection", r"url-protection", r"link-protection",
    )
]
KNOWN_BROWSER = re.compile(r"chrome|firefox|safari|edge|opera|mobile", re.IGNORECASE)


def is_suspicious_agent(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and any(p.search(user_agent) for p in SUSPICIOUS_PATTERNS)


def is_known_browser(user_agent: Optional[str]) -> bool:
    return bool(user_agent) and bool(KNOWN_BROWSER.search(user_agent))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values on older drivers
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def record_open(
    session: Session,
    tracking_id: Optional[str],
    recipient: Optional[str] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Callable[[], datetime] = utc_now,
) -> bool:
    """Account for one pixel hit. Returns True when it counted as a real open."""
    if not tracking_id:
        return False
    normalized = recipient.strip().lower() if recipient else None
    repo = EmailHistoryRepository(session)
    history = repo.find_by_tracking(tracking_id, normalized)
    if history is None:
        logger.info("Tracking id not found", extra={"tracking_id": tracking_id})
        return False

    if is_suspicious_agent(user_agent):
        logger.info("Suspicious user agent ignored", extra={"user_agent": user_agent})
        return False

    opened_at = now()
    since_sent = (_as_utc(opened_at) - _as_utc(history.sent_at)).total_seconds() if history.sent_at else None
    if since_sent is not None and since_sent < MIN_DELAY_SECONDS and not is_known_browser(user_agent):
        logger.info("Open too soon after send, likely a scanner", extra={"seconds": since_sent})
        return False

    if history.first_opened_at is None:
        history.first_opened_at = opened_at
        history.first_opened_recipient = normalized
    history.open_count = (history.open_count or 0) + 1
    repo.update(history)
    repo.add_open_event(
        EmailOpenEvent(
            email_history_id=int(history.id),  # type: ignore[arg-type]
            recipient_email=normalized,
            ip_address=ip_address,
            user_agent=user_agent,
            opened_at=opened_at,
        )
    )
    return True
