from __future__ import annotations

import logging
import smtplib
import uuid
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Callable, List, Optional, Protocol, Sequence
from urllib.parse import urlencode

from sqlmodel import Session

from recorder.config import Settings
from recorder.models.email import EmailHistory
from recorder.repositories.emails import EmailHistoryRepository

logger = logging.getLogger("recorder.email")


class Mailer(Protocol):
    def send(self, msg: MIMEMultipart, to_addrs: Sequence[str]) -> None: ...


class SmtpMailer:
    """Sends through the configured SMTP relay, one connection per message."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()

    def send(self, msg: MIMEMultipart, to_addrs: Sequence[str]) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as server:
            if s.smtp_use_tls:
                server.starttls()
            if s.smtp_username:
                server.login(s.smtp_username, s.smtp_password or "")
            server.sendmail(msg["From"], list(to_addrs), msg.as_string())


@dataclass
class EmailRequest:
    user_id: str
    recipients: List[str]
    subject: str
    html_body: str
    meeting_id: Optional[int] = None
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)


@dataclass
class SendResult:
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    history_ids: List[int] = field(default_factory=list)
    tracking_id: str = ""

    @property
    def success(self) -> bool:
        return bool(self.sent) and not self.failed


def tracking_pixel_url(base_url: str, tracking_id: str, recipient: str) -> str:
    query = urlencode({"id": tracking_id, "recipient": recipient})
    return f"{base_url.rstrip('/')}/emails/open?{query}"


def embed_tracking_pixel(html: str, pixel_url: str) -> str:
    img = (
        f'<img src="{pixel_url}" width="1" height="1" alt="" '
        'style="display:none;width:1px;height:1px;border:0;" />'
    )
    lower = html.lower()
    idx = lower.rfind("</body>")
    if idx == -1:
        return html + img
    return html[:idx] + img + html[idx:]


def _clean_addresses(values: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        addr = (value or "").strip()
        if addr and addr.lower() not in (s.lower() for s in seen):
            seen.append(addr)
    return seen


def build_message(sender: str, recipient: str, cc: Sequence[str], subject: str, html: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = recipient
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Message-ID"] = make_msgid(domain=sender.split("@")[-1] or None)
    msg.attach(MIMEText(html, "html", "utf-8"))
    return msg


def send_individual_emails(
    session: Session,
    request: EmailRequest,
    mailer: Optional[Mailer] = None,
    settings: Optional[Settings] = None,
    tracking_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> SendResult:
    """Send one tracked message per recipient and record every attempt.

    CC and BCC addresses are carried on each individual send. A failure for one
    recipient is recorded as a ``failed`` history row and does not stop the
    others.
    """
    s = settings or Settings()
    mailer = mailer or SmtpMailer(s)
    repo = EmailHistoryRepository(session)
    recipients = _clean_addresses(request.recipients)
    cc = _clean_addresses(request.cc)
    bcc = _clean_addresses(request.bcc)
    if not recipients:
        raise ValueError("At least one recipient is required")

    tracking_id = tracking_id_factory()
    result = SendResult(tracking_id=tracking_id)
    for recipient in recipients:
        html = embed_tracking_pixel(
            request.html_body, tracking_pixel_url(s.tracking_base_url, tracking_id, recipient.lower())
        )
        msg = build_message(s.sender_email, recipient, cc, request.subject, html)
        row = EmailHistory(
            user_id=request.user_id,
            meeting_id=request.meeting_id,
            recipients=recipient,
            cc_recipients=", ".join(cc) or None,
            subject=request.subject,
            html_body=html,
            method="smtp",
            tracking_id=tracking_id,
            message_id=msg["Message-ID"],
        )
        try:
            mailer.send(msg, [recipient, *cc, *bcc])
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Email send failed", extra={"recipient": recipient}, exc_info=True)
            row.status = "failed"
            row.error_message = str(exc)
            result.failed.append(recipient)
        else:
            row.status = "sent"
            result.sent.append(recipient)
        row = repo.create(row)
        result.history_ids.append(int(row.id))  # type: ignore[arg-type]

    logger.info("Report emails processed", extra={"sent": len(result.sent), "failed": len(result.failed)})
    return result
