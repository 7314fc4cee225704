from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
import logging

from recorder.deps import get_mailer, get_session, get_settings
from recorder.config import Settings
from recorder.models.email import EmailHistory
from recorder.repositories.emails import EmailHistoryRepository
from recorder.services.email_service import EmailRequest, Mailer, send_individual_emails
from recorder.services.email_tracking import NO_CACHE_HEADERS, PIXEL_PNG, record_open

logger = logging.getLogger("recorder.api")

router = APIRouter(prefix="/emails", tags=["emails"])


class SendEmailRequest(BaseModel):
    user_id: str
    recipients: List[str]
    subject: str
    html_body: str
    meeting_id: Optional[int] = None
    cc: List[str] = []
    bcc: List[str] = []


def _client_ip(request: Request) -> Optional[str]:
    for header in ("x-forwarded-for", "x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/send")
def send_email(
    body: SendEmailRequest,
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    request = EmailRequest(**body.model_dump())
    try:
        result = send_individual_emails(session, request, mailer=mailer, settings=settings)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "success": result.success,
        "sent": result.sent,
        "failed": result.failed,
        "tracking_id": result.tracking_id,
        "history_ids": result.history_ids,
    }


@router.get("/history")
def email_history(
    user_id: str, limit: int = 50, offset: int = 0, session: Session = Depends(get_session)
) -> List[EmailHistory]:
    return EmailHistoryRepository(session).list_for_user(user_id, limit=limit, offset=offset)


@router.api_route("/open", methods=["GET", "HEAD"])
def email_open(
    request: Request,
    id: Optional[str] = None,
    recipient: Optional[str] = None,
    session: Session = Depends(get_session),
) -> Response:
    if request.method == "GET":
        try:
            record_open(
                session,
                id,
                recipient,
                user_agent=request.headers.get("user-agent"),
                ip_address=_client_ip(request),
            )
        except SQLAlchemyError:
            logger.exception("Error tracking email open")
    return Response(content=PIXEL_PNG, media_type="image/png", headers=NO_CACHE_HEADERS)
