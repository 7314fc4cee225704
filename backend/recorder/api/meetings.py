from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlmodel import Session
import logging

from recorder.deps import get_session, get_speech_client
from recorder.models.meeting import Meeting
from recorder.repositories.dictionary import DictionaryRepository
from recorder.repositories.meetings import MeetingsRepository
from recorder.repositories.suggestions import SuggestionsRepository
from recorder.services.dictionary import replace_word
from recorder.services.speech_client import SpeechClient, SpeechServiceError

logger = logging.getLogger("recorder.api")

router = APIRouter(prefix="/meetings", tags=["meetings"])


class UpdateMeetingRequest(BaseModel):
    title: Optional[str] = None
    notes: Optional[str] = None


class RegenerateSummaryRequest(BaseModel):
    mode: Literal["short", "detailed"] = "short"
    attempt: int = 1


class WordCorrectionRequest(BaseModel):
    field: Literal["summary", "display_transcript"] = "display_transcript"
    word: str
    replacement: str
    replace_all: bool = True
    add_to_dictionary: bool = False


def _get_or_404(session: Session, meeting_id: int) -> Meeting:
    meeting = MeetingsRepository(session).get(meeting_id)
    if meeting is None:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting


@router.get("")
def list_meetings(
    user_id: str, limit: int = 50, offset: int = 0, session: Session = Depends(get_session)
) -> List[Meeting]:
    return MeetingsRepository(session).list_for_user(user_id, limit=limit, offset=offset)


@router.get("/{meeting_id}")
def get_meeting_detail(meeting_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    meeting = _get_or_404(session, meeting_id)
    repo_s = SuggestionsRepository(session)
    return {
        "meeting": meeting,
        "clarifications": repo_s.list_clarifications(meeting_id),
        "topics": repo_s.list_topics(meeting_id),
    }


@router.patch("/{meeting_id}")
def update_meeting(
    meeting_id: int, body: UpdateMeetingRequest, session: Session = Depends(get_session)
) -> Meeting:
    meeting = _get_or_404(session, meeting_id)
    if body.title is not None:
        title = body.title.strip()
        if not title:
            raise HTTPException(status_code=400, detail="Title cannot be empty")
        meeting.title = title
    if body.notes is not None:
        meeting.notes = body.notes
    return MeetingsRepository(session).update(meeting)


@router.delete("/{meeting_id}")
def delete_meeting(meeting_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    meeting = _get_or_404(session, meeting_id)
    removed = SuggestionsRepository(session).delete_for_meeting(meeting_id)
    MeetingsRepository(session).delete(meeting)
    logger.info("Meeting deleted", extra={"meeting_id": meeting_id, "suggestions": removed})
    return {"ok": True}


@router.post("/{meeting_id}/summary")
async def regenerate_summary(
    meeting_id: int,
    body: RegenerateSummaryRequest,
    session: Session = Depends(get_session),
    speech: SpeechClient = Depends(get_speech_client),
) -> Meeting:
    meeting = _get_or_404(session, meeting_id)
    if not (meeting.transcript or "").strip():
        raise HTTPException(status_code=400, detail="Meeting has no transcript")
    try:
        result = await run_in_threadpool(
            speech.generate_summary, meeting.transcript, meeting.user_id, body.attempt, body.mode
        )
    except SpeechServiceError as exc:
        logger.warning("Summary regeneration failed", extra={"meeting_id": meeting_id})
        raise HTTPException(status_code=502, detail=str(exc))

    meeting.summary = result.summary
    if body.mode == "detailed":
        meeting.summary_detailed = result.summary
    else:
        meeting.summary_short = result.summary
    meeting.summary_mode = body.mode
    meeting.summary_regenerated = True
    meeting.summary_failed = False
    return MeetingsRepository(session).update(meeting)


@router.post("/{meeting_id}/corrections")
def correct_word(
    meeting_id: int, body: WordCorrectionRequest, session: Session = Depends(get_session)
) -> Meeting:
    meeting = _get_or_404(session, meeting_id)
    word = body.word.strip()
    if not word:
        raise HTTPException(status_code=400, detail="Word cannot be empty")
    current = getattr(meeting, body.field) or ""
    setattr(meeting, body.field, replace_word(current, word, body.replacement, body.replace_all))
    if body.field == "summary" and meeting.summary_mode in ("short", "detailed"):
        setattr(meeting, f"summary_{meeting.summary_mode}", meeting.summary)
    meeting = MeetingsRepository(session).update(meeting)
    if body.add_to_dictionary:
        DictionaryRepository(session).upsert(meeting.user_id, word, body.replacement)
        session.refresh(meeting)
    return meeting
