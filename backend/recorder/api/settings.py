from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from recorder.deps import get_session
from recorder.models.app_settings import SummarySettings, TranscriptionSettings
from recorder.models.dictionary import DictionaryEntry
from recorder.repositories.dictionary import DictionaryRepository
from recorder.repositories.settings import get_user_settings, save_user_settings


router = APIRouter(prefix="/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    summary: Optional[SummarySettings] = None
    transcription: Optional[TranscriptionSettings] = None
    # Legacy flat field still sent by older clients
    default_summary_mode: Optional[str] = None


class DictionaryEntryRequest(BaseModel):
    incorrect_word: str
    correct_word: str


@router.get("/{user_id}")
def read_settings(user_id: str, session: Session = Depends(get_session)) -> Dict[str, Any]:
    return get_user_settings(session, user_id)


@router.put("/{user_id}")
def update_settings(user_id: str, body: SettingsUpdate, session: Session = Depends(get_session)) -> Dict[str, Any]:
    return save_user_settings(session, user_id, body.model_dump(exclude_unset=True))


@router.get("/{user_id}/dictionary")
def list_dictionary(user_id: str, session: Session = Depends(get_session)) -> List[DictionaryEntry]:
    return DictionaryRepository(session).list_for_user(user_id)


@router.put("/{user_id}/dictionary")
def upsert_dictionary_entry(
    user_id: str, body: DictionaryEntryRequest, session: Session = Depends(get_session)
) -> DictionaryEntry:
    incorrect = body.incorrect_word.strip()
    correct = body.correct_word.strip()
    if not incorrect or not correct:
        raise HTTPException(status_code=400, detail="Both words are required")
    return DictionaryRepository(session).upsert(user_id, incorrect, correct)


@router.delete("/{user_id}/dictionary/{incorrect_word}")
def delete_dictionary_entry(
    user_id: str, incorrect_word: str, session: Session = Depends(get_session)
) -> Dict[str, bool]:
    if not DictionaryRepository(session).delete(user_id, incorrect_word):
        raise HTTPException(status_code=404, detail="Entry not found")
    return {"ok": True}
