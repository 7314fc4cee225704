from __future__ import annotations

import uuid
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session
import logging

from recorder.deps import (
    AudioFactory,
    get_audio_factory,
    get_session,
    get_settings,
    get_speech_client,
    get_storage,
    load_subscription,
)
from recorder.config import Settings
from recorder.repositories.settings import get_user_settings
from recorder.repositories.subscriptions import SubscriptionsRepository
from recorder.services.finalization import FinalizationError, FinalizationResult, FinalizationWorkflow
from recorder.services.quota import check_before_start
from recorder.services.recording_session import (
    PROCESSING_ERROR_MESSAGE,
    RecordingSessionController,
    active_session_for_user,
    get_session_controller,
    register_session,
    remove_session,
)
from recorder.services.speech_client import SpeechClient
from recorder.services.storage import AudioStorage

logger = logging.getLogger("recorder.api")

router = APIRouter(prefix="/recordings", tags=["recordings"])


class StartRecordingRequest(BaseModel):
    user_id: str
    mode: Literal["mic", "visio"] = "mic"
    device_id: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    bypass_quota_warning: bool = False


class StopRequest(BaseModel):
    summary_mode: Optional[Literal["short", "detailed"]] = None


class FinalizeRequest(BaseModel):
    summary_mode: Literal["short", "detailed"]


def _result_payload(result: FinalizationResult) -> Dict[str, Any]:
    return {
        "status": "done",
        "meeting_id": result.meeting_id,
        "title": result.title,
        "summary_mode": result.summary_mode,
        "summary": result.summary,
        "summary_failed": result.summary_failed,
        "warning": result.warning,
        "clarifications_saved": result.clarifications_saved,
        "topics_saved": result.topics_saved,
    }


async def _finalize(controller: RecordingSessionController, mode: str) -> Dict[str, Any]:
    try:
        result = await controller.finalize(mode)
    except FinalizationError:
        raise HTTPException(status_code=500, detail=PROCESSING_ERROR_MESSAGE)
    if result is None:
        return {"status": "ignored", "state": controller.state.value}
    return _result_payload(result)


@router.post("/start")
async def start_recording(
    body: StartRecordingRequest,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    speech: SpeechClient = Depends(get_speech_client),
    storage: AudioStorage = Depends(get_storage),
    audio_factory: AudioFactory = Depends(get_audio_factory),
) -> Dict[str, Any]:
    if active_session_for_user(body.user_id) is not None:
        raise HTTPException(status_code=409, detail="A recording is already in progress")

    subscription = SubscriptionsRepository(session).get_for_user(body.user_id)
    decision = check_before_start(subscription)
    if not decision.allowed:
        if decision.reason == "quota_full":
            raise HTTPException(
                status_code=403,
                detail={"reason": "quota_full", "remaining_minutes": 0},
            )
        if not body.bypass_quota_warning:
            return {"status": "low_quota", "remaining_minutes": decision.remaining_minutes}

    prefs = get_user_settings(session, body.user_id)
    session_id = uuid.uuid4().hex
    controller = RecordingSessionController(
        session_id=session_id,
        user_id=body.user_id,
        audio=audio_factory(session_id, body.mode, body.device_id),
        speech=speech,
        finalizer=FinalizationWorkflow(speech, storage, settings=settings),
        load_subscription=load_subscription,
        settings=settings,
        title=body.title,
        notes=body.notes,
        default_summary_mode=prefs["summary"].get("default_mode"),
        language=prefs["transcription"].get("language"),
    )
    register_session(controller)
    try:
        await controller.start()
    except Exception:
        remove_session(session_id)
        raise
    return {"status": "recording", "session_id": session_id}


@router.get("/{session_id}")
async def recording_status(session_id: str) -> Dict[str, Any]:
    return get_session_controller(session_id).status()


@router.post("/{session_id}/pause")
async def pause_recording(session_id: str) -> Dict[str, Any]:
    controller = get_session_controller(session_id)
    controller.pause()
    return controller.status()


@router.post("/{session_id}/resume")
async def resume_recording(session_id: str) -> Dict[str, Any]:
    controller = get_session_controller(session_id)
    controller.resume()
    return controller.status()


@router.post("/{session_id}/stop")
async def stop_recording(session_id: str, body: Optional[StopRequest] = None) -> Dict[str, Any]:
    """Stop, then finalize right away when a summary mode is known."""
    controller = get_session_controller(session_id)
    requested = body.summary_mode if body else None
    decision = await controller.request_stop(requested)
    payload: Dict[str, Any] = {
        "status": decision.status,
        "elapsed_seconds": decision.elapsed_seconds,
        "recommended_mode": decision.recommended_mode,
        "word_estimate": decision.word_estimate,
    }
    if decision.status != "stopped":
        return payload
    return await _finalize(controller, controller.resolve_summary_mode(requested))  # type: ignore[arg-type]


@router.post("/{session_id}/continue")
async def continue_recording(session_id: str) -> Dict[str, Any]:
    controller = get_session_controller(session_id)
    controller.continue_recording()
    return controller.status()


@router.post("/{session_id}/discard")
async def discard_recording(session_id: str) -> Dict[str, Any]:
    controller = get_session_controller(session_id)
    await controller.discard()
    remove_session(session_id)
    return {"status": controller.state.value}


@router.post("/{session_id}/finalize")
async def finalize_recording(session_id: str, body: FinalizeRequest) -> Dict[str, Any]:
    return await _finalize(get_session_controller(session_id), body.summary_mode)
