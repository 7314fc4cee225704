from __future__ import annotations

from functools import lru_cache
from typing import Callable, Iterator, Optional

from sqlmodel import Session

from recorder.config import Settings
from recorder.models.base import engine
from recorder.models.subscription import UserSubscription
from recorder.repositories.subscriptions import SubscriptionsRepository
from recorder.services.audio_capture import AudioCapture, AudioSource
from recorder.services.email_service import Mailer, SmtpMailer
from recorder.services.speech_client import SpeechClient
from recorder.services.storage import AudioStorage

AudioFactory = Callable[[str, str, Optional[str]], AudioSource]


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_speech_client() -> SpeechClient:
    return SpeechClient(get_settings())


def get_storage() -> AudioStorage:
    return AudioStorage(get_settings())


def get_mailer() -> Mailer:
    return SmtpMailer(get_settings())


def get_audio_factory() -> AudioFactory:
    settings = get_settings()

    def _create(session_id: str, mode: str, device_id: Optional[str]) -> AudioSource:
        return AudioCapture(session_id, mode=mode, device_id=device_id, settings=settings)

    return _create


def load_subscription(user_id: str) -> Optional[UserSubscription]:
    with Session(engine) as session:
        return SubscriptionsRepository(session).get_for_user(user_id)
