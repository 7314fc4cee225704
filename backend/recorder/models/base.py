from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from recorder.config import Settings

_settings = Settings()

# SQLite with WAL enabled
engine: Engine = create_engine(
    f"sqlite:///{_settings.database_path}", connect_args={"check_same_thread": False}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def init_db() -> None:
    # Register tables on the shared metadata
    from recorder.models import dictionary, email, meeting, setting, subscription, suggestion  # noqa: F401

    _settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    with engine.begin() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(engine)
