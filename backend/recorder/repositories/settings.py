from __future__ import annotations

from typing import Any, Dict, Optional
import json

from sqlmodel import Session, select

from recorder.models.setting import Setting
from recorder.models.app_settings import (
    AppSettingsModel,
    migrate_settings_dict,
    deep_merge_dict,
)


DEFAULT_SETTINGS: Dict[str, Any] = AppSettingsModel().to_dict()


def _settings_key(user_id: str) -> str:
    return f"user_settings:{user_id}"


def _load_json_or_default(value_json: Optional[str]) -> Dict[str, Any]:
    if not value_json:
        return json.loads(json.dumps(DEFAULT_SETTINGS))
    try:
        parsed = json.loads(value_json)
        migrated = migrate_settings_dict(parsed)
        # deep-merge defaults to ensure new fields exist
        merged: Dict[str, Any] = json.loads(json.dumps(DEFAULT_SETTINGS))
        merged = deep_merge_dict(merged, migrated)
        return AppSettingsModel(**merged).to_dict()
    except (ValueError, TypeError):
        return json.loads(json.dumps(DEFAULT_SETTINGS))


def get_user_settings(session: Session, user_id: str) -> Dict[str, Any]:
    stmt = select(Setting).where(Setting.key == _settings_key(user_id))
    row = session.exec(stmt).first()
    return _load_json_or_default(row.value_json if row else None)


def save_user_settings(session: Session, user_id: str, settings_data: Dict[str, Any]) -> Dict[str, Any]:
    # Merge with existing to avoid losing unrelated fields
    current = get_user_settings(session, user_id)
    incoming = migrate_settings_dict(settings_data)
    merged = deep_merge_dict(current, incoming)
    normalized = AppSettingsModel(**merged).to_dict()
    payload = json.dumps(normalized, ensure_ascii=False)
    key = _settings_key(user_id)
    row = session.exec(select(Setting).where(Setting.key == key)).first()
    if row is None:
        row = Setting(key=key, value_json=payload)
        session.add(row)
    else:
        row.value_json = payload
    session.commit()
    return normalized
