from __future__ import annotations

from typing import Any, Dict, Optional, Literal
from pydantic import BaseModel, Field


SummaryMode = Literal["short", "detailed"]
SUMMARY_MODES = {"short", "detailed"}


class SummarySettings(BaseModel):
    """Per-user summary preferences."""

    # None → ask the user at stop time
    default_mode: Optional[SummaryMode] = Field(default=None)


class TranscriptionSettings(BaseModel):
    # Optional fixed language (e.g., "fr", "en"); None → auto-detect
    language: Optional[str] = Field(default="fr")
    # Apply the personal dictionary to finalized transcripts
    apply_dictionary: bool = Field(default=True)


class AppSettingsModel(BaseModel):
    summary: SummarySettings = Field(default_factory=SummarySettings)
    transcription: TranscriptionSettings = Field(default_factory=TranscriptionSettings)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def deep_merge_dict(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            dst[k] = deep_merge_dict(dict(dst.get(k, {})), v)
        else:
            dst[k] = v
    return dst


def migrate_settings_dict(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce an arbitrary settings payload to the supported structure.

    - Accepts the legacy flat ``default_summary_mode`` key.
    - Unknown modes become None, unknown keys are dropped.
    """
    if not isinstance(raw, dict):
        return {}
    result: Dict[str, Any] = {}

    summary_in = dict(raw.get("summary") or {}) if isinstance(raw.get("summary"), dict) else {}
    if "default_summary_mode" in raw and "default_mode" not in summary_in:
        summary_in["default_mode"] = raw.get("default_summary_mode")
    if "default_mode" in summary_in:
        mode = summary_in.get("default_mode")
        mode = str(mode).lower() if isinstance(mode, str) else None
        result["summary"] = {"default_mode": mode if mode in SUMMARY_MODES else None}

    tr_in = raw.get("transcription")
    if isinstance(tr_in, dict):
        normalized: Dict[str, Any] = {}
        if "language" in tr_in:
            lang = tr_in.get("language")
            normalized["language"] = str(lang).strip() if isinstance(lang, str) and lang.strip() else None
        if "apply_dictionary" in tr_in:
            normalized["apply_dictionary"] = bool(tr_in.get("apply_dictionary"))
        result["transcription"] = normalized

    return result
