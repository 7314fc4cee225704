from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from recorder.config import Settings
from recorder.services.suggestion_dedup import strip_diacritics

logger = logging.getLogger("recorder.storage")


class StorageError(RuntimeError):
    pass


def safe_title(raw: Optional[str], fallback: str = "reunion") -> str:
    text = (raw or "").strip()
    if not text:
        return fallback
    text = strip_diacritics(text.lower())
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    return text[:50] or fallback


def build_audio_path(user_id: str, title: Optional[str], when: datetime, extension: str = "webm") -> str:
    """``{user_id}/{YYYY-MM-DD}/{safe_title}_{HH-MM-SS}.{ext}``"""
    return f"{user_id}/{when:%Y-%m-%d}/{safe_title(title)}_{when:%H-%M-%S}.{extension}"


class AudioStorage:
    """Bucket of recordings on the local filesystem, served under ``public_base_url``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()
        self.bucket = self._settings.storage_bucket
        self.root = self._settings.storage_dir / self.bucket

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Invalid object path: {path}")
        return target

    def upload(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        if target.exists():
            raise StorageError(f"Object already exists: {path}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Upload failed for {path}") from exc
        logger.info("Audio stored", extra={"path": path, "bytes": len(data)})
        return path

    def available_path(self, path: str) -> str:
        """First of ``path``, ``name-2.ext``, ``name-3.ext``... not taken yet."""
        if not self._resolve(path).exists():
            return path
        stem, dot, ext = path.rpartition(".")
        if not dot:
            stem, ext = path, ""
        n = 2
        while True:
            candidate = f"{stem}-{n}.{ext}" if ext else f"{stem}-{n}"
            if not self._resolve(candidate).exists():
                return candidate
            n += 1

    def public_url(self, path: str) -> str:
        base = self._settings.public_base_url.rstrip("/")
        return f"{base}/{quote(self.bucket)}/{quote(path)}"

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()
