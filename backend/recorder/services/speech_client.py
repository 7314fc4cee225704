from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import logging
import re

import requests

from recorder.config import Settings

logger = logging.getLogger("recorder.speech")


class SpeechServiceError(RuntimeError):
    pass


@dataclass
class SummaryResult:
    summary: Optional[str] = None
    title: Optional[str] = None


SILENCE_MARKERS = ("too short", "audio_too_short", "no speech")


class SpeechClient:
    """Client for the hosted transcription/summary model (OpenAI-compatible API)."""

    def __init__(self, settings: Optional[Settings] = None, http: Optional[requests.Session] = None) -> None:
        self._settings = settings or Settings()
        self._http = http or requests.Session()
        self._base_url = self._settings.speech_api_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self._settings.speech_api_key:
            headers["Authorization"] = f"Bearer {self._settings.speech_api_key}"
        return headers

    def transcribe_audio(
        self,
        audio: bytes,
        offset_seconds: float = 0,
        filename_hint: Optional[str] = None,
        language: Optional[str] = None,
    ) -> str:
        """Transcribe one clip. Silence or too-short audio yields an empty string."""
        filename = filename_hint or "recording.webm"
        content_type = "audio/wav" if filename.lower().endswith(".wav") else "audio/webm"
        data: Dict[str, Any] = {"model": self._settings.transcription_model, "response_format": "json"}
        if language:
            data["language"] = language
        try:
            response = self._http.post(
                f"{self._base_url}/v1/audio/transcriptions",
                headers=self._headers(),
                files={"file": (filename, audio, content_type)},
                data=data,
                timeout=self._settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise SpeechServiceError("Failed to reach transcription service") from exc

        if response.status_code == 400 and any(m in response.text.lower() for m in SILENCE_MARKERS):
            logger.info("Clip rejected as silence", extra={"clip": filename, "offset": offset_seconds})
            return ""
        if response.status_code != 200:
            raise SpeechServiceError(f"Transcription error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            return response.text.strip()
        return str(payload.get("text", "") or "").strip()

    def generate_summary(
        self,
        transcript: str,
        user_id: Optional[str] = None,
        attempt: int = 0,
        mode: str = "short",
    ) -> SummaryResult:
        if not (transcript or "").strip():
            raise SpeechServiceError("Empty transcript")

        profile = _get_mode_profile(mode)
        # Retries get a little more freedom to escape a bad completion
        temperature = min(0.2 + 0.2 * max(0, attempt), 0.8)

        chunks = _chunk_text(transcript, max_chars=profile["chunk_chars"], overlap=profile["chunk_overlap"])
        if len(chunks) == 1:
            out = self._summarize_chunk(chunks[0], profile, temperature, user_id)
        else:
            partials = [self._summarize_chunk(c, profile, temperature, user_id) for c in chunks]
            out = self._reduce_summaries(partials, profile, temperature, user_id)

        summary = str(out.get("summary", "") or "").strip()
        if not summary:
            raise SpeechServiceError("Summary service returned no summary")
        title = str(out.get("title", "") or "").strip() or None
        return SummaryResult(summary=summary, title=title)

    def analyze_partial_transcript(self, text: str) -> Dict[str, List[str]]:
        system = (
            "Tu assistes une personne pendant une réunion. Réponds UNIQUEMENT en JSON strict "
            "avec les clés 'suggestions' (questions à clarifier) et 'topics_to_explore' "
            "(sujets à approfondir), chacune un tableau de 0 à 3 chaînes courtes."
        )
        user = "Extrait récent de la réunion :\n" + text
        content = self._chat_json(system, user, temperature=0.3, max_tokens=400)
        data = _parse_json_lenient(content)
        if not isinstance(data, dict):
            return {"suggestions": [], "topics_to_explore": []}
        return {
            "suggestions": _string_list(data.get("suggestions")),
            "topics_to_explore": _string_list(data.get("topics_to_explore")),
        }

    def _summarize_chunk(
        self, chunk_text: str, profile: Dict[str, Any], temperature: float, user_id: Optional[str]
    ) -> Dict[str, Any]:
        system = (
            "Tu rédiges des comptes rendus de réunion en français. Réponds UNIQUEMENT en JSON "
            "strict avec les clés 'title' (titre court) et 'summary' (markdown)."
        )
        user = f"{profile['instructions']}\n\nTranscription :\n{chunk_text}"
        content = self._chat_json(system, user, temperature, profile["max_tokens"], user_id=user_id)
        return _as_summary_dict(_parse_json_lenient(content))

    def _reduce_summaries(
        self, partials: List[Dict[str, Any]], profile: Dict[str, Any], temperature: float, user_id: Optional[str]
    ) -> Dict[str, Any]:
        system = (
            "Fusionne des comptes rendus partiels d'une même réunion en un seul, sans doublons. "
            "Réponds UNIQUEMENT en JSON avec 'title' et 'summary' (markdown)."
        )
        parts = "\n\n---\n\n".join(str(p.get("summary", "")) for p in partials if p.get("summary"))
        user = f"{profile['instructions']}\n\nComptes rendus partiels :\n{parts}"
        content = self._chat_json(system, user, temperature, profile["max_tokens"], user_id=user_id)
        return _as_summary_dict(_parse_json_lenient(content))

    def _chat_json(
        self,
        system: str,
        user: str,
        temperature: float,
        max_tokens: int,
        user_id: Optional[str] = None,
    ) -> str:
        body: Dict[str, Any] = {
            "model": self._settings.summary_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        if user_id:
            body["user"] = user_id
        try:
            response = self._http.post(
                f"{self._base_url}/v1/chat/completions",
                headers={**self._headers(), "Content-Type": "application/json"},
                json=body,
                timeout=self._settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise SpeechServiceError("Failed to reach summary service") from exc

        if response.status_code != 200:
            raise SpeechServiceError(f"Summary service error: {response.status_code}")

        choices = response.json().get("choices", [])
        if not choices:
            raise SpeechServiceError("Summary response missing choices")
        return str(choices[0].get("message", {}).get("content", "") or "")


def _get_mode_profile(mode: str) -> Dict[str, Any]:
    if (mode or "short").lower() == "detailed":
        return {
            "chunk_chars": 24000,
            "chunk_overlap": 1000,
            "max_tokens": 4096,
            "instructions": (
                "Rédige un compte rendu détaillé : contexte, points abordés (sections ###), "
                "décisions, chiffres clés et actions à mener (liste - [ ])."
            ),
        }
    return {
        "chunk_chars": 24000,
        "chunk_overlap": 1000,
        "max_tokens": 1200,
        "instructions": (
            "Rédige un résumé court : 5 à 8 points essentiels en liste, puis les actions à mener."
        ),
    }


def _chunk_text(text: str, max_chars: int = 24000, overlap: int = 1000) -> List[str]:
    if max_chars <= 0:
        return [text]
    chunks: List[str] = []
    n = len(text)
    i = 0
    while i < n:
        end = min(n, i + max_chars)
        chunks.append(text[i:end])
        if end >= n:
            break
        i = max(0, end - overlap)
    return chunks or [text]


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _as_summary_dict(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {"title": None, "summary": ""}
    return {"title": data.get("title"), "summary": str(data.get("summary", "") or "")}


def _parse_json_lenient(text: str) -> Any:
    t = (text or "").strip()
    try:
        return json.loads(t)
    except ValueError:
        pass
    # Try to extract the first {...} block
    start = t.find("{")
    end = t.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(t[start : end + 1])
        except ValueError:
            pass
    # Plain-text answer: treat it as the summary body
    lines = [s.strip() for s in re.split(r"\n+", t) if s.strip()]
    return {"title": None, "summary": "\n".join(lines)}
