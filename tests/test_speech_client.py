import json

import pytest
import requests

from recorder.config import Settings
from recorder.services.speech_client import SpeechClient, SpeechServiceError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _chat(content):
    return FakeResponse(payload={"choices": [{"message": {"content": content}}]})


def _client(*responses):
    http = FakeHttp(*responses)
    settings = Settings(speech_api_url="https://speech.test/", speech_api_key="sk-test")
    return SpeechClient(settings, http=http), http


def test_transcription_returns_text():
    client, http = _client(FakeResponse(payload={"text": "  bonjour à tous  "}))

    assert client.transcribe_audio(b"RIFF", 0, "window15s_1.wav") == "bonjour à tous"
    url, kwargs = http.calls[0]
    assert url == "https://speech.test/v1/audio/transcriptions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["files"]["file"][2] == "audio/wav"


def test_silence_is_an_empty_transcript():
    client, _ = _client(FakeResponse(status_code=400, text='{"error": "Audio file is too short"}'))

    assert client.transcribe_audio(b"RIFF") == ""


def test_http_errors_raise():
    client, _ = _client(FakeResponse(status_code=500, text="boom"))

    with pytest.raises(SpeechServiceError):
        client.transcribe_audio(b"RIFF")


def test_network_errors_raise():
    client, _ = _client(requests.ConnectionError("refused"))

    with pytest.raises(SpeechServiceError):
        client.transcribe_audio(b"RIFF")


def test_summary_parses_json_answer():
    client, http = _client(_chat(json.dumps({"title": "Point budget", "summary": "- budget validé"})))

    result = client.generate_summary("Le budget est validé.", user_id="user-1", attempt=1, mode="detailed")

    assert result.summary == "- budget validé"
    assert result.title == "Point budget"
    body = http.calls[0][1]["json"]
    assert body["response_format"] == {"type": "json_object"}
    assert body["user"] == "user-1"
    assert body["temperature"] == pytest.approx(0.4)


def test_empty_summary_raises():
    client, _ = _client(_chat(json.dumps({"title": "x", "summary": ""})))

    with pytest.raises(SpeechServiceError):
        client.generate_summary("Le budget est validé.")


def test_empty_transcript_is_rejected_without_a_call():
    client, http = _client()

    with pytest.raises(SpeechServiceError):
        client.generate_summary("   ")
    assert http.calls == []


def test_partial_analysis_keeps_only_string_lists():
    content = json.dumps({"suggestions": ["Quel budget ?", " "], "topics_to_explore": "pas une liste"})
    client, _ = _client(_chat(content))

    assert client.analyze_partial_transcript("extrait") == {
        "suggestions": ["Quel budget ?"],
        "topics_to_explore": [],
    }
