from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from recorder.config import Settings
from recorder.deps import get_audio_factory, get_mailer, get_settings, get_speech_client
from recorder.main import app
from recorder.services import recording_session

from conftest import FakeAudio

CHROME = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 Version/17.0 Safari/605.1.15"


class NullMailer:
    def __init__(self):
        self.sent = []

    def send(self, msg, to_addrs):
        self.sent.append(list(to_addrs))


@pytest.fixture
def client(speech, tmp_path):
    test_settings = Settings(
        min_recording_seconds=0,
        audio_dir=tmp_path / "audio",
        storage_dir=tmp_path / "storage",
    )
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_speech_client] = lambda: speech
    app.dependency_overrides[get_audio_factory] = lambda: (lambda session_id, mode, device_id: FakeAudio())
    app.dependency_overrides[get_mailer] = NullMailer
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.mark.smoke
def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


@pytest.mark.smoke
def test_recording_lifecycle_creates_a_meeting(client):
    resp = client.post("/recordings/start", json={"user_id": "user-1", "title": "Point hebdo"})
    assert resp.status_code == 200
    session_id = resp.json()["session_id"]

    assert client.post(f"/recordings/{session_id}/pause").json()["state"] == "paused"
    assert client.post(f"/recordings/{session_id}/resume").json()["state"] == "recording"
    assert client.post(f"/recordings/{session_id}/resume").status_code == 409

    data = client.post(f"/recordings/{session_id}/stop", json={"summary_mode": "short"}).json()
    assert data["status"] == "done"
    assert data["summary_failed"] is False
    assert data["title"] == "Point hebdo"
    assert client.get(f"/recordings/{session_id}").json()["state"] == "done"

    meetings = client.get("/meetings", params={"user_id": "user-1"}).json()
    assert [m["id"] for m in meetings] == [data["meeting_id"]]


@pytest.mark.smoke
def test_stop_without_mode_asks_for_one(client):
    session_id = client.post("/recordings/start", json={"user_id": "user-1"}).json()["session_id"]

    data = client.post(f"/recordings/{session_id}/stop").json()
    assert data["status"] == "needs_summary_mode"
    assert data["recommended_mode"] == "short"

    done = client.post(f"/recordings/{session_id}/finalize", json={"summary_mode": "detailed"}).json()
    assert done["summary_mode"] == "detailed"


@pytest.mark.smoke
def test_unknown_session_is_404(client):
    resp = client.get("/recordings/missing")
    assert resp.status_code == 404
    assert "error" in resp.json()


@pytest.mark.smoke
def test_quota_checks_before_start(client):
    client.put("/subscriptions/full", json={"plan_type": "starter", "minutes_quota": 600, "minutes_used_this_month": 600})
    client.put("/subscriptions/low", json={"plan_type": "starter", "minutes_quota": 600, "minutes_used_this_month": 550})

    assert client.post("/recordings/start", json={"user_id": "full"}).status_code == 403
    warning = client.post("/recordings/start", json={"user_id": "low"}).json()
    assert warning == {"status": "low_quota", "remaining_minutes": 50}
    bypass = client.post("/recordings/start", json={"user_id": "low", "bypass_quota_warning": True}).json()
    assert bypass["status"] == "recording"


@pytest.mark.smoke
def test_meeting_maintenance(client, speech):
    session_id = client.post("/recordings/start", json={"user_id": "user-1"}).json()["session_id"]
    meeting_id = client.post(f"/recordings/{session_id}/stop", json={"summary_mode": "short"}).json()["meeting_id"]

    detail = client.get(f"/meetings/{meeting_id}").json()
    assert detail["meeting"]["transcript"] == speech.full_transcript
    assert detail["clarifications"] == []

    renamed = client.patch(f"/meetings/{meeting_id}", json={"title": "Comité"}).json()
    assert renamed["title"] == "Comité"

    corrected = client.post(
        f"/meetings/{meeting_id}/corrections",
        json={"word": "réunion", "replacement": "séance", "add_to_dictionary": True},
    ).json()
    assert corrected["id"] == meeting_id
    assert corrected["display_transcript"] == "Transcription complète de la séance."
    words = [e["incorrect_word"] for e in client.get("/settings/user-1/dictionary").json()]
    assert words == ["réunion"]

    regenerated = client.post(f"/meetings/{meeting_id}/summary", json={"mode": "detailed"}).json()
    assert regenerated["summary_regenerated"] is True
    assert regenerated["summary_detailed"] == "Résumé de la réunion."
    assert regenerated["summary_failed"] is False

    assert client.delete(f"/meetings/{meeting_id}").json() == {"ok": True}
    assert client.get(f"/meetings/{meeting_id}").status_code == 404


@pytest.mark.smoke
def test_settings_roundtrip(client):
    saved = client.put("/settings/user-1", json={"summary": {"default_mode": "detailed"}}).json()
    assert saved["summary"]["default_mode"] == "detailed"
    legacy = client.put("/settings/user-1", json={"default_summary_mode": "short"}).json()
    assert legacy["summary"]["default_mode"] == "short"
    assert client.get("/settings/user-1").json()["summary"]["default_mode"] == "short"


@pytest.mark.smoke
def test_email_send_and_open_pixel(client):
    sent = client.post(
        "/emails/send",
        json={
            "user_id": "user-1",
            "recipients": ["alice@example.com"],
            "subject": "Compte rendu",
            "html_body": "<html><body>Résumé</body></html>",
        },
    ).json()
    assert sent["success"] is True

    pixel = client.get(
        "/emails/open",
        params={"id": sent["tracking_id"], "recipient": "alice@example.com"},
        headers={"user-agent": CHROME},
    )
    assert pixel.status_code == 200
    assert pixel.headers["content-type"] == "image/png"
    assert pixel.headers["cache-control"] == "no-cache, no-store, must-revalidate"

    history = client.get("/emails/history", params={"user_id": "user-1"}).json()
    assert history[0]["open_count"] == 1
    assert client.get("/emails/open").status_code == 200


@pytest.mark.smoke
def test_devices_listing_never_fails(client):
    data = client.get("/devices").json()
    assert set(data) == {"mic", "visio"}


@pytest.mark.smoke
def test_finished_recordings_do_not_pile_up(client):
    for _ in range(5):
        session_id = client.post("/recordings/start", json={"user_id": "user-1"}).json()["session_id"]
        assert client.post(f"/recordings/{session_id}/stop", json={"summary_mode": "short"}).json()["status"] == "done"

    assert len(recording_session._sessions) == 1
    assert client.get(f"/recordings/{session_id}").json()["state"] == "done"
    assert len(client.get("/meetings", params={"user_id": "user-1"}).json()) == 5
