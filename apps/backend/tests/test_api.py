from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from fake_camera import FakeVideoSource, solid_frame
from fake_devices import FakeAudioSource
from petwatch.channel.messages import EventType
from petwatch.main import PetwatchState, create_app
from petwatch.storage.clips import StoredClip


def _state(tmp_path: Path, monkeypatch) -> PetwatchState:
    monkeypatch.setattr("petwatch.config.migrate.bootstrap_config_path", lambda: tmp_path / "bootstrap.json")
    return PetwatchState.create(
        data_dir=str(tmp_path / "data"),
        log_level="warning",
        video_source=FakeVideoSource([solid_frame(30)], loop=True),
        audio_source=FakeAudioSource(None),
    )


def _store_clip(state: PetwatchState, clip_id: str, timestamp: int, image: bytes | None = b"\xff\xd8jpeg") -> None:
    state.clip_store.create(
        StoredClip(
            id=clip_id,
            type=EventType.SOUND,
            timestamp=timestamp,
            confidence=0.7,
            device_id=state.session.device_id,
            video_blob=b"mp4-bytes",
            image_blob=image,
        )
    )


def test_health_reports_session(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    with TestClient(create_app(state=state)) as client:
        response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["session"]["device_id"] == state.session.device_id
    assert body["session"]["running"] is True


def test_detection_settings_patch_is_applied_and_persisted(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    with TestClient(create_app(state=state)) as client:
        response = client.patch("/api/settings/detection", json={"motionSensitivity": 0.8, "cooldownSeconds": 5})
        assert response.status_code == 200
        assert response.json()["detection"]["motionSensitivity"] == 0.8
        assert state.session.events.drain(timeout=2.0)

        current = client.get("/api/settings").json()
        assert current["detection"]["cooldownSeconds"] == 5

    detection = state.settings_store.settings.detection
    assert detection.motion_sensitivity == 0.8
    assert detection.cooldown_seconds == 5


def test_detection_settings_patch_validation(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    with TestClient(create_app(state=state)) as client:
        assert client.patch("/api/settings/detection", json={"soundSensitivity": 1.5}).status_code == 422
        assert client.patch("/api/settings/detection", json={}).status_code == 400
    assert state.session.events.settings.sound_sensitivity == 0.5


def test_recent_events_endpoint(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    with TestClient(create_app(state=state)) as client:
        assert state.session.events.handle_detection(EventType.SOUND, 0.9) is True
        assert state.session.events.drain(timeout=2.0)
        body = client.get("/api/events").json()
    assert body["total"] == 1
    assert body["items"][0]["type"] == "sound"
    assert body["items"][0]["device_id"] == state.session.device_id


def test_clip_endpoints(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    _store_clip(state, "clip-old", 1_000)
    _store_clip(state, "clip-new", 2_000, image=None)
    client = TestClient(create_app(state=state))
    try:
        listing = client.get("/api/clips").json()
        assert [item["id"] for item in listing["items"]] == ["clip-new", "clip-old"]
        assert listing["items"][0]["image_url"] is None
        assert listing["items"][1]["video_url"] == "/api/clips/clip-old/video"

        video = client.get("/api/clips/clip-old/video")
        assert video.status_code == 200
        assert video.content == b"mp4-bytes"
        assert video.headers["content-type"] == "video/mp4"
        assert client.get("/api/clips/clip-old/image").content == b"\xff\xd8jpeg"
        assert client.get("/api/clips/clip-new/image").status_code == 404
        assert client.get("/api/clips/missing/video").status_code == 404

        assert client.post("/api/clips/clip-old/synced").json()["synced"] is True
        synced = client.get("/api/clips", params={"synced": "true"}).json()
        assert [item["id"] for item in synced["items"]] == ["clip-old"]

        assert client.delete("/api/clips/clip-old").status_code == 200
        assert client.delete("/api/clips/clip-old").status_code == 200
        assert [item["id"] for item in client.get("/api/clips").json()["items"]] == ["clip-new"]
        assert client.get("/api/clips", params={"type": "smoke"}).status_code == 422
    finally:
        state.shutdown()


def test_state_shutdown_is_idempotent(tmp_path: Path, monkeypatch) -> None:
    state = _state(tmp_path, monkeypatch)
    stop_calls: list[int] = []
    close_calls: list[int] = []
    monkeypatch.setattr(state.session, "stop", lambda: stop_calls.append(1))
    monkeypatch.setattr(state.db, "close", lambda: close_calls.append(1))

    state.begin_shutdown()
    state.begin_shutdown()
    assert len(stop_calls) == 1

    state.shutdown()
    state.shutdown()
    assert len(stop_calls) == 1
    assert len(close_calls) == 1
