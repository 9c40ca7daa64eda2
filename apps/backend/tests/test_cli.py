from __future__ import annotations

import argparse
import json
from pathlib import Path
from types import SimpleNamespace

from petwatch import cli
from petwatch.channel.messages import EventType
from petwatch.storage.clips import SqliteClipStore, StoredClip
from petwatch.storage.db import Database


def _parsed() -> argparse.Namespace:
    return cli._build_parser("petwatch").parse_args(["--bind", "127.0.0.1", "--port", "8877"])


def _fake_app(begin_shutdown_calls: list[int], shutdown_calls: list[int]) -> object:
    petwatch = SimpleNamespace(
        begin_shutdown=lambda: begin_shutdown_calls.append(1),
        shutdown=lambda: shutdown_calls.append(1),
    )
    return SimpleNamespace(state=SimpleNamespace(petwatch=petwatch))


def test_cli_returns_zero_on_keyboard_interrupt(monkeypatch) -> None:
    begin_calls: list[int] = []
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(begin_calls, shutdown_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _InterruptServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = True

        def run(self) -> None:
            raise KeyboardInterrupt

    monkeypatch.setattr(cli.uvicorn, "Server", _InterruptServer)

    assert cli._run(_parsed()) == 0
    assert len(shutdown_calls) == 1


def test_cli_returns_nonzero_when_server_never_starts(monkeypatch) -> None:
    begin_calls: list[int] = []
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(begin_calls, shutdown_calls))
    monkeypatch.setattr(cli.uvicorn, "Config", lambda *args, **kwargs: object())

    class _NeverStartedServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = False

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli.uvicorn, "Server", _NeverStartedServer)

    assert cli._run(_parsed()) == 1
    assert len(shutdown_calls) == 1


def test_cli_forces_single_uvicorn_worker(monkeypatch) -> None:
    begin_calls: list[int] = []
    shutdown_calls: list[int] = []
    monkeypatch.setattr(cli, "create_app", lambda **kwargs: _fake_app(begin_calls, shutdown_calls))
    captured: dict[str, object] = {}

    def _capture_config(*_args, **kwargs):
        captured.update(kwargs)
        return object()

    monkeypatch.setattr(cli.uvicorn, "Config", _capture_config)

    class _StartedServer:
        def __init__(self, _config: object) -> None:
            self.should_exit = False
            self.started = True

        def run(self) -> None:
            return None

    monkeypatch.setattr(cli.uvicorn, "Server", _StartedServer)

    assert cli._run(_parsed()) == 0
    assert captured["workers"] == 1
    assert captured["port"] == 8877


def test_main_without_command_serves(monkeypatch) -> None:
    seen: list[argparse.Namespace] = []
    monkeypatch.setattr(cli, "_run", lambda parsed: seen.append(parsed) or 0)
    assert cli.main(["--port", "9000"]) == 0
    assert cli.main(["serve", "--port", "9001"]) == 0
    assert [parsed.port for parsed in seen] == [9000, 9001]


def test_main_returns_zero_on_interrupt(monkeypatch) -> None:
    def _raise_interrupt(_parsed: argparse.Namespace) -> int:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "_run", _raise_interrupt)
    assert cli.main([]) == 0


def test_clips_command_lists_json(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr("petwatch.config.migrate.bootstrap_config_path", lambda: tmp_path / "bootstrap.json")
    data_dir = tmp_path / "data"
    db = Database(data_dir / "db" / "petwatch.db")
    store = SqliteClipStore(db, data_dir / "media")
    for clip_id, kind in (("clip-1", EventType.MOTION), ("clip-2", EventType.SOUND)):
        store.create(
            StoredClip(id=clip_id, type=kind, timestamp=1_000, confidence=0.9, device_id="cam_1", video_blob=b"v")
        )
    store.mark_synced("clip-1")
    db.close()

    assert cli.main(["clips", "--data-dir", str(data_dir), "--unsynced"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in listed] == ["clip-2"]

    assert cli.main(["clips", "--data-dir", str(data_dir), "--type", "motion"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [item["id"] for item in listed] == ["clip-1"]


def test_probe_reports_device_status(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr("petwatch.config.migrate.bootstrap_config_path", lambda: tmp_path / "bootstrap.json")
    sources: list[str] = []

    def fake_probe(config):
        sources.append(config.source)
        return False, "Unable to open camera"

    monkeypatch.setattr(cli, "probe_video_source", fake_probe)

    code = cli.main(["probe", "--data-dir", str(tmp_path / "data"), "--source", "2", "--skip-audio"])
    report = json.loads(capsys.readouterr().out)
    assert code == 1
    assert sources == ["2"]
    assert report == {"camera": {"ok": False, "message": "Unable to open camera"}}
