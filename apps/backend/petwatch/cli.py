from __future__ import annotations

import argparse
import json
import signal
import sys

import uvicorn

from petwatch.camera.opencv_cam import probe_video_source
from petwatch.channel.messages import EventType
from petwatch.config.defaults import DEFAULT_BIND, DEFAULT_LOG_LEVEL, DEFAULT_PORT
from petwatch.config.migrate import SettingsStore
from petwatch.config.schema import SoundConfig
from petwatch.main import create_app
from petwatch.storage.clips import ClipQuery, SqliteClipStore
from petwatch.storage.db import Database

_KNOWN_COMMANDS = {"serve", "clips", "probe"}


def _add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--data-dir", default=None, help="Path for runtime data (SQLite/media/logs/config)")
    parser.add_argument("--bind", default=DEFAULT_BIND, help=f"Bind host (default {DEFAULT_BIND})")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default {DEFAULT_PORT})")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, help="Log level")


def _build_parser(prog: str) -> argparse.ArgumentParser:
    """Parser used when no command is given: behaves like ``serve``."""
    parser = argparse.ArgumentParser(prog=prog, description="Petwatch motion and sound monitor")
    _add_serve_arguments(parser)
    return parser


def _build_command_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Petwatch motion and sound monitor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the monitor and local API")
    _add_serve_arguments(serve)

    clips = subparsers.add_parser("clips", help="List stored evidence clips as JSON")
    clips.add_argument("--data-dir", default=None, help="Path for runtime data")
    clips.add_argument("--type", choices=["motion", "sound"], default=None, help="Only clips of this event type")
    synced = clips.add_mutually_exclusive_group()
    synced.add_argument("--synced", dest="synced", action="store_true", default=None, help="Only synced clips")
    synced.add_argument("--unsynced", dest="synced", action="store_false", help="Only clips not yet synced")
    clips.add_argument("--limit", type=int, default=None, help="Maximum clips to list")
    clips.set_defaults(synced=None)

    probe = subparsers.add_parser("probe", help="Check that the camera and microphone can be opened")
    probe.add_argument("--data-dir", default=None, help="Path for runtime data")
    probe.add_argument("--source", default=None, help="Camera index or URL, overrides settings")
    probe.add_argument("--skip-audio", action="store_true", help="Do not probe the microphone")

    return parser


def _run(parsed: argparse.Namespace) -> int:
    if parsed.bind == "0.0.0.0":
        print("[warning] LAN access enabled. Keep Petwatch on trusted networks and do not expose publicly.")

    app = create_app(
        data_dir=parsed.data_dir,
        bind=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
    )
    print(f"Petwatch running at http://{parsed.bind}:{parsed.port}")
    config = uvicorn.Config(
        app,
        host=parsed.bind,
        port=parsed.port,
        log_level=parsed.log_level,
        workers=1,
        timeout_graceful_shutdown=2,
    )
    server = uvicorn.Server(config)
    previous_handlers: dict[int, object] = {}

    def _request_exit(signum: int, _frame: object) -> None:
        if signum in {signal.SIGINT, signal.SIGTERM}:
            app.state.petwatch.begin_shutdown()
            server.should_exit = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, _request_exit)
        except (AttributeError, ValueError):
            continue

    try:
        server.run()
    except KeyboardInterrupt:
        server.should_exit = True
    finally:
        app.state.petwatch.shutdown()
        for sig, handler in previous_handlers.items():
            try:
                signal.signal(sig, handler)
            except (AttributeError, ValueError):
                continue
    if bool(getattr(server, "started", False)) or server.should_exit:
        return 0
    return 1


def _list_clips(parsed: argparse.Namespace) -> int:
    settings_store = SettingsStore(cli_data_dir=parsed.data_dir)
    settings = settings_store.settings
    tree = settings_store.data_tree
    db = Database(tree["db"] / "petwatch.db")
    try:
        store = SqliteClipStore(db, tree["media"])
        query = ClipQuery(
            type=EventType(parsed.type) if parsed.type else None,
            synced=parsed.synced,
            limit=parsed.limit if parsed.limit is not None else settings.clip_query_limit,
        )
        _print_result(store.summaries(query))
    finally:
        db.close()
    return 0


def _probe(parsed: argparse.Namespace) -> int:
    settings = SettingsStore(cli_data_dir=parsed.data_dir).settings
    camera = settings.camera
    if parsed.source is not None:
        camera = camera.model_copy(update={"source": parsed.source})

    camera_ok, camera_message = probe_video_source(camera)
    result: dict[str, object] = {"camera": {"ok": camera_ok, "message": camera_message}}
    healthy = camera_ok
    if not parsed.skip_audio:
        audio_ok, audio_message = _probe_audio(settings.sound)
        result["microphone"] = {"ok": audio_ok, "message": audio_message}
        healthy = healthy and audio_ok
    _print_result(result)
    return 0 if healthy else 1


def _probe_audio(config: SoundConfig) -> tuple[bool, str]:
    try:
        from petwatch.audio.sounddevice_mic import probe_audio_source
    except OSError as exc:
        return False, f"PortAudio unavailable: {exc}"
    return probe_audio_source(config)


def _print_result(result: object) -> None:
    print(json.dumps(result, indent=2, sort_keys=True))


def _dispatch_command(parsed: argparse.Namespace) -> int:
    if parsed.command == "serve":
        return _run(parsed)
    if parsed.command == "clips":
        return _list_clips(parsed)
    if parsed.command == "probe":
        return _probe(parsed)
    raise ValueError(f"Unknown command: {parsed.command}")


def main(argv: list[str] | None = None) -> int:
    args = list(argv if argv is not None else sys.argv[1:])
    try:
        if args and args[0] in _KNOWN_COMMANDS:
            parser = _build_command_parser("petwatch")
            parsed = parser.parse_args(args)
            return _dispatch_command(parsed)
        parser = _build_parser("petwatch")
        parsed = parser.parse_args(args)
        return _run(parsed)
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        print(f"[error] {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
