from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
import threading
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from petwatch.api import routes_clips, routes_events, routes_health, routes_settings
from petwatch.audio.base import AudioSource
from petwatch.camera.base import VideoSource
from petwatch.camera.opencv_cam import OpenCVVideoSource
from petwatch.channel.base import EventChannel
from petwatch.channel.memory import MemoryHub
from petwatch.config.defaults import APP_VERSION_STRING
from petwatch.config.migrate import SettingsStore
from petwatch.config.schema import DetectionSettings, SoundConfig
from petwatch.pipeline.recorder import EvidenceRecorder
from petwatch.pipeline.session import MonitorSession
from petwatch.storage.clips import SqliteClipStore
from petwatch.storage.db import Database
from petwatch.util.logging import get_logger, setup_logging

logger = get_logger(__name__)


def open_audio_source(config: SoundConfig) -> AudioSource | None:
    if not config.capture:
        return None
    try:
        from petwatch.audio.sounddevice_mic import SoundDeviceSource
    except OSError:
        logger.warning("PortAudio library not found, sound detection disabled")
        return None
    return SoundDeviceSource(config)


@dataclass
class PetwatchState:
    settings_store: SettingsStore
    log_level: str
    db: Database
    clip_store: SqliteClipStore
    recorder: EvidenceRecorder
    hub: MemoryHub
    channel: EventChannel
    session: MonitorSession
    data_dir: Path
    _shutdown_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _shutdown_started: bool = field(default=False, init=False, repr=False)
    _shutdown_complete: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(
        cls,
        data_dir: str | None = None,
        bind: str | None = None,
        port: int | None = None,
        log_level: str = "info",
        video_source: VideoSource | None = None,
        audio_source: AudioSource | None = None,
        hub: MemoryHub | None = None,
    ) -> "PetwatchState":
        settings_store = SettingsStore(cli_data_dir=data_dir)

        updates: dict[str, Any] = {}
        if bind:
            updates["bind"] = bind
        if port:
            updates["port"] = port
        if updates:
            settings_store.update(**updates)

        settings = settings_store.settings
        data_path = Path(settings.data_dir)
        setup_logging(log_level, data_path)

        db = Database(data_path / "db" / "petwatch.db")
        clip_store = SqliteClipStore(db, data_path / "media")
        recorder = EvidenceRecorder(clip_store, settings.recording, clip_limit=settings.clip_query_limit)

        hub = hub or MemoryHub()
        channel = hub.endpoint(settings.device_id)

        def persist_detection(detection: DetectionSettings) -> None:
            settings_store.update_detection(detection)

        session = MonitorSession.from_settings(
            settings,
            video_source or OpenCVVideoSource(settings.camera),
            recorder,
            audio_source=audio_source if audio_source is not None else open_audio_source(settings.sound),
            channel=channel,
            on_settings=persist_detection,
        )

        return cls(
            settings_store=settings_store,
            log_level=log_level,
            db=db,
            clip_store=clip_store,
            recorder=recorder,
            hub=hub,
            channel=channel,
            session=session,
            data_dir=data_path,
        )

    def begin_shutdown(self) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True
        self.session.stop()

    def shutdown(self) -> None:
        self.begin_shutdown()
        with self._shutdown_lock:
            if self._shutdown_complete:
                return
            self._shutdown_complete = True
        self.hub.leave(self.session.device_id)
        self.db.close()


def create_app(
    data_dir: str | None = None,
    bind: str | None = None,
    port: int | None = None,
    log_level: str = "info",
    state: PetwatchState | None = None,
) -> FastAPI:
    state = state or PetwatchState.create(data_dir=data_dir, bind=bind, port=port, log_level=log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.petwatch.session.start()
        try:
            yield
        finally:
            app.state.petwatch.shutdown()

    app = FastAPI(title="Petwatch", version=APP_VERSION_STRING, lifespan=lifespan)
    app.state.petwatch = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_health.router, prefix="/api")
    app.include_router(routes_settings.router, prefix="/api")
    app.include_router(routes_events.router, prefix="/api")
    app.include_router(routes_clips.router, prefix="/api")

    return app
