from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any

import numpy as np

from petwatch.audio.base import AudioSource
from petwatch.camera.base import VideoSource
from petwatch.camera.health import ReconnectState
from petwatch.channel.base import EventChannel
from petwatch.channel.messages import EventType
from petwatch.config.schema import AppSettings, ChannelConfig, DetectionPolicy, DetectionSettings, MotionConfig, SoundConfig
from petwatch.detection.motion import MotionAnalyzer
from petwatch.detection.sound import SoundAnalyzer
from petwatch.errors import CaptureAborted, CaptureError, DeviceUnavailable, NotBufferingError, StorageError
from petwatch.util.logging import get_logger
from petwatch.util.time import epoch_ms

from .events import DetectionEvent, EngineSignal, EventManager
from .recorder import EvidenceRecorder

logger = get_logger(__name__)

SettingsCallback = Callable[[DetectionSettings], None]


class MonitorSession:
    """One monitored device: analyzers, event gating, evidence buffer, channel.

    ``start()`` and ``stop()`` sequence every component explicitly. A single
    tick thread runs both analyzers serially; accepted events are published and
    handed to a capture pool so each clip collects its own post-roll.
    """

    def __init__(
        self,
        device_id: str,
        video_source: VideoSource,
        recorder: EvidenceRecorder,
        *,
        audio_source: AudioSource | None = None,
        channel: EventChannel | None = None,
        settings: DetectionSettings | None = None,
        policy: DetectionPolicy | None = None,
        motion_config: MotionConfig | None = None,
        sound_config: SoundConfig | None = None,
        channel_config: ChannelConfig | None = None,
        tick_interval_ms: int = 200,
        recent_limit: int = 100,
        on_settings: SettingsCallback | None = None,
        clock: Callable[[], int] = epoch_ms,
        dispatcher: Executor | None = None,
        capture_executor: Executor | None = None,
        camera_retry: ReconnectState | None = None,
    ) -> None:
        self.device_id = device_id
        self.video_source = video_source
        self.audio_source = audio_source
        self.recorder = recorder
        self.policy = policy or DetectionPolicy()
        self.channel_config = channel_config or ChannelConfig()
        self.motion = MotionAnalyzer(motion_config)
        self.sound = SoundAnalyzer(sound_config)
        self.events = EventManager(
            device_id,
            settings=settings,
            policy=self.policy,
            channel=channel,
            channel_config=self.channel_config,
            clock=clock,
            dispatcher=dispatcher,
        )
        self.tick_interval_ms = tick_interval_ms
        self._on_settings_callback = on_settings
        self._lock = threading.Lock()
        self._recent: deque[DetectionEvent] = deque(maxlen=recent_limit)
        self._last_frame: np.ndarray | None = None
        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._owns_capture_pool = capture_executor is None
        self._capture_executor = capture_executor
        self._capture_pool: Executor | None = None
        self._remove_listeners: list[Callable[[], None]] = []
        self._last_resync = 0.0
        self._camera_retry = camera_retry or ReconnectState()

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        video_source: VideoSource,
        recorder: EvidenceRecorder,
        *,
        audio_source: AudioSource | None = None,
        channel: EventChannel | None = None,
        on_settings: SettingsCallback | None = None,
    ) -> "MonitorSession":
        return cls(
            settings.device_id,
            video_source,
            recorder,
            audio_source=audio_source,
            channel=channel,
            settings=settings.detection,
            policy=settings.policy,
            motion_config=settings.motion,
            sound_config=settings.sound,
            channel_config=settings.channel,
            tick_interval_ms=settings.tick_interval_ms,
            recent_limit=settings.recent_events_limit,
            on_settings=on_settings,
        )

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def start(self, *, run_loop: bool = True) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop_event = threading.Event()
            if self._capture_executor is not None:
                self._capture_pool = self._capture_executor
            else:
                self._capture_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="evidence")

        self._apply_thresholds(self.events.settings)
        self._remove_listeners = [
            self.events.add_listener(EngineSignal.EVENT, self._on_event),
            self.events.add_listener(EngineSignal.SETTINGS, self._on_settings),
        ]
        self.events.start()

        self._camera_retry.reset()
        try:
            self.recorder.start_buffering(self.video_source)
        except DeviceUnavailable:
            delay = self._camera_retry.register_failure()
            logger.warning(
                "video source unavailable for %s, retrying in %.1fs",
                self.device_id,
                delay,
                extra={"device_id": self.device_id},
            )

        if self.audio_source is not None and self.sound.config.capture:
            try:
                self.sound.connect(self.audio_source)
            except DeviceUnavailable:
                logger.warning("microphone unavailable for %s, sound detection disabled", self.device_id)

        self._last_resync = time.monotonic()
        self.events.publish_settings()

        if run_loop:
            self._thread = threading.Thread(
                target=self._run_loop,
                name=f"monitor-{self.device_id}",
                daemon=True,
            )
            self._thread.start()
        logger.info("monitor session started for %s", self.device_id)

    def stop(self, timeout: float = 3.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            pool = self._capture_pool
            self._capture_pool = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("monitor thread for %s did not stop before timeout", self.device_id)

        self.sound.disconnect()
        self.recorder.stop_buffering()
        if pool is not None and self._owns_capture_pool:
            pool.shutdown(wait=True)
        self.events.stop()
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners = []
        try:
            self.video_source.close()
        except Exception:
            logger.debug("video source close failed for %s", self.device_id, exc_info=True)
        self.motion.reset()
        with self._lock:
            self._last_frame = None
        logger.info("monitor session stopped for %s", self.device_id)

    def _run_loop(self) -> None:
        interval = self.tick_interval_ms / 1000.0
        stop_event = self._stop_event
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                logger.exception("detection tick failed for %s", self.device_id)
            elapsed = time.monotonic() - started
            if stop_event.wait(max(0.0, interval - elapsed)):
                break

    def _ensure_buffering(self) -> None:
        if self.recorder.buffering or not self.running or not self._camera_retry.retry_due():
            return
        try:
            self.recorder.start_buffering(self.video_source)
        except DeviceUnavailable:
            delay = self._camera_retry.register_failure()
            logger.debug("video source for %s still unavailable, next attempt in %.1fs", self.device_id, delay)
            return
        self._camera_retry.reset()
        logger.info(
            "video source for %s recovered, evidence buffering resumed",
            self.device_id,
            extra={"device_id": self.device_id},
        )

    def _current_frame(self) -> np.ndarray | None:
        if self.recorder.buffering:
            return self.recorder.latest_frame()
        try:
            packet = self.video_source.read_frame()
        except Exception:
            logger.debug("frame read failed for %s", self.device_id, exc_info=True)
            return None
        return packet.frame if packet is not None else None

    def tick(self) -> list[EventType]:
        """Run one detection pass and return the event types accepted by it."""
        settings = self.events.settings
        accepted: list[EventType] = []

        self._ensure_buffering()
        frame = self._current_frame()
        if frame is not None:
            with self._lock:
                self._last_frame = frame

        if settings.motion_enabled and frame is not None:
            motion = self.motion.analyze(frame)
            if motion.has_motion and self.events.handle_detection(EventType.MOTION, motion.confidence):
                accepted.append(EventType.MOTION)

        if settings.sound_enabled and self.sound.connected:
            sound = self.sound.analyze()
            if sound.has_sound:
                confidence = self.policy.sound_confidence(sound.volume)
                if self.events.handle_detection(EventType.SOUND, confidence):
                    accepted.append(EventType.SOUND)

        self._maybe_resync()
        return accepted

    def _maybe_resync(self) -> None:
        interval = self.channel_config.settings_resync_seconds
        if interval <= 0:
            return
        now = time.monotonic()
        if now - self._last_resync >= interval:
            self._last_resync = now
            self.events.publish_settings()

    def last_frame(self) -> np.ndarray | None:
        with self._lock:
            return self._last_frame

    def _apply_thresholds(self, settings: DetectionSettings) -> None:
        self.motion.update_config(motion_threshold=self.policy.motion_threshold(settings.motion_sensitivity))
        self.sound.update_config(volume_threshold=self.policy.sound_threshold(settings.sound_sensitivity))

    def _on_event(self, event: DetectionEvent) -> None:
        with self._lock:
            self._recent.appendleft(event)
            pool = self._capture_pool
        self.events.publish_event(event)
        if pool is None:
            return
        try:
            pool.submit(self._capture, event)
        except RuntimeError:
            logger.warning("capture pool closed, %s event has no clip", event.type.value)

    def _capture(self, event: DetectionEvent) -> None:
        try:
            self.recorder.capture_event(
                event.type,
                event.confidence,
                event.device_id,
                frame_source=self.last_frame,
                timestamp=event.timestamp,
            )
        except NotBufferingError:
            logger.info("%s event at %d recorded without clip", event.type.value, event.timestamp)
        except CaptureAborted:
            logger.info("%s clip discarded because the session stopped", event.type.value)
        except (CaptureError, StorageError):
            logger.exception("evidence capture failed for %s event", event.type.value)

    def _on_settings(self, settings: DetectionSettings) -> None:
        self._apply_thresholds(settings)
        if not settings.motion_enabled:
            self.motion.reset()
        self.events.publish_settings()
        if self._on_settings_callback is not None:
            try:
                self._on_settings_callback(settings)
            except Exception:
                logger.exception("persisting detection settings failed")

    def update_settings(self, **changes: Any) -> DetectionSettings:
        return self.events.apply_settings(changes)

    def recent_events(self, limit: int | None = None) -> list[dict[str, object]]:
        with self._lock:
            events = list(self._recent)
        if limit is not None:
            events = events[: max(0, limit)]
        return [event.as_dict() for event in events]

    def status(self) -> dict[str, Any]:
        try:
            video = self.video_source.health()
        except Exception:
            logger.debug("video health unavailable for %s", self.device_id, exc_info=True)
            video = {}
        captures = self.recorder.recent_captures()
        return {
            "device_id": self.device_id,
            "running": self.running,
            "buffering": self.recorder.buffering,
            "buffered_chunks": self.recorder.buffered_chunks(),
            "last_capture": captures[0].as_dict() if captures else None,
            "sound_connected": self.sound.connected,
            "video": video,
            "last_event_time": {kind.value: self.events.last_event_time(kind) for kind in EventType},
            "on_cooldown": {kind.value: self.events.is_on_cooldown(kind) for kind in EventType},
        }
