from __future__ import annotations

import math
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any

from petwatch.channel.base import EventChannel, ParticipantRole, role_of
from petwatch.channel.messages import (
    EventMessage,
    EventType,
    SettingsMessage,
    decode_message,
    encode_message,
)
from petwatch.config.schema import ChannelConfig, DetectionPolicy, DetectionSettings, merge_config
from petwatch.errors import ChannelError, ConfigurationError, MessageFormatError
from petwatch.util.logging import get_logger
from petwatch.util.time import epoch_ms

logger = get_logger(__name__)

Listener = Callable[[Any], None]


class EngineSignal(str, Enum):
    EVENT = "event"
    SETTINGS = "settings"


@dataclass(frozen=True)
class DetectionEvent:
    type: EventType
    timestamp: int
    confidence: float
    device_id: str

    def to_message(self) -> EventMessage:
        return EventMessage(
            type=self.type,
            timestamp=self.timestamp,
            device_id=self.device_id,
            confidence=self.confidence,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "confidence": self.confidence,
            "device_id": self.device_id,
        }


class EventManager:
    """Decides which detections become events for one monitored device.

    Each event type is independently Idle or in Cooldown. Accepted events are
    handed to ``EngineSignal.EVENT`` listeners on a single worker, so listener
    calls never block the detection tick and arrive in acceptance order.
    """

    def __init__(
        self,
        device_id: str,
        *,
        settings: DetectionSettings | None = None,
        policy: DetectionPolicy | None = None,
        channel: EventChannel | None = None,
        channel_config: ChannelConfig | None = None,
        clock: Callable[[], int] = epoch_ms,
        dispatcher: Executor | None = None,
    ) -> None:
        self.device_id = device_id
        self.policy = policy or DetectionPolicy()
        self.channel = channel
        self.channel_config = channel_config or ChannelConfig()
        self._clock = clock
        self._settings = settings or DetectionSettings()
        self._last_event_time: dict[EventType, int | None] = {kind: None for kind in EventType}
        self._listeners: dict[EngineSignal, list[Listener]] = {signal: [] for signal in EngineSignal}
        self._lock = threading.RLock()
        self._owns_dispatcher = dispatcher is None
        self._dispatcher: Executor = dispatcher or self._new_dispatcher()
        self._dispatcher_closed = False
        self._unsubscribe: Callable[[], None] | None = None

    def _new_dispatcher(self) -> Executor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"events-{self.device_id}")

    def start(self) -> None:
        with self._lock:
            if self._dispatcher_closed and self._owns_dispatcher:
                self._dispatcher = self._new_dispatcher()
                self._dispatcher_closed = False
            if self.channel is not None and self._unsubscribe is None:
                self._unsubscribe = self.channel.subscribe(self.handle_channel_message)

    def stop(self) -> None:
        with self._lock:
            unsubscribe = self._unsubscribe
            self._unsubscribe = None
            close_dispatcher = self._owns_dispatcher and not self._dispatcher_closed
            self._dispatcher_closed = self._dispatcher_closed or self._owns_dispatcher
        if unsubscribe is not None:
            unsubscribe()
        if close_dispatcher:
            self._dispatcher.shutdown(wait=True)

    def add_listener(self, signal: EngineSignal, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[signal].append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners[signal]:
                    self._listeners[signal].remove(listener)

        return remove

    @property
    def settings(self) -> DetectionSettings:
        with self._lock:
            return self._settings.model_copy()

    def apply_settings(self, changes: Mapping[str, Any]) -> DetectionSettings:
        """Merge a partial update. Cooldown state is left untouched."""
        with self._lock:
            self._settings = merge_config(self._settings, changes)
            snapshot = self._settings.model_copy()
        self._emit(EngineSignal.SETTINGS, snapshot)
        return snapshot

    def update_settings(self, **changes: Any) -> DetectionSettings:
        return self.apply_settings(changes)

    def _sensitivity(self, kind: EventType) -> float:
        if kind is EventType.MOTION:
            return self._settings.motion_sensitivity
        return self._settings.sound_sensitivity

    def _enabled(self, kind: EventType) -> bool:
        if kind is EventType.MOTION:
            return self._settings.motion_enabled
        return self._settings.sound_enabled

    def _in_cooldown(self, kind: EventType, now: int) -> bool:
        last = self._last_event_time[kind]
        if last is None:
            return False
        return now - last < self._settings.cooldown_seconds * 1000

    def handle_detection(self, event_type: EventType | str, confidence: float) -> bool:
        kind = EventType(event_type)
        if not math.isfinite(confidence):
            return False
        confidence = min(max(float(confidence), 0.0), 1.0)

        with self._lock:
            now = self._clock()
            if not self._enabled(kind):
                return False
            if self._in_cooldown(kind, now):
                return False
            if confidence < self.policy.min_confidence(self._sensitivity(kind)):
                return False
            self._last_event_time[kind] = now
            event = DetectionEvent(type=kind, timestamp=now, confidence=confidence, device_id=self.device_id)

        logger.info(
            "%s event accepted (confidence %.2f)",
            kind.value,
            confidence,
            extra={"device_id": self.device_id, "event_type": kind.value},
        )
        self._emit(EngineSignal.EVENT, event)
        return True

    def is_on_cooldown(self, event_type: EventType | str) -> bool:
        with self._lock:
            return self._in_cooldown(EventType(event_type), self._clock())

    def last_event_time(self, event_type: EventType | str) -> int | None:
        with self._lock:
            return self._last_event_time[EventType(event_type)]

    def reset_cooldown(self, event_type: EventType | str | None = None) -> None:
        with self._lock:
            if event_type is None:
                for kind in EventType:
                    self._last_event_time[kind] = None
            else:
                self._last_event_time[EventType(event_type)] = None

    def _emit(self, signal: EngineSignal, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[signal])
        if not listeners:
            return
        try:
            self._dispatcher.submit(self._notify, listeners, signal, payload)
        except RuntimeError:
            logger.warning("event dispatcher stopped, dropping %s signal", signal.value)

    @staticmethod
    def _notify(listeners: list[Listener], signal: EngineSignal, payload: Any) -> None:
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("%s listener failed", signal.value)

    def drain(self, timeout: float | None = None) -> bool:
        """Block until every signal dispatched so far has been delivered."""
        try:
            future = self._dispatcher.submit(lambda: None)
        except RuntimeError:
            return True
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def handle_channel_message(self, payload: bytes, sender: str | None, topic: str | None) -> None:
        if topic != self.channel_config.topic:
            return
        role = role_of(
            sender,
            viewer_prefix=self.channel_config.viewer_prefix,
            camera_prefix=self.channel_config.camera_prefix,
        )
        if role is not ParticipantRole.VIEWER:
            logger.debug("ignoring channel message from non-viewer %s", sender)
            return

        try:
            message = decode_message(payload)
        except MessageFormatError:
            logger.warning("dropping malformed channel message from %s", sender, exc_info=True)
            return

        if not isinstance(message, SettingsMessage):
            logger.debug("ignoring %s message from %s", message.message_type, sender)
            return

        try:
            settings = self.apply_settings(message.changes())
        except ConfigurationError as exc:
            logger.warning("rejected settings from %s: %s", sender, exc)
            return
        logger.info("settings updated from %s: %s", sender, settings.model_dump(by_alias=True))

    def _viewer_identities(self, channel: EventChannel) -> list[str]:
        return [
            identity
            for identity in channel.participants()
            if role_of(
                identity,
                viewer_prefix=self.channel_config.viewer_prefix,
                camera_prefix=self.channel_config.camera_prefix,
            )
            is ParticipantRole.VIEWER
        ]

    def _publish(self, payload: bytes, kind: str) -> bool:
        channel = self.channel
        if channel is None:
            return False
        try:
            destinations = self._viewer_identities(channel)
            if not destinations:
                logger.debug("no viewers connected, %s message not sent", kind)
                return False
            channel.publish(payload, topic=self.channel_config.topic, destinations=destinations)
        except ChannelError:
            logger.warning("failed to send %s message", kind, exc_info=True)
            return False
        except Exception:
            logger.exception("channel publish raised unexpectedly for %s message", kind)
            return False
        return True

    def publish_event(self, event: DetectionEvent) -> bool:
        return self._publish(encode_message(event.to_message()), "event")

    def publish_settings(self) -> bool:
        return self._publish(encode_message(SettingsMessage.from_settings(self.settings)), "settings")
