from __future__ import annotations

import threading
from collections.abc import Callable

from petwatch.errors import ChannelError
from petwatch.util.logging import get_logger

from .base import EventChannel, MessageHandler

logger = get_logger(__name__)


class MemoryHub:
    """In-process room: every endpoint sees the others as participants."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._endpoints: dict[str, MemoryChannel] = {}

    def endpoint(self, identity: str) -> "MemoryChannel":
        with self._lock:
            existing = self._endpoints.get(identity)
            if existing is not None:
                return existing
            channel = MemoryChannel(self, identity)
            self._endpoints[identity] = channel
            return channel

    def leave(self, identity: str) -> None:
        with self._lock:
            self._endpoints.pop(identity, None)

    def identities(self) -> list[str]:
        with self._lock:
            return sorted(self._endpoints)

    def deliver(self, sender: str, payload: bytes, topic: str, destinations: list[str] | None) -> None:
        with self._lock:
            if sender not in self._endpoints:
                raise ChannelError(f"{sender} is not connected")
            targets = [
                channel
                for identity, channel in self._endpoints.items()
                if identity != sender and (destinations is None or identity in destinations)
            ]
        for channel in targets:
            channel.receive(payload, sender, topic)


class MemoryChannel(EventChannel):
    def __init__(self, hub: MemoryHub, identity: str) -> None:
        self.hub = hub
        self.identity = identity
        self._handlers: list[MessageHandler] = []
        self._lock = threading.Lock()

    def publish(self, payload: bytes, *, topic: str, destinations: list[str] | None = None) -> None:
        self.hub.deliver(self.identity, payload, topic, destinations)

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def participants(self) -> list[str]:
        return [identity for identity in self.hub.identities() if identity != self.identity]

    def receive(self, payload: bytes, sender: str | None, topic: str | None) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(payload, sender, topic)
            except Exception:
                logger.exception("channel handler failed for message from %s", sender)

    def close(self) -> None:
        with self._lock:
            self._handlers.clear()
        self.hub.leave(self.identity)
