from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

MessageHandler = Callable[[bytes, "str | None", "str | None"], None]


class ParticipantRole(str, Enum):
    CAMERA = "camera"
    VIEWER = "viewer"


class EventChannel(ABC):
    """Reliable bidirectional message transport supplied by the host application.

    Handlers receive ``(payload, sender_identity, topic)``. Sends may raise
    ChannelError; callers treat them as fire-and-forget.
    """

    @abstractmethod
    def publish(self, payload: bytes, *, topic: str, destinations: list[str] | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        raise NotImplementedError

    @abstractmethod
    def participants(self) -> list[str]:
        raise NotImplementedError


def role_of(identity: str | None, *, viewer_prefix: str, camera_prefix: str) -> ParticipantRole | None:
    if not identity:
        return None
    if identity.startswith(viewer_prefix):
        return ParticipantRole.VIEWER
    if identity.startswith(camera_prefix):
        return ParticipantRole.CAMERA
    return None
