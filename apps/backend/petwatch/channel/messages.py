from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from petwatch.config.schema import DetectionSettings
from petwatch.errors import MessageFormatError


class EventType(str, Enum):
    MOTION = "motion"
    SOUND = "sound"


class EventMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_type: Literal["event"] = Field(default="event", alias="messageType")
    type: EventType
    timestamp: int = Field(ge=0)
    device_id: str = Field(alias="deviceId")
    confidence: float = Field(ge=0.0, le=1.0)


class SettingsMessage(BaseModel):
    """Settings sync payload. Inbound messages may carry any subset of fields."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_type: Literal["settings"] = Field(default="settings", alias="messageType")
    motion_enabled: bool | None = Field(default=None, alias="motionEnabled")
    sound_enabled: bool | None = Field(default=None, alias="soundEnabled")
    motion_sensitivity: float | None = Field(default=None, alias="motionSensitivity")
    sound_sensitivity: float | None = Field(default=None, alias="soundSensitivity")
    cooldown_seconds: int | None = Field(default=None, alias="cooldownSeconds")

    @classmethod
    def from_settings(cls, settings: DetectionSettings) -> "SettingsMessage":
        return cls(**settings.model_dump())

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude={"message_type"}, exclude_none=True)


ChannelMessage = Annotated[Union[EventMessage, SettingsMessage], Field(discriminator="message_type")]

_MESSAGE_ADAPTER: TypeAdapter[EventMessage | SettingsMessage] = TypeAdapter(ChannelMessage)


def decode_message(payload: bytes | str) -> EventMessage | SettingsMessage:
    try:
        return _MESSAGE_ADAPTER.validate_json(payload)
    except ValidationError as exc:
        raise MessageFormatError(f"invalid channel message: {exc.error_count()} error(s)") from exc


def encode_message(message: EventMessage | SettingsMessage) -> bytes:
    return message.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
