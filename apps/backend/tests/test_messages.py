from __future__ import annotations

import pytest

from petwatch.channel.base import ParticipantRole, role_of
from petwatch.channel.messages import (
    EventMessage,
    EventType,
    SettingsMessage,
    decode_message,
    encode_message,
)
from petwatch.config.schema import DetectionSettings
from petwatch.errors import MessageFormatError


def test_event_message_wire_format() -> None:
    message = EventMessage(type=EventType.SOUND, timestamp=1_712_000_000_123, device_id="cam_kitchen", confidence=0.5)
    assert encode_message(message) == (
        b'{"messageType":"event","type":"sound","timestamp":1712000000123,"deviceId":"cam_kitchen","confidence":0.5}'
    )


def test_settings_message_wire_format() -> None:
    settings = DetectionSettings(motion_enabled=True, sound_enabled=False, motion_sensitivity=0.25, sound_sensitivity=0.75, cooldown_seconds=12)
    assert encode_message(SettingsMessage.from_settings(settings)) == (
        b'{"messageType":"settings","motionEnabled":true,"soundEnabled":false,'
        b'"motionSensitivity":0.25,"soundSensitivity":0.75,"cooldownSeconds":12}'
    )


def test_decode_event_message() -> None:
    message = decode_message('{"messageType":"event","type":"motion","timestamp":5,"deviceId":"cam_1","confidence":1}')
    assert isinstance(message, EventMessage)
    assert message.type is EventType.MOTION
    assert message.device_id == "cam_1"
    assert message.confidence == 1.0


def test_decode_partial_settings_message() -> None:
    message = decode_message(b'{"messageType":"settings","soundEnabled":false}')
    assert isinstance(message, SettingsMessage)
    assert message.changes() == {"sound_enabled": False}


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"[]",
        b'{"type":"motion"}',
        b'{"messageType":"alert"}',
        b'{"messageType":"event","type":"smoke","timestamp":1,"deviceId":"cam_1","confidence":0.5}',
        b'{"messageType":"event","type":"motion","timestamp":1,"deviceId":"cam_1","confidence":1.5}',
        b'{"messageType":"settings","motionEnabled":"maybe"}',
    ],
)
def test_invalid_payloads_raise_message_format_error(payload: bytes) -> None:
    with pytest.raises(MessageFormatError):
        decode_message(payload)


def test_roles_follow_identity_prefixes() -> None:
    assert role_of("viewer_abc", viewer_prefix="viewer_", camera_prefix="cam_") is ParticipantRole.VIEWER
    assert role_of("cam_abc", viewer_prefix="viewer_", camera_prefix="cam_") is ParticipantRole.CAMERA
    assert role_of("guest", viewer_prefix="viewer_", camera_prefix="cam_") is None
    assert role_of(None, viewer_prefix="viewer_", camera_prefix="cam_") is None
