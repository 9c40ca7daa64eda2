from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from petwatch.errors import ConfigurationError
from petwatch.util.security import validate_device_id

from .defaults import (
    APP_VERSION,
    DEFAULT_AUDIO_SAMPLE_RATE,
    DEFAULT_AUDIO_WINDOW,
    DEFAULT_BIND,
    DEFAULT_CAMERA_PREFIX,
    DEFAULT_CHANNEL_TOPIC,
    DEFAULT_CHUNK_SECONDS,
    DEFAULT_CLIP_LIMIT,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_IMAGE_QUALITY,
    DEFAULT_MOTION_HEIGHT,
    DEFAULT_MOTION_THRESHOLD,
    DEFAULT_MOTION_WIDTH,
    DEFAULT_PIXEL_THRESHOLD,
    DEFAULT_PORT,
    DEFAULT_POST_BUFFER_SECONDS,
    DEFAULT_PRE_BUFFER_SECONDS,
    DEFAULT_RECORDING_FPS,
    DEFAULT_SENSITIVITY,
    DEFAULT_SETTINGS_RESYNC_SECONDS,
    DEFAULT_TICK_INTERVAL_MS,
    DEFAULT_VIEWER_PREFIX,
    DEFAULT_VOLUME_THRESHOLD,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class DetectionSettings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    motion_enabled: bool = True
    sound_enabled: bool = True
    motion_sensitivity: float = Field(default=DEFAULT_SENSITIVITY, ge=0.0, le=1.0)
    sound_sensitivity: float = Field(default=DEFAULT_SENSITIVITY, ge=0.0, le=1.0)
    cooldown_seconds: int = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0)


class DetectionPolicy(BaseModel):
    """Maps sensitivity dials to confidence gates and analyzer thresholds.

    The constants are empirical. Every mapping is linear and non-increasing in
    sensitivity as long as the spans are non-negative.
    """

    min_confidence_base: float = Field(default=0.6, ge=0.0, le=1.0)
    min_confidence_span: float = Field(default=0.4, ge=0.0, le=1.0)
    motion_threshold_base: float = Field(default=0.05, gt=0.0, le=1.0)
    motion_threshold_span: float = Field(default=0.04, ge=0.0, le=1.0)
    sound_threshold_base: float = Field(default=0.3, gt=0.0, le=1.0)
    sound_threshold_span: float = Field(default=0.25, ge=0.0, le=1.0)
    sound_confidence_reference: float = Field(default=0.3, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def thresholds_stay_positive(self) -> "DetectionPolicy":
        if self.motion_threshold_span >= self.motion_threshold_base:
            msg = "motion_threshold_span must be smaller than motion_threshold_base"
            raise ValueError(msg)
        if self.sound_threshold_span >= self.sound_threshold_base:
            msg = "sound_threshold_span must be smaller than sound_threshold_base"
            raise ValueError(msg)
        return self

    def min_confidence(self, sensitivity: float) -> float:
        return self.min_confidence_base - _check_sensitivity(sensitivity) * self.min_confidence_span

    def motion_threshold(self, sensitivity: float) -> float:
        return self.motion_threshold_base - _check_sensitivity(sensitivity) * self.motion_threshold_span

    def sound_threshold(self, sensitivity: float) -> float:
        return self.sound_threshold_base - _check_sensitivity(sensitivity) * self.sound_threshold_span

    def sound_confidence(self, volume: float) -> float:
        return min(max(volume, 0.0) / self.sound_confidence_reference, 1.0)


class MotionConfig(BaseModel):
    width: int = Field(default=DEFAULT_MOTION_WIDTH, ge=8, le=4096)
    height: int = Field(default=DEFAULT_MOTION_HEIGHT, ge=8, le=4096)
    pixel_threshold: float = Field(default=DEFAULT_PIXEL_THRESHOLD, ge=0.0, le=255.0)
    motion_threshold: float = Field(default=DEFAULT_MOTION_THRESHOLD, gt=0.0, le=1.0)


class SoundConfig(BaseModel):
    capture: bool = True
    device: int | str | None = None
    sample_rate: int = Field(default=DEFAULT_AUDIO_SAMPLE_RATE, ge=8000, le=192_000)
    window_size: int = Field(default=DEFAULT_AUDIO_WINDOW, ge=32, le=32_768)
    volume_threshold: float = Field(default=DEFAULT_VOLUME_THRESHOLD, gt=0.0, le=1.0)
    band_low_hz: float | None = Field(default=None, ge=0.0)
    band_high_hz: float | None = Field(default=None, gt=0.0)

    @model_validator(mode="after")
    def band_is_complete(self) -> "SoundConfig":
        low, high = self.band_low_hz, self.band_high_hz
        if (low is None) != (high is None):
            msg = "band_low_hz and band_high_hz must be set together"
            raise ValueError(msg)
        if low is not None and high is not None and low >= high:
            msg = "band_low_hz must be below band_high_hz"
            raise ValueError(msg)
        return self


class RecordingConfig(BaseModel):
    pre_buffer_seconds: int = Field(default=DEFAULT_PRE_BUFFER_SECONDS, ge=0, le=120)
    post_buffer_seconds: float = Field(default=DEFAULT_POST_BUFFER_SECONDS, ge=0.0, le=300.0)
    chunk_seconds: float = Field(default=DEFAULT_CHUNK_SECONDS, gt=0.0, le=10.0)
    fps: float = Field(default=DEFAULT_RECORDING_FPS, gt=0.0, le=60.0)
    image_quality: int = Field(default=DEFAULT_IMAGE_QUALITY, ge=1, le=100)
    codec: str = "mp4v"

    @field_validator("codec")
    @classmethod
    def fourcc_length(cls, value: str) -> str:
        if len(value) != 4:
            msg = "codec must be a four character code"
            raise ValueError(msg)
        return value


class CameraConfig(BaseModel):
    source: str = "0"
    width: int | None = Field(default=None, ge=1)
    height: int | None = Field(default=None, ge=1)
    fps: float | None = Field(default=None, gt=0.0)


class ChannelConfig(BaseModel):
    topic: str = DEFAULT_CHANNEL_TOPIC
    viewer_prefix: str = DEFAULT_VIEWER_PREFIX
    camera_prefix: str = DEFAULT_CAMERA_PREFIX
    settings_resync_seconds: float = Field(default=DEFAULT_SETTINGS_RESYNC_SECONDS, ge=0.0)


class AppSettings(BaseModel):
    version: int = APP_VERSION
    data_dir: str
    bind: str = DEFAULT_BIND
    port: int = DEFAULT_PORT
    device_id: str = Field(default_factory=lambda: f"{DEFAULT_CAMERA_PREFIX}{uuid4().hex[:8]}")
    tick_interval_ms: int = Field(default=DEFAULT_TICK_INTERVAL_MS, ge=20, le=5000)
    recent_events_limit: int = Field(default=100, ge=1, le=10_000)
    clip_query_limit: int = Field(default=DEFAULT_CLIP_LIMIT, ge=1, le=2000)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    policy: DetectionPolicy = Field(default_factory=DetectionPolicy)
    motion: MotionConfig = Field(default_factory=MotionConfig)
    sound: SoundConfig = Field(default_factory=SoundConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)

    @field_validator("data_dir")
    @classmethod
    def data_dir_not_empty(cls, value: str) -> str:
        if not value.strip():
            msg = "data_dir cannot be empty"
            raise ValueError(msg)
        return value

    @field_validator("device_id")
    @classmethod
    def device_id_is_safe(cls, value: str) -> str:
        return validate_device_id(value)


def _check_sensitivity(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"sensitivity must be within [0, 1], got {value}")
    return value


def merge_config(current: ModelT, changes: Mapping[str, Any]) -> ModelT:
    """Return a validated copy of ``current`` with ``changes`` applied.

    Keys may use either field names or their aliases. Unknown keys and values
    that fail validation raise ConfigurationError and leave ``current`` intact.
    """
    model_cls = type(current)
    names: dict[str, str] = {}
    for name, info in model_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name

    merged = current.model_dump()
    for key, value in changes.items():
        name = names.get(key)
        if name is None:
            raise ConfigurationError(f"unknown {model_cls.__name__} field: {key}")
        merged[name] = value

    try:
        return model_cls.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
