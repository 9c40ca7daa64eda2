from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import numpy as np

from petwatch.audio.base import AudioSource
from petwatch.config.schema import SoundConfig, merge_config
from petwatch.errors import DeviceUnavailable
from petwatch.util.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SoundResult:
    has_sound: bool
    volume: float
    band_ratio: float | None = None


SILENT = SoundResult(has_sound=False, volume=0.0)


def normalize_samples(samples: np.ndarray) -> np.ndarray:
    """Map raw PCM to float64 in [-1, 1]."""
    if samples.dtype == np.uint8:
        out = (samples.astype(np.float64) - 128.0) / 128.0
    elif samples.dtype == np.int16:
        out = samples.astype(np.float64) / 32768.0
    elif samples.dtype == np.int32:
        out = samples.astype(np.float64) / 2147483648.0
    else:
        out = samples.astype(np.float64)
    if out.ndim > 1:
        out = out.mean(axis=1)
    return np.clip(out, -1.0, 1.0)


def rms_volume(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples))))


def band_energy_ratio(samples: np.ndarray, sample_rate: int, low_hz: float, high_hz: float) -> float:
    if samples.size < 2:
        return 0.0
    windowed = samples * np.hanning(samples.size)
    power = np.abs(np.fft.rfft(windowed)) ** 2
    total = float(power.sum())
    if total <= 0.0:
        return 0.0
    freqs = np.fft.rfftfreq(samples.size, d=1.0 / sample_rate)
    in_band = (freqs >= low_hz) & (freqs <= high_hz)
    return float(power[in_band].sum()) / total


class SoundAnalyzer:
    def __init__(self, config: SoundConfig | None = None) -> None:
        self._config = config or SoundConfig()
        self._source: AudioSource | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> SoundConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._source is not None

    def connect(self, source: AudioSource) -> None:
        with self._lock:
            if self._source is not None:
                return
            try:
                source.open()
            except DeviceUnavailable:
                logger.warning("sound analyzer could not open audio source", exc_info=True)
                raise
            except Exception as exc:
                logger.warning("sound analyzer could not open audio source", exc_info=True)
                raise DeviceUnavailable(str(exc)) from exc
            self._source = source

    def analyze(self) -> SoundResult:
        source = self._source
        if source is None:
            return SILENT

        raw = source.read_window(self._config.window_size)
        if raw is None or raw.size == 0:
            return SILENT

        samples = normalize_samples(np.asarray(raw))
        volume = rms_volume(samples)
        band_ratio: float | None = None
        if self._config.band_low_hz is not None and self._config.band_high_hz is not None:
            band_ratio = band_energy_ratio(
                samples,
                source.sample_rate,
                self._config.band_low_hz,
                self._config.band_high_hz,
            )
        return SoundResult(
            has_sound=volume > self._config.volume_threshold,
            volume=volume,
            band_ratio=band_ratio,
        )

    def update_config(self, **changes: Any) -> SoundConfig:
        self._config = merge_config(self._config, changes)
        return self._config

    def disconnect(self) -> None:
        with self._lock:
            source = self._source
            self._source = None
        if source is not None:
            try:
                source.close()
            except Exception:
                logger.debug("audio source close failed", exc_info=True)
