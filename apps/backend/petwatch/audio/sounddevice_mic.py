from __future__ import annotations

import threading
from typing import Any

import numpy as np
import sounddevice as sd

from petwatch.config.schema import SoundConfig
from petwatch.errors import DeviceUnavailable
from petwatch.util.logging import get_logger

from .base import AudioSource

logger = get_logger(__name__)


class SoundDeviceSource(AudioSource):
    """Microphone input through PortAudio, kept in a fixed-size sample ring."""

    def __init__(self, config: SoundConfig) -> None:
        self.sample_rate = int(config.sample_rate)
        self.device = config.device
        self._capacity = max(int(config.window_size) * 4, self.sample_rate)
        self._ring = np.zeros(self._capacity, dtype=np.float32)
        self._write_pos = 0
        self._filled = 0
        self._ring_lock = threading.Lock()
        self._stream_lock = threading.Lock()
        self._stream: sd.InputStream | None = None

    def open(self) -> None:
        with self._stream_lock:
            if self._stream is not None:
                return
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype="float32",
                    device=self.device,
                    callback=self._on_audio,
                )
                stream.start()
            except (sd.PortAudioError, ValueError) as exc:
                raise DeviceUnavailable(f"microphone unavailable: {exc}") from exc
            self._stream = stream

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:
        if status:
            logger.debug("audio callback status: %s", status)
        samples = np.asarray(indata[:frames, 0], dtype=np.float32)
        if samples.size >= self._capacity:
            samples = samples[-self._capacity :]
        with self._ring_lock:
            end = self._write_pos + samples.size
            if end <= self._capacity:
                self._ring[self._write_pos : end] = samples
            else:
                split = self._capacity - self._write_pos
                self._ring[self._write_pos :] = samples[:split]
                self._ring[: end - self._capacity] = samples[split:]
            self._write_pos = end % self._capacity
            self._filled = min(self._capacity, self._filled + samples.size)

    def read_window(self, size: int) -> np.ndarray | None:
        with self._ring_lock:
            count = min(int(size), self._filled)
            if count <= 0:
                return None
            indices = (self._write_pos - count + np.arange(count)) % self._capacity
            return self._ring[indices].copy()

    def close(self) -> None:
        with self._stream_lock:
            stream = self._stream
            self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError:
                logger.debug("audio stream close failed", exc_info=True)
        with self._ring_lock:
            self._write_pos = 0
            self._filled = 0


def probe_audio_source(config: SoundConfig) -> tuple[bool, str]:
    source = SoundDeviceSource(config)
    try:
        source.open()
    except DeviceUnavailable as exc:
        return False, str(exc)
    finally:
        source.close()
    return True, "Microphone opened"
