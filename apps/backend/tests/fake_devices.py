from __future__ import annotations

from concurrent.futures import Executor, Future
from typing import Any

import numpy as np

from petwatch.audio.base import AudioSource
from petwatch.errors import DeviceUnavailable


def sine_window(amplitude: float, frequency: float = 440.0, sample_rate: int = 16000, size: int = 2048) -> np.ndarray:
    t = np.arange(size) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


class FakeAudioSource(AudioSource):
    def __init__(self, window: np.ndarray | None = None, sample_rate: int = 16000, error: Exception | None = None) -> None:
        self.sample_rate = sample_rate
        self.window = window
        self.error = error
        self.opened = False
        self.open_calls = 0
        self.close_calls = 0

    def open(self) -> None:
        self.open_calls += 1
        if self.error is not None:
            raise self.error
        self.opened = True

    def read_window(self, size: int) -> np.ndarray | None:
        if not self.opened or self.window is None:
            return None
        return self.window[-size:]

    def close(self) -> None:
        self.close_calls += 1
        self.opened = False


def unavailable_audio() -> FakeAudioSource:
    return FakeAudioSource(error=DeviceUnavailable("no microphone"))


class ImmediateExecutor(Executor):
    """Runs submitted work inline so listener and capture effects are visible at once."""

    def submit(self, fn: Any, /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


class ManualClock:
    def __init__(self, now_ms: int = 0) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeEncoder:
    def __init__(self) -> None:
        self.calls: list[int] = []

    def encode(self, frames: list[np.ndarray]) -> bytes:
        self.calls.append(len(frames))
        return f"video:{len(frames)}".encode()
