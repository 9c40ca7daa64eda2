from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import cv2
import numpy as np

from petwatch.config.schema import MotionConfig, merge_config


@dataclass(frozen=True)
class MotionResult:
    has_motion: bool
    score: float
    confidence: float


IDLE_MOTION = MotionResult(has_motion=False, score=0.0, confidence=0.0)


class MotionAnalyzer:
    """Frame-differencing motion scorer.

    Frames are downsampled to a fixed resolution and compared with the previous
    downsampled frame. A pixel counts as changed when the summed absolute
    difference over its three colour channels exceeds ``3 * pixel_threshold``.
    One analyzer serves one tick loop; calls must be serial.
    """

    def __init__(self, config: MotionConfig | None = None) -> None:
        self._config = config or MotionConfig()
        self._previous: np.ndarray | None = None

    @property
    def config(self) -> MotionConfig:
        return self._config

    def analyze(self, frame: np.ndarray | None) -> MotionResult:
        if frame is None or frame.size == 0:
            return IDLE_MOTION

        current = self._downsample(frame)
        previous = self._previous
        self._previous = current
        if previous is None:
            return IDLE_MOTION

        diff = np.abs(current - previous).sum(axis=2)
        changed = int(np.count_nonzero(diff > 3.0 * self._config.pixel_threshold))
        score = changed / float(diff.size)
        motion_threshold = self._config.motion_threshold
        return MotionResult(
            has_motion=score > motion_threshold,
            score=score,
            confidence=min(score / motion_threshold, 1.0),
        )

    def update_config(self, **changes: Any) -> MotionConfig:
        updated = merge_config(self._config, changes)
        resized = (updated.width, updated.height) != (self._config.width, self._config.height)
        self._config = updated
        if resized:
            self._previous = None
        return updated

    def reset(self) -> None:
        self._previous = None

    def _downsample(self, frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        elif frame.shape[2] == 4:
            frame = frame[:, :, :3]
        elif frame.shape[2] == 1:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        size = (self._config.width, self._config.height)
        if frame.shape[1] != size[0] or frame.shape[0] != size[1]:
            frame = cv2.resize(frame, size, interpolation=cv2.INTER_AREA)
        return frame.astype(np.int16)
