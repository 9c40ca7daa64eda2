from __future__ import annotations

import time
from dataclasses import dataclass

import numpy as np

from petwatch.config.schema import MotionConfig, SoundConfig
from petwatch.detection.motion import MotionAnalyzer
from petwatch.detection.sound import band_energy_ratio, normalize_samples, rms_volume


@dataclass
class BenchmarkResult:
    ok: bool
    frames: int
    frame_width: int
    frame_height: int
    motion_ms: float
    motion_fps: float
    motion_hits: int
    sound_ms: float


def run_benchmark(
    *,
    frames: int = 120,
    frame_width: int = 640,
    frame_height: int = 360,
    motion: MotionConfig | None = None,
    sound: SoundConfig | None = None,
) -> BenchmarkResult:
    """Time both analyzers on synthetic input: a square sweeping a black frame and a noisy tone."""
    analyzer = MotionAnalyzer(motion)
    sound = sound or SoundConfig(band_low_hz=300.0, band_high_hz=3000.0)
    loops = max(10, int(frames))

    frame = np.zeros((frame_height, frame_width, 3), dtype=np.uint8)
    box_width = max(10, frame_width // 6)
    box_height = max(10, frame_height // 4)
    hits = 0
    started = time.perf_counter()
    for index in range(loops):
        frame.fill(0)
        x = int((index * 17) % max(1, frame_width - box_width))
        y = int((index * 11) % max(1, frame_height - box_height))
        frame[y : y + box_height, x : x + box_width] = 255
        if analyzer.analyze(frame).has_motion:
            hits += 1
    motion_seconds = max(1e-6, time.perf_counter() - started)

    rng = np.random.default_rng(7)
    t = np.arange(sound.window_size) / sound.sample_rate
    window = (0.3 * np.sin(2 * np.pi * 440.0 * t) + 0.05 * rng.standard_normal(t.size)).astype(np.float32)
    started = time.perf_counter()
    for _ in range(loops):
        samples = normalize_samples(window)
        rms_volume(samples)
        band_energy_ratio(samples, sound.sample_rate, sound.band_low_hz or 0.0, sound.band_high_hz or sound.sample_rate / 2)
    sound_seconds = max(1e-6, time.perf_counter() - started)

    return BenchmarkResult(
        ok=True,
        frames=loops,
        frame_width=frame_width,
        frame_height=frame_height,
        motion_ms=round(motion_seconds * 1000.0 / loops, 3),
        motion_fps=round(loops / motion_seconds, 3),
        motion_hits=hits,
        sound_ms=round(sound_seconds * 1000.0 / loops, 3),
    )
