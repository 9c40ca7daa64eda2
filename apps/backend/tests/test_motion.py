from __future__ import annotations

import numpy as np
import pytest

from fake_camera import solid_frame
from petwatch.config.schema import MotionConfig
from petwatch.detection.motion import IDLE_MOTION, MotionAnalyzer
from petwatch.errors import ConfigurationError


def test_first_frame_has_no_baseline() -> None:
    analyzer = MotionAnalyzer()
    assert analyzer.analyze(solid_frame(0)) == IDLE_MOTION


def test_identical_frames_score_zero() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(40))
    result = analyzer.analyze(solid_frame(40))
    assert result.score == 0.0
    assert result.has_motion is False
    assert result.confidence == 0.0


def test_full_frame_change_is_certain_motion() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(0))
    result = analyzer.analyze(solid_frame(255))
    assert result.score == 1.0
    assert result.has_motion is True
    assert result.confidence == 1.0


def test_partial_change_scales_confidence() -> None:
    analyzer = MotionAnalyzer(MotionConfig(motion_threshold=0.5))
    before = solid_frame(0)
    after = before.copy()
    after[:120, :160] = 255

    analyzer.analyze(before)
    result = analyzer.analyze(after)

    assert result.score == pytest.approx(0.25)
    assert result.has_motion is False
    assert result.confidence == pytest.approx(0.5)


def test_score_must_exceed_threshold_strictly() -> None:
    analyzer = MotionAnalyzer(MotionConfig(motion_threshold=0.25))
    before = solid_frame(0)
    after = before.copy()
    after[:120, :160] = 255

    analyzer.analyze(before)
    result = analyzer.analyze(after)

    assert result.has_motion is False
    assert result.confidence == 1.0


def test_small_pixel_changes_are_ignored() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(100))
    assert analyzer.analyze(solid_frame(120)).score == 0.0
    assert analyzer.analyze(solid_frame(150)).score == 1.0


def test_missing_frame_keeps_baseline() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(0))
    assert analyzer.analyze(None) == IDLE_MOTION
    assert analyzer.analyze(solid_frame(255)).has_motion is True


def test_large_and_grayscale_frames_are_downsampled() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(np.zeros((480, 640), dtype=np.uint8))
    result = analyzer.analyze(np.full((480, 640, 4), 255, dtype=np.uint8))
    assert result.score == pytest.approx(1.0)


def test_resolution_change_drops_baseline() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(0))
    analyzer.update_config(width=160, height=120)
    assert analyzer.analyze(solid_frame(255)) == IDLE_MOTION
    assert analyzer.config.width == 160


def test_threshold_change_keeps_baseline() -> None:
    analyzer = MotionAnalyzer()
    analyzer.analyze(solid_frame(0))
    analyzer.update_config(motion_threshold=0.5)
    assert analyzer.analyze(solid_frame(255)).has_motion is True


def test_invalid_config_is_rejected_and_previous_kept() -> None:
    analyzer = MotionAnalyzer()
    with pytest.raises(ConfigurationError):
        analyzer.update_config(width=0)
    with pytest.raises(ConfigurationError):
        analyzer.update_config(motion_threshold=0.0)
    assert analyzer.config == MotionConfig()
