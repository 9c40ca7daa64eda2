from __future__ import annotations

import numpy as np
import pytest

from fake_devices import FakeAudioSource, sine_window, unavailable_audio
from petwatch.config.schema import SoundConfig
from petwatch.detection.sound import SILENT, SoundAnalyzer, band_energy_ratio, normalize_samples, rms_volume
from petwatch.errors import ConfigurationError, DeviceUnavailable


def test_rms_of_sine_and_silence() -> None:
    assert rms_volume(np.zeros(1024)) == 0.0
    assert rms_volume(np.array([])) == 0.0
    assert rms_volume(sine_window(0.5)) == pytest.approx(0.5 / np.sqrt(2), rel=1e-3)


def test_normalize_integer_pcm() -> None:
    samples = normalize_samples(np.array([-32768, 0, 16384], dtype=np.int16))
    assert samples.tolist() == pytest.approx([-1.0, 0.0, 0.5])
    unsigned = normalize_samples(np.array([0, 128, 255], dtype=np.uint8))
    assert unsigned[1] == 0.0
    assert unsigned[0] == -1.0


def test_band_ratio_concentrates_on_tone() -> None:
    tone = sine_window(0.5, frequency=1000.0).astype(np.float64)
    assert band_energy_ratio(tone, 16000, 800.0, 1200.0) > 0.9
    assert band_energy_ratio(tone, 16000, 3000.0, 4000.0) < 0.05
    assert band_energy_ratio(np.zeros(2048), 16000, 800.0, 1200.0) == 0.0


def test_disconnected_analyzer_reports_silence() -> None:
    assert SoundAnalyzer().analyze() == SILENT


def test_loud_and_quiet_windows() -> None:
    source = FakeAudioSource(sine_window(0.5))
    analyzer = SoundAnalyzer()
    analyzer.connect(source)

    loud = analyzer.analyze()
    assert loud.has_sound is True
    assert loud.volume == pytest.approx(0.354, abs=1e-3)
    assert loud.band_ratio is None

    source.window = sine_window(0.05)
    quiet = analyzer.analyze()
    assert quiet.has_sound is False
    assert quiet.volume > 0.0


def test_empty_window_is_silent() -> None:
    analyzer = SoundAnalyzer()
    analyzer.connect(FakeAudioSource(None))
    assert analyzer.analyze() == SILENT


def test_band_ratio_reported_when_configured() -> None:
    analyzer = SoundAnalyzer(SoundConfig(band_low_hz=300.0, band_high_hz=600.0))
    analyzer.connect(FakeAudioSource(sine_window(0.5, frequency=440.0)))
    result = analyzer.analyze()
    assert result.band_ratio is not None
    assert result.band_ratio > 0.9


def test_unavailable_device_leaves_analyzer_disconnected() -> None:
    analyzer = SoundAnalyzer()
    with pytest.raises(DeviceUnavailable):
        analyzer.connect(unavailable_audio())
    assert analyzer.connected is False
    assert analyzer.analyze() == SILENT


def test_unexpected_open_failure_is_reported_as_unavailable() -> None:
    analyzer = SoundAnalyzer()
    with pytest.raises(DeviceUnavailable):
        analyzer.connect(FakeAudioSource(error=RuntimeError("permission denied")))
    assert analyzer.connected is False


def test_connect_is_idempotent_and_disconnect_closes() -> None:
    source = FakeAudioSource(sine_window(0.5))
    analyzer = SoundAnalyzer()
    analyzer.connect(source)
    analyzer.connect(FakeAudioSource(sine_window(0.5)))
    assert source.open_calls == 1

    analyzer.disconnect()
    analyzer.disconnect()
    assert source.close_calls == 1
    assert analyzer.connected is False


def test_threshold_update_is_validated() -> None:
    analyzer = SoundAnalyzer()
    analyzer.update_config(volume_threshold=0.4)
    assert analyzer.config.volume_threshold == 0.4
    with pytest.raises(ConfigurationError):
        analyzer.update_config(volume_threshold=-1.0)
    with pytest.raises(ConfigurationError):
        analyzer.update_config(band_low_hz=500.0)
    assert analyzer.config.volume_threshold == 0.4
