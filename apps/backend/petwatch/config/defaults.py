from __future__ import annotations

from pathlib import Path

from petwatch.util.paths import platform_default_data_dir

APP_VERSION = 1
APP_VERSION_STRING = "0.1.0"
DEFAULT_BIND = "127.0.0.1"
DEFAULT_PORT = 8766
DEFAULT_LOG_LEVEL = "info"
DEFAULT_TICK_INTERVAL_MS = 200
DEFAULT_COOLDOWN_SECONDS = 30
DEFAULT_SENSITIVITY = 0.5
DEFAULT_MOTION_WIDTH = 320
DEFAULT_MOTION_HEIGHT = 240
DEFAULT_PIXEL_THRESHOLD = 25.0
DEFAULT_MOTION_THRESHOLD = 0.02
DEFAULT_VOLUME_THRESHOLD = 0.15
DEFAULT_AUDIO_WINDOW = 2048
DEFAULT_AUDIO_SAMPLE_RATE = 16000
DEFAULT_PRE_BUFFER_SECONDS = 3
DEFAULT_POST_BUFFER_SECONDS = 7.0
DEFAULT_CHUNK_SECONDS = 1.0
DEFAULT_RECORDING_FPS = 10.0
DEFAULT_IMAGE_QUALITY = 85
DEFAULT_CLIP_LIMIT = 50
DEFAULT_CHANNEL_TOPIC = "detection"
DEFAULT_VIEWER_PREFIX = "viewer_"
DEFAULT_CAMERA_PREFIX = "cam_"
DEFAULT_SETTINGS_RESYNC_SECONDS = 30.0


def default_data_dir() -> Path:
    return platform_default_data_dir()
