from __future__ import annotations

import sys
import threading

import cv2

from petwatch.config.schema import CameraConfig
from petwatch.util.security import redact_secrets
from petwatch.util.time import monotonic_ns, now_utc_iso

from .base import FramePacket, VideoSource


def parse_source(value: str) -> int | str:
    source = str(value).strip()
    if source.isdigit():
        return int(source)
    return source


class OpenCVVideoSource(VideoSource):
    """``cv2.VideoCapture`` wrapper with serialized reads."""

    def __init__(self, config: CameraConfig) -> None:
        self.config = config
        self.source = parse_source(config.source)
        self.capture: cv2.VideoCapture | None = None
        self.connected = False
        self.failures = 0
        self._lock = threading.Lock()

    def connect(self) -> bool:
        with self._lock:
            if self.capture is not None and self.connected and self.capture.isOpened():
                return True
            if self.capture is not None:
                self.capture.release()
            self.capture = self._open_capture()
            self.capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            if self.config.width:
                self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.config.width))
            if self.config.height:
                self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.config.height))
            if self.config.fps:
                self.capture.set(cv2.CAP_PROP_FPS, float(self.config.fps))
            if hasattr(cv2, "CAP_PROP_OPEN_TIMEOUT_MSEC"):
                self.capture.set(cv2.CAP_PROP_OPEN_TIMEOUT_MSEC, 1500)
            if hasattr(cv2, "CAP_PROP_READ_TIMEOUT_MSEC"):
                self.capture.set(cv2.CAP_PROP_READ_TIMEOUT_MSEC, 1500)
            self.connected = bool(self.capture.isOpened())
            self.failures = 0
            return self.connected

    def read_frame(self) -> FramePacket | None:
        with self._lock:
            capture = self.capture
            if not capture or not self.connected:
                return None
            ok, frame = capture.read()
            if not ok or frame is None:
                self.failures += 1
                return None
        return FramePacket(frame=frame, wall_time_iso=now_utc_iso(), monotonic_ns=monotonic_ns())

    def health(self) -> dict[str, object]:
        with self._lock:
            connected = self.connected
            failures = self.failures
        return {
            "connected": connected,
            "failures": failures,
            "source": redact_secrets(str(self.source)),
        }

    def reconnect(self) -> bool:
        self.close()
        return self.connect()

    def close(self) -> None:
        with self._lock:
            if self.capture is not None:
                self.capture.release()
            self.capture = None
            self.connected = False

    def _open_capture(self) -> cv2.VideoCapture:
        # On Windows, DirectShow avoids MSMF hangs when a webcam device is already busy.
        if isinstance(self.source, int) and sys.platform.startswith("win"):
            return cv2.VideoCapture(self.source, cv2.CAP_DSHOW)
        return cv2.VideoCapture(self.source)


def probe_video_source(config: CameraConfig) -> tuple[bool, str]:
    source = OpenCVVideoSource(config)
    try:
        if not source.connect():
            return False, "Unable to open camera"
        packet = source.read_frame()
        if packet is None:
            return False, "Camera opened but produced no frames"
        height, width = packet.frame.shape[:2]
        return True, f"Camera healthy ({width}x{height})"
    finally:
        source.close()
