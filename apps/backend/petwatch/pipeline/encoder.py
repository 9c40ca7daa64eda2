from __future__ import annotations

import tempfile
from pathlib import Path

import cv2
import numpy as np

from petwatch.errors import CaptureError


class ClipEncoder:
    def __init__(self, fps: float, codec: str = "mp4v", scratch_dir: Path | None = None) -> None:
        self.fps = max(1.0, float(fps))
        self.codec = codec
        self.scratch_dir = scratch_dir

    def encode(self, frames: list[np.ndarray]) -> bytes:
        if not frames:
            return b""

        height, width = frames[0].shape[:2]
        with tempfile.TemporaryDirectory(dir=self.scratch_dir) as tmp:
            output = Path(tmp) / "clip.mp4"
            writer = cv2.VideoWriter(
                str(output),
                cv2.VideoWriter_fourcc(*self.codec),
                self.fps,
                (width, height),
            )
            if not writer.isOpened():
                writer.release()
                raise CaptureError(f"video writer unavailable for codec {self.codec}")
            try:
                for frame in frames:
                    if frame.ndim == 2:
                        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
                    if frame.shape[0] != height or frame.shape[1] != width:
                        frame = cv2.resize(frame, (width, height))
                    writer.write(frame)
            except cv2.error as exc:
                raise CaptureError(f"clip encoding failed: {exc}") from exc
            finally:
                writer.release()
            if not output.exists():
                raise CaptureError("video writer produced no output")
            return output.read_bytes()


def encode_snapshot(frame: np.ndarray, quality: int = 85) -> bytes | None:
    ok, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        return None
    return encoded.tobytes()
