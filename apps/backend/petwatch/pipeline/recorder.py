from __future__ import annotations

import math
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import numpy as np

from petwatch.camera.base import VideoSource
from petwatch.camera.health import ReconnectState
from petwatch.channel.messages import EventType
from petwatch.config.defaults import DEFAULT_CLIP_LIMIT
from petwatch.config.schema import RecordingConfig
from petwatch.errors import CaptureAborted, CaptureError, DeviceUnavailable, NotBufferingError
from petwatch.storage.clips import ClipQuery, ClipStore, StoredClip
from petwatch.util.logging import get_logger
from petwatch.util.time import epoch_ms, monotonic_ns

from .encoder import ClipEncoder, encode_snapshot

logger = get_logger(__name__)

FrameProvider = Callable[[], "np.ndarray | None"]


@dataclass(frozen=True)
class MediaChunk:
    frames: list[np.ndarray]
    started_ns: int
    ended_ns: int

    @property
    def duration_seconds(self) -> float:
        return max(0, self.ended_ns - self.started_ns) / 1_000_000_000


@dataclass(frozen=True)
class CaptureSummary:
    clip_id: str
    event_type: EventType
    pre_roll_chunks: int
    post_roll_chunks: int
    pre_roll_frames: int
    post_roll_frames: int
    duration_seconds: float

    @property
    def frame_count(self) -> int:
        return self.pre_roll_frames + self.post_roll_frames

    def as_dict(self) -> dict[str, object]:
        return {
            "clip_id": self.clip_id,
            "type": self.event_type.value,
            "pre_roll_chunks": self.pre_roll_chunks,
            "post_roll_chunks": self.post_roll_chunks,
            "frame_count": self.frame_count,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class _PendingCapture:
    chunks: list[MediaChunk] = field(default_factory=list)
    aborted: threading.Event = field(default_factory=threading.Event)


class EvidenceRecorder:
    """Rolling pre-roll buffer plus on-demand evidence clips.

    A background thread seals one ``MediaChunk`` per ``chunk_seconds`` into a
    ring holding the last ``pre_buffer_seconds`` worth of chunks. Each
    ``capture_event`` call snapshots that ring, then collects its own post-roll
    chunks for ``post_buffer_seconds`` before encoding and persisting the clip.
    Concurrent captures share nothing but the pre-roll snapshot.
    """

    def __init__(
        self,
        store: ClipStore,
        config: RecordingConfig | None = None,
        encoder: ClipEncoder | None = None,
        clock: Callable[[], int] = epoch_ms,
        clip_limit: int = DEFAULT_CLIP_LIMIT,
        history_size: int = 20,
    ) -> None:
        self.store = store
        self.config = config or RecordingConfig()
        self.encoder = encoder or ClipEncoder(fps=self.config.fps, codec=self.config.codec)
        self.clip_limit = clip_limit
        self._clock = clock
        self._lock = threading.Lock()
        ring_size = math.ceil(self.config.pre_buffer_seconds / self.config.chunk_seconds)
        self._ring: deque[MediaChunk] = deque(maxlen=ring_size)
        self._history: deque[CaptureSummary] = deque(maxlen=history_size)
        self._pending: list[_PendingCapture] = []
        self._latest: np.ndarray | None = None
        self._buffering = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def buffering(self) -> bool:
        with self._lock:
            return self._buffering

    def buffered_chunks(self) -> int:
        with self._lock:
            return len(self._ring)

    @property
    def ring_capacity(self) -> int:
        return self._ring.maxlen or 0

    def recent_captures(self) -> list[CaptureSummary]:
        """Chunk and frame accounting for the most recent clips, newest first."""
        with self._lock:
            return list(self._history)

    def latest_frame(self) -> np.ndarray | None:
        """Most recent frame read by the buffer thread, shared with the detection tick."""
        with self._lock:
            return self._latest

    def start_buffering(self, source: VideoSource) -> None:
        with self._lock:
            if self._buffering:
                return
            try:
                connected = source.connect()
            except Exception as exc:
                logger.exception("evidence buffer could not open video source")
                raise DeviceUnavailable(str(exc)) from exc
            if not connected:
                logger.warning("evidence buffer could not open video source")
                raise DeviceUnavailable("video source unavailable")

            self._ring.clear()
            self._stop_event = threading.Event()
            self._buffering = True
            self._thread = threading.Thread(
                target=self._capture_loop,
                args=(source, self._stop_event),
                name="evidence-buffer",
                daemon=True,
            )
            self._thread.start()
        logger.info("started buffering")

    def stop_buffering(self) -> None:
        with self._lock:
            if not self._buffering:
                return
            self._buffering = False
            stop_event = self._stop_event
            thread = self._thread
            pending = list(self._pending)
            self._thread = None
            self._ring.clear()
            self._latest = None

        stop_event.set()
        for capture in pending:
            capture.aborted.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=3.0)
            if thread.is_alive():
                logger.warning("evidence buffer thread did not stop before timeout")
        logger.info("stopped buffering")

    def _capture_loop(self, source: VideoSource, stop_event: threading.Event) -> None:
        frame_interval = 1.0 / self.config.fps
        chunk_ns = int(self.config.chunk_seconds * 1_000_000_000)
        reconnect = ReconnectState()
        frames: list[np.ndarray] = []
        chunk_started = monotonic_ns()

        while not stop_event.is_set():
            packet = None
            try:
                packet = source.read_frame()
            except Exception:
                logger.exception("evidence buffer frame read failed")

            if packet is None:
                wait_for = reconnect.register_failure()
                if reconnect.should_reconnect():
                    try:
                        source.reconnect()
                    except Exception:
                        logger.exception("evidence buffer reconnect failed")
                    reconnect.reset()
                wait_for = min(wait_for, self.config.chunk_seconds)
            else:
                reconnect.reset()
                frames.append(packet.frame)
                with self._lock:
                    if stop_event is self._stop_event and self._buffering:
                        self._latest = packet.frame
                wait_for = frame_interval

            now = monotonic_ns()
            if now - chunk_started >= chunk_ns:
                if frames:
                    self._append_chunk(MediaChunk(frames=frames, started_ns=chunk_started, ended_ns=now), stop_event)
                frames = []
                chunk_started = now

            if stop_event.wait(wait_for):
                break

    def _append_chunk(self, chunk: MediaChunk, stop_event: threading.Event) -> None:
        with self._lock:
            if not self._buffering or stop_event is not self._stop_event:
                return
            self._ring.append(chunk)
            for capture in self._pending:
                capture.chunks.append(chunk)

    def capture_event(
        self,
        event_type: EventType | str,
        confidence: float,
        device_id: str,
        frame_source: FrameProvider | None = None,
        timestamp: int | None = None,
    ) -> StoredClip:
        kind = EventType(event_type)
        with self._lock:
            if not self._buffering:
                logger.warning("not buffering, cannot capture %s event", kind.value)
                raise NotBufferingError("recorder is not buffering")
            pending = _PendingCapture()
            self._pending.append(pending)
            pre_roll = list(self._ring)

        clip_id = f"clip-{uuid4().hex}"
        when = self._clock() if timestamp is None else int(timestamp)
        try:
            image_blob = self._snapshot(frame_source)
            aborted = pending.aborted.wait(self.config.post_buffer_seconds)
        finally:
            with self._lock:
                if pending in self._pending:
                    self._pending.remove(pending)
                post_roll = list(pending.chunks)

        if aborted:
            logger.info("capture %s aborted because buffering stopped", clip_id)
            raise CaptureAborted(f"buffering stopped while capturing {clip_id}")

        frames = [frame for chunk in (*pre_roll, *post_roll) for frame in chunk.frames]
        if not frames:
            logger.warning(
                "no frames buffered for %s clip %s",
                kind.value,
                clip_id,
                extra={"device_id": device_id, "event_type": kind.value},
            )
            raise CaptureError(f"no frames captured for {clip_id}")
        summary = CaptureSummary(
            clip_id=clip_id,
            event_type=kind,
            pre_roll_chunks=len(pre_roll),
            post_roll_chunks=len(post_roll),
            pre_roll_frames=sum(len(chunk.frames) for chunk in pre_roll),
            post_roll_frames=sum(len(chunk.frames) for chunk in post_roll),
            duration_seconds=sum(chunk.duration_seconds for chunk in (*pre_roll, *post_roll)),
        )
        video_blob = self.encoder.encode(frames)
        clip = StoredClip(
            id=clip_id,
            type=kind,
            timestamp=when,
            confidence=float(confidence),
            device_id=device_id,
            video_blob=video_blob,
            image_blob=image_blob,
            synced=False,
        )
        self.store.create(clip)
        with self._lock:
            self._history.appendleft(summary)
        logger.info(
            "captured %s clip %s (%d pre-roll + %d post-roll chunks, %.1fs)",
            kind.value,
            clip_id,
            summary.pre_roll_chunks,
            summary.post_roll_chunks,
            summary.duration_seconds,
            extra={"device_id": device_id, "event_type": kind.value, "clip_id": clip_id},
        )
        return clip

    def _snapshot(self, frame_source: FrameProvider | None) -> bytes | None:
        if frame_source is None:
            return None
        try:
            frame = frame_source()
            if frame is None:
                return None
            return encode_snapshot(frame, self.config.image_quality)
        except Exception:
            logger.debug("snapshot failed, clip will have no image", exc_info=True)
            return None

    def _query(self, event_type: EventType | str | None, synced: bool | None, limit: int | None) -> ClipQuery:
        return ClipQuery(
            type=EventType(event_type) if event_type is not None else None,
            synced=synced,
            limit=limit if limit is not None else self.clip_limit,
        )

    def get_clips(
        self,
        event_type: EventType | str | None = None,
        synced: bool | None = None,
        limit: int | None = None,
    ) -> Iterator[StoredClip]:
        return self.store.iter_clips(self._query(event_type, synced, limit))

    def clip_summaries(
        self,
        event_type: EventType | str | None = None,
        synced: bool | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return self.store.summaries(self._query(event_type, synced, limit))

    def get_clip(self, clip_id: str) -> StoredClip | None:
        return self.store.get(clip_id)

    def mark_synced(self, clip_id: str) -> None:
        self.store.mark_synced(clip_id)

    def delete_clip(self, clip_id: str) -> None:
        self.store.delete(clip_id)
