from __future__ import annotations

import os
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from petwatch.channel.messages import EventType
from petwatch.config.defaults import DEFAULT_CLIP_LIMIT
from petwatch.errors import StorageError
from petwatch.util.logging import get_logger
from petwatch.util.security import validate_device_id
from petwatch.util.time import epoch_ms_to_utc, now_utc_iso

from .db import Database

logger = get_logger(__name__)

MAX_QUERY_LIMIT = 2000


@dataclass
class StoredClip:
    id: str
    type: EventType
    timestamp: int
    confidence: float
    device_id: str
    video_blob: bytes
    image_blob: bytes | None = None
    synced: bool = False


@dataclass
class ClipQuery:
    type: EventType | None = None
    synced: bool | None = None
    limit: int = DEFAULT_CLIP_LIMIT


class ClipStore(ABC):
    """Durable clip storage: create, read, update ``synced``, delete."""

    @abstractmethod
    def create(self, clip: StoredClip) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, clip_id: str) -> StoredClip | None:
        raise NotImplementedError

    @abstractmethod
    def iter_clips(self, query: ClipQuery) -> Iterator[StoredClip]:
        """Clips matching ``query``, newest first, loaded one at a time."""
        raise NotImplementedError

    @abstractmethod
    def summaries(self, query: ClipQuery) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def mark_synced(self, clip_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, clip_id: str) -> None:
        raise NotImplementedError


class SqliteClipStore(ClipStore):
    """Metadata in SQLite, media files under ``media_root``.

    Media is written to a temporary file and renamed into place before the row
    is inserted, so a clip is never visible with partial media.
    """

    def __init__(self, db: Database, media_root: Path) -> None:
        self.db = db
        self.media_root = media_root
        self.media_root.mkdir(parents=True, exist_ok=True)

    def _media_dir_for(self, device_id: str, timestamp: int) -> Path:
        when = epoch_ms_to_utc(timestamp)
        media_dir = (
            self.media_root
            / validate_device_id(device_id)
            / when.strftime("%Y")
            / when.strftime("%m")
            / when.strftime("%d")
        )
        media_dir.mkdir(parents=True, exist_ok=True)
        return media_dir

    @staticmethod
    def _write_atomic(path: Path, payload: bytes) -> None:
        partial = path.with_name(path.name + ".part")
        partial.write_bytes(payload)
        os.replace(partial, path)

    def create(self, clip: StoredClip) -> None:
        written: list[Path] = []
        try:
            if self.db.query_one("SELECT id FROM clips WHERE id = ?", (clip.id,)) is not None:
                raise StorageError(f"clip already exists: {clip.id}")
            media_dir = self._media_dir_for(clip.device_id, clip.timestamp)
            video_path = media_dir / f"{clip.id}_clip.mp4"
            self._write_atomic(video_path, clip.video_blob)
            written.append(video_path)
            image_rel: str | None = None
            if clip.image_blob is not None:
                image_path = media_dir / f"{clip.id}_thumb.jpg"
                self._write_atomic(image_path, clip.image_blob)
                written.append(image_path)
                image_rel = str(image_path.relative_to(self.media_root))
            self.db.execute(
                """
                INSERT INTO clips (
                    id, event_type, timestamp, confidence, device_id,
                    video_path, image_path, synced, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    clip.id,
                    clip.type.value,
                    int(clip.timestamp),
                    float(clip.confidence),
                    clip.device_id,
                    str(video_path.relative_to(self.media_root)),
                    image_rel,
                    int(clip.synced),
                    now_utc_iso(),
                ),
            )
        except (OSError, ValueError, sqlite3.Error) as exc:
            for path in written:
                path.unlink(missing_ok=True)
            raise StorageError(f"failed to persist clip {clip.id}: {exc}") from exc
        logger.info("saved clip %s (%s, %d bytes)", clip.id, clip.type.value, len(clip.video_blob))

    def get(self, clip_id: str) -> StoredClip | None:
        try:
            row = self.db.query_one("SELECT * FROM clips WHERE id = ?", (clip_id,))
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read clip {clip_id}: {exc}") from exc
        if row is None:
            return None
        return self._materialize(row)

    def _select(self, query: ClipQuery) -> list[sqlite3.Row]:
        clauses: list[str] = ["1=1"]
        params: list[Any] = []
        if query.type is not None:
            clauses.append("event_type = ?")
            params.append(EventType(query.type).value)
        if query.synced is not None:
            clauses.append("synced = ?")
            params.append(int(query.synced))
        params.append(max(1, min(int(query.limit), MAX_QUERY_LIMIT)))

        sql = f"""
            SELECT * FROM clips
            WHERE {' AND '.join(clauses)}
            ORDER BY timestamp DESC, created_at DESC
            LIMIT ?
        """
        try:
            return self.db.query(sql, tuple(params))
        except sqlite3.Error as exc:
            raise StorageError(f"failed to query clips: {exc}") from exc

    def _materialize(self, row: sqlite3.Row) -> StoredClip:
        try:
            video_blob = (self.media_root / row["video_path"]).read_bytes()
            image_blob = None
            if row["image_path"]:
                image_blob = (self.media_root / row["image_path"]).read_bytes()
        except OSError as exc:
            raise StorageError(f"media missing for clip {row['id']}: {exc}") from exc
        return StoredClip(
            id=row["id"],
            type=EventType(row["event_type"]),
            timestamp=int(row["timestamp"]),
            confidence=float(row["confidence"]),
            device_id=row["device_id"],
            video_blob=video_blob,
            image_blob=image_blob,
            synced=bool(row["synced"]),
        )

    def iter_clips(self, query: ClipQuery) -> Iterator[StoredClip]:
        rows = self._select(query)
        return (self._materialize(row) for row in rows)

    def summaries(self, query: ClipQuery) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for row in self._select(query):
            out.append(
                {
                    "id": row["id"],
                    "type": row["event_type"],
                    "timestamp": int(row["timestamp"]),
                    "confidence": float(row["confidence"]),
                    "device_id": row["device_id"],
                    "synced": bool(row["synced"]),
                    "has_image": bool(row["image_path"]),
                }
            )
        return out

    def mark_synced(self, clip_id: str) -> None:
        try:
            self.db.execute("UPDATE clips SET synced = 1 WHERE id = ?", (clip_id,))
        except sqlite3.Error as exc:
            raise StorageError(f"failed to mark clip {clip_id} synced: {exc}") from exc

    def delete(self, clip_id: str) -> None:
        try:
            row = self.db.query_one("SELECT video_path, image_path FROM clips WHERE id = ?", (clip_id,))
            if row is None:
                return
            self.db.execute("DELETE FROM clips WHERE id = ?", (clip_id,))
        except sqlite3.Error as exc:
            raise StorageError(f"failed to delete clip {clip_id}: {exc}") from exc
        for key in ("video_path", "image_path"):
            rel = row[key]
            if rel:
                (self.media_root / rel).unlink(missing_ok=True)
