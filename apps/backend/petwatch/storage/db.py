from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any

SCHEMA_SQL_V1 = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS clips (
  id TEXT PRIMARY KEY,
  event_type TEXT NOT NULL,
  timestamp INTEGER NOT NULL,
  confidence REAL NOT NULL,
  device_id TEXT NOT NULL,
  video_path TEXT NOT NULL,
  image_path TEXT,
  synced INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_clips_timestamp ON clips(timestamp);
CREATE INDEX IF NOT EXISTS idx_clips_event_type ON clips(event_type);
CREATE INDEX IF NOT EXISTS idx_clips_synced ON clips(synced);
"""

MIGRATIONS: dict[int, str] = {
    1: SCHEMA_SQL_V1,
}


class Database:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            row = self._conn.execute("PRAGMA user_version").fetchone()
            version = int(row[0]) if row else 0
            for target_version in sorted(MIGRATIONS):
                if version < target_version:
                    self._conn.executescript(MIGRATIONS[target_version])
                    self._conn.execute(f"PRAGMA user_version = {target_version}")
                    version = target_version
            self._conn.commit()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur

    def query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(sql, params)
            return cur.fetchall()

    def query_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(sql, params)
            return cur.fetchone()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
