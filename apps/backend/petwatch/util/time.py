from __future__ import annotations

import datetime as dt
import time


def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def now_utc_iso() -> str:
    return now_utc().isoformat()


def monotonic_ns() -> int:
    return time.monotonic_ns()


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def epoch_ms_to_utc(value: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(value / 1000.0, tz=dt.timezone.utc)
