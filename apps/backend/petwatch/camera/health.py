from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class ReconnectState:
    """Failure count and exponential backoff for a video source that keeps failing.

    The buffer thread uses ``should_reconnect`` to decide when to reopen a source
    that stopped delivering frames. The monitor session uses ``retry_due`` to pace
    ``start_buffering`` attempts against a camera that could not be opened.
    """

    failures: int = 0
    max_failures_before_reconnect: int = 5
    min_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0
    retry_at: float = 0.0

    def backoff_seconds(self) -> float:
        if self.failures <= 0:
            return 0.0
        return min(self.max_backoff_seconds, self.min_backoff_seconds * (2 ** (self.failures - 1)))

    def register_failure(self, now: float | None = None) -> float:
        self.failures += 1
        delay = self.backoff_seconds()
        self.retry_at = (time.monotonic() if now is None else now) + delay
        return delay

    def retry_due(self, now: float | None = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.retry_at

    def should_reconnect(self) -> bool:
        return self.failures >= self.max_failures_before_reconnect

    def reset(self) -> None:
        self.failures = 0
        self.retry_at = 0.0
