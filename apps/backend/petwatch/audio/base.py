from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np


class AudioSource(ABC):
    sample_rate: int

    @abstractmethod
    def open(self) -> None:
        """Start capturing. Raises DeviceUnavailable when the device cannot be opened."""
        raise NotImplementedError

    @abstractmethod
    def read_window(self, size: int) -> np.ndarray | None:
        """Return up to ``size`` of the most recent samples, or None before any arrive."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError
