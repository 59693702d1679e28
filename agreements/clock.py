"""Time sources for agreement deadlines.

The unit is whatever the host counts in: wall-clock seconds for SystemClock,
or block height when a host drives a ManualClock from its chain tip. The
dispute window must be configured in the same unit.
"""

import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    @abstractmethod
    def now(self) -> int:
        """Current monotonic timestamp as an integer."""
        ...


class SystemClock(Clock):
    """Wall-clock seconds since the epoch."""

    def now(self) -> int:
        return int(time.time())


class ManualClock(Clock):
    """Settable clock for tests and block-height hosts."""

    def __init__(self, start: int = 0):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, value: int):
        with self._lock:
            if value < self._now:
                raise ValueError(f"Clock cannot move backwards: {self._now} -> {value}")
            self._now = value

    def advance(self, delta: int = 1) -> int:
        if delta < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += delta
            return self._now
