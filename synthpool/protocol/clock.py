"""Time sources for the pool engine."""

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time in integer seconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock advanced explicitly, for simulations and tests."""

    def __init__(self, start: int = 0):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards by {seconds}s")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError(f"Cannot move clock back to {timestamp}")
        self._now = timestamp
