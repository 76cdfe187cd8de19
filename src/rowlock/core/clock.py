"""Time sources used by locks and the in-memory store."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now_micros(self) -> int: ...


class SystemClock:
    """Wall clock, microseconds since the epoch."""

    def now_micros(self) -> int:
        return time.time_ns() // 1_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_micros: int = 1_700_000_000_000_000) -> None:
        self._now = int(start_micros)

    def now_micros(self) -> int:
        return self._now

    def set(self, micros: int) -> None:
        self._now = int(micros)

    def advance(self, *, micros: int = 0, seconds: float = 0) -> int:
        self._now += int(micros) + int(seconds * 1_000_000)
        return self._now
