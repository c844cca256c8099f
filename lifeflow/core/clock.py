from __future__ import annotations

import time


class SystemClock:
    """Wall-clock source in epoch milliseconds."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock:
    """Clock that only moves when told to. Used to drive the engine deterministically."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now_ms = int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def set(self, now_ms: int) -> None:
        self._now_ms = int(now_ms)

    def advance(self, seconds: float = 0, ms: int = 0) -> int:
        self._now_ms += int(seconds * 1000) + int(ms)
        return self._now_ms
