"""Time sources for the engine.

Task durations, backend deadlines and cache entry timestamps all read the
engine's Clock, so a test can pin every one of them with MockClock.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        """Seconds on a clock that never goes backwards (durations, deadlines)."""
        ...

    def utc_now(self) -> datetime:
        """Timezone-aware wall time (cache entry timestamps)."""
        ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    def utc_now(self) -> datetime:
        return datetime.now(UTC)


_EPOCH = datetime(2026, 1, 1, tzinfo=UTC)


class MockClock:
    """Manually advanced clock, shared safely between worker threads.

    Both readings move together: advancing by 1.5 seconds moves monotonic()
    and utc_now() by 1.5 seconds.

    Example:
        clock = MockClock()
        clock.advance(1.5)
        assert clock.monotonic() == 1.5
    """

    def __init__(self, start: float = 0.0, wall_start: datetime = _EPOCH) -> None:
        if wall_start.tzinfo is None:
            raise ValueError("wall_start must be timezone-aware")
        self._lock = threading.Lock()
        self._current = start
        self._start = start
        self._wall_start = wall_start

    def monotonic(self) -> float:
        with self._lock:
            return self._current

    def utc_now(self) -> datetime:
        with self._lock:
            return self._wall_start + timedelta(seconds=self._current - self._start)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        with self._lock:
            self._current += seconds


DEFAULT_CLOCK: Clock = SystemClock()
