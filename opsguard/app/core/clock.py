"""Injectable clocks.

Counters, throttles and the scheduler read time through a Clock so tests
can advance time deterministically instead of sleeping.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of wall-clock time, monotonic time and sleeping."""

    @abstractmethod
    def now(self) -> float:
        """Wall-clock time in seconds since the epoch."""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic time in seconds, used for durations and deadlines."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""
        pass


class SystemClock(Clock):
    """Clock backed by the real system time."""

    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """Clock that only moves when told to.

    sleep() advances the clock by the requested amount and yields control
    once, so loops driven by it run without real waiting.

    Usage:
        clock = ManualClock(start=1_700_000_000.0)
        clock.advance(61)
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._monotonic = 0.0
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic

    def advance(self, seconds: float) -> None:
        """Move both clocks forward."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += seconds
            self._monotonic += seconds

    async def sleep(self, seconds: float) -> None:
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


system_clock = SystemClock()
