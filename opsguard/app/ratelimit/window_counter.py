"""Fixed-window counters keyed by (scope, identifier, window size)."""

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.ratelimit.models import CounterKey, CounterResult
from opsguard.app.ratelimit.store import CounterStore, InMemoryCounterStore


class WindowCounter:
    """Atomic fixed-window counter over a pluggable CounterStore.

    A window resets lazily on the first increment at or after
    window_start + window_seconds. Time is read from the injected clock so
    window boundaries can be driven deterministically in tests.

    Usage:
        counter = WindowCounter(InMemoryCounterStore(), clock=ManualClock())
        result = await counter.increment("admin-auth", "ip:ab12", 60)
        result.count, result.window_remaining
    """

    def __init__(self, store: CounterStore | None = None, clock: Clock = system_clock):
        self.store = store if store is not None else InMemoryCounterStore()
        self.clock = clock

    async def increment(self, scope: str, identifier: str, window_seconds: int) -> CounterResult:
        """Reset the window if it elapsed, then add one.

        Raises:
            CounterStoreError: If the backing store is unavailable
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        key = CounterKey(scope=scope, identifier=identifier, window_seconds=window_seconds)
        return await self.store.increment(key, self.clock.now())

    async def peek(self, scope: str, identifier: str, window_seconds: int) -> int:
        """Current count without mutating; 0 once the window has elapsed."""
        key = CounterKey(scope=scope, identifier=identifier, window_seconds=window_seconds)
        result = await self.store.peek(key, self.clock.now())
        return result.count

    async def evict_stale(self, grace: float = 2.0) -> int:
        """Drop counters idle for more than grace windows. Returns the number removed."""
        return await self.store.evict_stale(self.clock.now(), grace)

    async def close(self) -> None:
        await self.store.close()
