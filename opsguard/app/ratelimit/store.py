"""Counter store backends for fixed-window rate limiting.

The store is the only place counter state is mutated. The in-memory store
serves single-instance deployments; the Redis store shares counters across
instances.
"""

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Optional

import redis
import redis.asyncio as aioredis

from opsguard.app.core.logging import get_logger
from opsguard.app.exceptions import CounterStoreError
from opsguard.app.ratelimit.models import CounterKey, CounterResult, CounterState
from opsguard.app.ratelimit.redis_lua import INCREMENT_WINDOW_SCRIPT

if TYPE_CHECKING:
    from opsguard.app.core.config import Settings

logger = get_logger(__name__)


def _window_remaining(window_start: float, window_seconds: int, now: float) -> float:
    return max(0.0, window_start + window_seconds - now)


class CounterStore(ABC):
    """Abstract base class for counter stores."""

    @abstractmethod
    async def increment(self, key: CounterKey, now: float) -> CounterResult:
        """Atomically reset-if-expired and increment the counter for key.

        Raises:
            CounterStoreError: If the backing store is unavailable
        """
        pass

    @abstractmethod
    async def peek(self, key: CounterKey, now: float) -> CounterResult:
        """Read the counter for key without mutating it."""
        pass

    @abstractmethod
    async def evict_stale(self, now: float, grace: float) -> int:
        """Drop counters whose window ended more than grace windows ago."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


class InMemoryCounterStore(CounterStore):
    """In-process counter store.

    A threading.Lock guards every read-modify-write, so increments are
    atomic for event-loop tasks and worker threads alike.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits max entries to prevent unbounded memory growth
    """

    DEFAULT_MAX_ENTRIES = 100000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._max_entries = max_entries
        self._entries: OrderedDict[CounterKey, CounterState] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def _enforce_lru_limit(self) -> None:
        if len(self._entries) >= self._max_entries:
            # Remove oldest 20% of entries
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(min(remove_count, len(self._entries))):
                self._entries.popitem(last=False)

    async def increment(self, key: CounterKey, now: float) -> CounterResult:
        with self._lock:
            state = self._entries.get(key)
            if state is None:
                self._enforce_lru_limit()
                state = CounterState(count=0, window_start=now)
                self._entries[key] = state
            elif now - state.window_start >= key.window_seconds:
                state.count = 0
                state.window_start = max(now, state.window_start)
                self._entries.move_to_end(key)
            else:
                self._entries.move_to_end(key)

            state.count += 1
            return CounterResult(
                count=state.count,
                window_start=state.window_start,
                window_remaining=_window_remaining(state.window_start, key.window_seconds, now),
            )

    async def peek(self, key: CounterKey, now: float) -> CounterResult:
        with self._lock:
            state = self._entries.get(key)
            if state is None or now - state.window_start >= key.window_seconds:
                return CounterResult(count=0, window_start=now, window_remaining=float(key.window_seconds))
            return CounterResult(
                count=state.count,
                window_start=state.window_start,
                window_remaining=_window_remaining(state.window_start, key.window_seconds, now),
            )

    async def evict_stale(self, now: float, grace: float) -> int:
        with self._lock:
            expired = [
                key for key, state in self._entries.items()
                if now - state.window_start > key.window_seconds * grace
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} stale rate limit counters")
        return len(expired)


class RedisCounterStore(CounterStore):
    """Redis-based distributed counter store.

    Each counter is a Redis hash {start, count} updated by a Lua script.
    Keys expire after two windows, so eviction is left to Redis.
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "ratelimit",
    ):
        self._redis = redis_client
        self._redis_url = redis_url
        self._key_prefix = key_prefix

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def increment(self, key: CounterKey, now: float) -> CounterResult:
        window_ms = key.window_seconds * 1000
        try:
            result = await self._get_redis().eval(
                INCREMENT_WINDOW_SCRIPT,
                1,
                key.as_string(self._key_prefix),  # KEYS[1]
                int(now * 1000),  # ARGV[1]
                window_ms,  # ARGV[2]
            )
        except (redis.RedisError, OSError) as e:
            logger.error(f"Redis counter increment failed: {e}", extra={"scope": key.scope})
            raise CounterStoreError(f"Redis counter increment failed: {e}", cause=e) from e

        count = int(result[0])
        window_start = int(result[1]) / 1000
        return CounterResult(
            count=count,
            window_start=window_start,
            window_remaining=_window_remaining(window_start, key.window_seconds, now),
        )

    async def peek(self, key: CounterKey, now: float) -> CounterResult:
        try:
            start_raw, count_raw = await self._get_redis().hmget(
                key.as_string(self._key_prefix), "start", "count"
            )
        except (redis.RedisError, OSError) as e:
            raise CounterStoreError(f"Redis counter read failed: {e}", cause=e) from e

        if start_raw is None:
            return CounterResult(count=0, window_start=now, window_remaining=float(key.window_seconds))
        window_start = int(start_raw) / 1000
        if now - window_start >= key.window_seconds:
            return CounterResult(count=0, window_start=now, window_remaining=float(key.window_seconds))
        return CounterResult(
            count=int(count_raw or 0),
            window_start=window_start,
            window_remaining=_window_remaining(window_start, key.window_seconds, now),
        )

    async def evict_stale(self, now: float, grace: float) -> int:
        """No-op for Redis (keys expire automatically)."""
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_counter_store(settings: "Settings") -> CounterStore:
    """Select the counter store backend from settings."""
    if settings.redis_enabled:
        logger.info("Using Redis counter store")
        return RedisCounterStore(redis_url=settings.redis_url)
    logger.debug("Using in-memory counter store")
    return InMemoryCounterStore(max_entries=settings.rate_limit_max_entries)
