"""Tests for the Redis-backed counter store."""

from unittest.mock import AsyncMock

import pytest
import redis

from opsguard.app.exceptions import CounterStoreError
from opsguard.app.ratelimit.models import CounterKey
from opsguard.app.ratelimit.redis_lua import INCREMENT_WINDOW_SCRIPT
from opsguard.app.ratelimit.store import (
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)

NOW = 1_700_000_000.0
KEY = CounterKey("admin-auth", "ip:a", 60)


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.fixture
def store(redis_client) -> RedisCounterStore:
    return RedisCounterStore(redis_client=redis_client)


class TestRedisIncrement:
    """Test increments through the Lua script."""

    @pytest.mark.asyncio
    async def test_increment_calls_script(self, store, redis_client):
        """The script gets the prefixed key, the time and the window in ms."""
        redis_client.eval.return_value = [1, int(NOW * 1000)]

        result = await store.increment(KEY, NOW)

        redis_client.eval.assert_awaited_once_with(
            INCREMENT_WINDOW_SCRIPT,
            1,
            "ratelimit:admin-auth:ip:a:60",
            int(NOW * 1000),
            60000,
        )
        assert result.count == 1
        assert result.window_start == NOW
        assert result.window_remaining == 60

    @pytest.mark.asyncio
    async def test_increment_within_window(self, store, redis_client):
        """Counts and window start come from the stored hash."""
        redis_client.eval.return_value = [b"4", str(int((NOW - 15) * 1000)).encode()]

        result = await store.increment(KEY, NOW)

        assert result.count == 4
        assert result.window_remaining == pytest.approx(45)

    @pytest.mark.asyncio
    async def test_redis_error_raises_store_error(self, store, redis_client):
        redis_client.eval.side_effect = redis.ConnectionError("refused")

        with pytest.raises(CounterStoreError) as exc_info:
            await store.increment(KEY, NOW)

        assert isinstance(exc_info.value.cause, redis.ConnectionError)

    @pytest.mark.asyncio
    async def test_os_error_raises_store_error(self, store, redis_client):
        redis_client.eval.side_effect = OSError("network unreachable")

        with pytest.raises(CounterStoreError):
            await store.increment(KEY, NOW)


class TestRedisPeek:
    """Test read-only access."""

    @pytest.mark.asyncio
    async def test_peek_missing_key(self, store, redis_client):
        redis_client.hmget.return_value = [None, None]

        result = await store.peek(KEY, NOW)

        assert result.count == 0
        assert result.window_remaining == 60

    @pytest.mark.asyncio
    async def test_peek_current_window(self, store, redis_client):
        redis_client.hmget.return_value = [str(int((NOW - 10) * 1000)).encode(), b"3"]

        result = await store.peek(KEY, NOW)

        assert result.count == 3
        redis_client.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_peek_elapsed_window(self, store, redis_client):
        redis_client.hmget.return_value = [str(int((NOW - 61) * 1000)).encode(), b"9"]

        assert (await store.peek(KEY, NOW)).count == 0

    @pytest.mark.asyncio
    async def test_peek_error(self, store, redis_client):
        redis_client.hmget.side_effect = redis.TimeoutError("slow")

        with pytest.raises(CounterStoreError):
            await store.peek(KEY, NOW)


class TestRedisLifecycle:

    @pytest.mark.asyncio
    async def test_eviction_is_left_to_redis(self, store):
        assert await store.evict_stale(NOW, 2.0) == 0

    @pytest.mark.asyncio
    async def test_close(self, store, redis_client):
        await store.close()
        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_custom_prefix(self, redis_client):
        redis_client.eval.return_value = [1, int(NOW * 1000)]
        store = RedisCounterStore(redis_client=redis_client, key_prefix="og")

        await store.increment(KEY, NOW)

        assert redis_client.eval.await_args.args[2] == "og:admin-auth:ip:a:60"


class TestCreateCounterStore:

    def test_memory_by_default(self, make_settings):
        store = create_counter_store(make_settings(rate_limit_max_entries=10))
        assert isinstance(store, InMemoryCounterStore)

    def test_redis_when_enabled(self, make_settings):
        store = create_counter_store(make_settings(redis_enabled=True, redis_url="redis://cache:6379/1"))
        assert isinstance(store, RedisCounterStore)
