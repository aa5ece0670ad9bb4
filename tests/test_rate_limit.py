"""Tests for the multi-tier rate limiter and its HTTP middleware."""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from opsguard.app.core.config import DEFAULT_RATE_LIMIT_SCOPES, DEFAULT_SCOPE_MESSAGES
from opsguard.app.exceptions import ConfigurationError, CounterStoreError, RateLimitExceededError
from opsguard.app.ratelimit.identity import make_identifier
from opsguard.app.ratelimit.limiter import RateLimiter
from opsguard.app.ratelimit.middleware import RateLimitMiddleware
from opsguard.app.ratelimit.store import CounterStore, InMemoryCounterStore
from opsguard.app.ratelimit.window_counter import WindowCounter

AUTH_TIERS = {"per_minute": 5, "per_hour": 20}


@pytest.fixture
def config(make_config):
    """Default tables with admin-auth limited to 5/min and 20/h."""
    scopes = dict(DEFAULT_RATE_LIMIT_SCOPES)
    scopes["admin-auth"] = AUTH_TIERS
    scopes["tight"] = {"per_minute": 2, "per_hour": 3}
    scopes["hourly"] = {"per_minute": 100, "per_hour": 3}
    return make_config(rate_limit_scopes=scopes)


@pytest.fixture
def limiter(config, clock) -> RateLimiter:
    return RateLimiter(config, WindowCounter(InMemoryCounterStore(), clock=clock))


def failing_counter(clock) -> WindowCounter:
    store = AsyncMock(spec=CounterStore)
    store.increment.side_effect = CounterStoreError("redis down")
    return WindowCounter(store, clock=clock)


class TestRateLimiterCheck:
    """Test allow/deny decisions."""

    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_denies(self, limiter):
        """Exactly 5 checks per minute are allowed; the 6th is denied."""
        for _ in range(5):
            decision = await limiter.check("admin-auth", "ip:a")
            assert decision.allowed

        decision = await limiter.check("admin-auth", "ip:a")

        assert decision.denied
        assert 0 < decision.retry_after <= 60
        assert 1 <= decision.retry_after_seconds <= 60

    @pytest.mark.asyncio
    async def test_allows_again_after_window(self, limiter, clock):
        """A denial clears once the minute window has elapsed."""
        for _ in range(6):
            await limiter.check("admin-auth", "ip:a")

        clock.advance(60)

        assert (await limiter.check("admin-auth", "ip:a")).allowed

    @pytest.mark.asyncio
    async def test_repeated_denials_shrink_retry_after(self, limiter, clock):
        """Denied checks keep denying with a shrinking retry hint until reset."""
        for _ in range(6):
            await limiter.check("admin-auth", "ip:a")

        retry_hints = []
        for _ in range(3):
            clock.advance(10)
            decision = await limiter.check("admin-auth", "ip:a")
            assert decision.denied
            retry_hints.append(decision.retry_after)

        assert retry_hints == sorted(retry_hints, reverse=True)
        assert retry_hints[0] > retry_hints[-1]

    @pytest.mark.asyncio
    async def test_all_tiers_incremented_on_denial(self, limiter):
        """Looser tiers keep counting even when a tighter tier denies."""
        for _ in range(8):
            decision = await limiter.check("admin-auth", "ip:a")

        minute, hour = decision.tiers
        assert minute.window_seconds == 60
        assert minute.count == 8
        assert hour.window_seconds == 3600
        assert hour.count == 8
        assert await limiter.counter.peek("admin-auth", "ip:a", 3600) == 8

    @pytest.mark.asyncio
    async def test_retry_after_from_tightest_violated_tier(self, limiter):
        """When several tiers are violated, the smallest window sets retry_after."""
        for _ in range(4):
            decision = await limiter.check("tight", "ip:a")

        assert decision.denied
        assert all(t.violated for t in decision.tiers)
        assert decision.retry_after <= 60

    @pytest.mark.asyncio
    async def test_retry_after_from_looser_tier_when_only_it_is_violated(self, limiter):
        """An hourly denial reports the hour window's remaining time."""
        for _ in range(4):
            decision = await limiter.check("hourly", "ip:a")

        assert decision.denied
        assert decision.limiting_tier.window_seconds == 3600
        assert 60 < decision.retry_after <= 3600

    @pytest.mark.asyncio
    async def test_identifiers_are_isolated(self, limiter):
        """Authenticated and anonymous subjects never share counters."""
        user = make_identifier(user_id="42", address="10.0.0.1")
        anon = make_identifier(address="10.0.0.1")
        for _ in range(6):
            await limiter.check("admin-auth", anon)

        assert (await limiter.check("admin-auth", anon)).denied
        assert (await limiter.check("admin-auth", user)).allowed

    @pytest.mark.asyncio
    async def test_unknown_scope_raises(self, limiter):
        """Checking an unconfigured scope is a configuration error."""
        with pytest.raises(ConfigurationError):
            await limiter.check("no-such-scope", "ip:a")

    @pytest.mark.asyncio
    async def test_enforce_raises_on_denial(self, limiter):
        """enforce() raises RateLimitExceededError with the scope message."""
        for _ in range(5):
            await limiter.enforce("admin-auth", "ip:a")

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.enforce("admin-auth", "ip:a")

        assert exc_info.value.status_code == 429
        assert 1 <= exc_info.value.retry_after <= 60
        assert exc_info.value.message == DEFAULT_SCOPE_MESSAGES["admin-auth"]


class TestStoreFailure:
    """Test fail-open and fail-closed handling of counter store errors."""

    @pytest.mark.asyncio
    async def test_fail_closed_scope_denies(self, config, clock):
        """admin-auth is fail-closed: a store outage denies for one window."""
        limiter = RateLimiter(config, failing_counter(clock))

        decision = await limiter.check("admin-auth", "ip:a")

        assert decision.denied
        assert decision.degraded
        assert decision.retry_after == 60

    @pytest.mark.asyncio
    async def test_fail_open_scope_allows(self, config, clock):
        """General API scopes stay available during a store outage."""
        limiter = RateLimiter(config, failing_counter(clock))

        decision = await limiter.check("api", "ip:a")

        assert decision.allowed
        assert decision.degraded

    @pytest.mark.asyncio
    async def test_fail_closed_scopes_are_configurable(self, make_config, clock):
        """Fail-closed scopes come from settings."""
        config = make_config(rate_limit_fail_closed_scopes="api")
        limiter = RateLimiter(config, failing_counter(clock))

        assert (await limiter.check("api", "ip:a")).denied
        assert (await limiter.check("admin-auth", "ip:a")).allowed


def build_app(limiter: RateLimiter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    @app.post("/api/admin/auth/login")
    async def login():
        return {"success": True}

    @app.post("/api/admin/system/cache-clear")
    async def cache_clear():
        return {"success": True}

    @app.get("/public")
    async def public():
        return {"ok": True}

    return app


class TestRateLimitMiddleware:
    """End-to-end behaviour through the HTTP layer."""

    def test_admin_auth_login_attempts(self, limiter):
        """5 logins per minute pass; the 6th gets a 429 with a retry hint."""
        client = TestClient(build_app(limiter))

        for _ in range(5):
            response = client.post("/api/admin/auth/login")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" in response.headers

        response = client.post("/api/admin/auth/login")

        assert response.status_code == 429
        retry_after = int(response.headers["Retry-After"])
        assert 0 < retry_after <= 60
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = response.json()
        assert body["success"] is False
        assert body["message"] == DEFAULT_SCOPE_MESSAGES["admin-auth"]
        assert body["retry_after"] == retry_after

    def test_success_headers_report_remaining(self, limiter):
        """Allowed responses carry the remaining budget of the tightest tier."""
        client = TestClient(build_app(limiter))

        response = client.post("/api/admin/auth/login")

        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_longest_prefix_selects_scope(self, limiter):
        """/api/admin/system uses system-operations (2/min), not admin-api."""
        client = TestClient(build_app(limiter))

        assert client.post("/api/admin/system/cache-clear").status_code == 200
        assert client.post("/api/admin/system/cache-clear").status_code == 200
        assert client.post("/api/admin/system/cache-clear").status_code == 429

    def test_unmapped_path_not_limited(self, limiter):
        """Paths outside every configured prefix are never counted."""
        client = TestClient(build_app(limiter))

        for _ in range(100):
            assert client.get("/public").status_code == 200

    def test_forwarded_for_separates_clients_behind_trusted_proxy(self, make_config, clock):
        """Different X-Forwarded-For addresses get separate budgets when the peer is trusted."""
        config = make_config(
            rate_limit_scopes={**DEFAULT_RATE_LIMIT_SCOPES, "admin-auth": AUTH_TIERS},
            rate_limit_trusted_proxies=["testclient"],
        )
        limiter = RateLimiter(config, WindowCounter(InMemoryCounterStore(), clock=clock))
        client = TestClient(build_app(limiter))

        for _ in range(6):
            client.post("/api/admin/auth/login", headers={"X-Forwarded-For": "10.0.0.1"})

        blocked = client.post("/api/admin/auth/login", headers={"X-Forwarded-For": "10.0.0.1"})
        other = client.post("/api/admin/auth/login", headers={"X-Forwarded-For": "10.0.0.2"})

        assert blocked.status_code == 429
        assert other.status_code == 200

    def test_rotating_bearer_tokens_share_address_budget(self, limiter):
        """A fresh Authorization header per request does not reset the login budget."""
        client = TestClient(build_app(limiter))

        statuses = [
            client.post("/api/admin/auth/login", headers={"Authorization": f"Bearer junk{i}"}).status_code
            for i in range(30)
        ]

        assert statuses[:5] == [200] * 5
        assert set(statuses[5:]) == {429}

    def test_forwarded_for_ignored_from_untrusted_peer(self, limiter):
        """Spoofed X-Forwarded-For values from a direct client share one budget."""
        client = TestClient(build_app(limiter))

        statuses = [
            client.post("/api/admin/auth/login", headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
            for i in range(6)
        ]

        assert statuses[-1] == 429
