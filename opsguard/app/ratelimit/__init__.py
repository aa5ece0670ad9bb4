"""Fixed-window, multi-tier rate limiting."""

from opsguard.app.ratelimit.identity import identifier_for_request, make_identifier
from opsguard.app.ratelimit.limiter import RateLimiter
from opsguard.app.ratelimit.middleware import RateLimitMiddleware
from opsguard.app.ratelimit.models import (
    CounterKey,
    CounterResult,
    RateLimitDecision,
    RateLimitRule,
    RateLimitTier,
    TierStatus,
)
from opsguard.app.ratelimit.store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from opsguard.app.ratelimit.window_counter import WindowCounter

__all__ = [
    "CounterKey",
    "CounterResult",
    "CounterStore",
    "InMemoryCounterStore",
    "RateLimitDecision",
    "RateLimitMiddleware",
    "RateLimitRule",
    "RateLimitTier",
    "RateLimiter",
    "RedisCounterStore",
    "TierStatus",
    "WindowCounter",
    "create_counter_store",
    "identifier_for_request",
    "make_identifier",
]
