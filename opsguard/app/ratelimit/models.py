"""Rate limiting data models.

This module contains dataclasses for rate limit rules, counter state and
decisions.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

_WINDOW_LABELS = ((86400, "d"), (3600, "h"), (60, "m"), (1, "s"))


def format_window(window_seconds: int) -> str:
    """Render a window size as a short label (60 -> "1m", 3600 -> "1h")."""
    for size, suffix in _WINDOW_LABELS:
        if window_seconds % size == 0:
            return f"{window_seconds // size}{suffix}"
    return f"{window_seconds}s"


@dataclass(frozen=True)
class RateLimitTier:
    """One (window size, max count) pair within a scope."""
    window_seconds: int
    max_count: int

    @property
    def label(self) -> str:
        return format_window(self.window_seconds)


@dataclass(frozen=True)
class RateLimitRule:
    """Immutable rate limit configuration for a scope.

    Attributes:
        scope: Rate limit domain name (e.g. "admin-auth")
        tiers: Tiers ordered tightest window first
        fail_closed: Deny instead of allow when the counter store fails
        message: Client-facing message returned with a 429
    """
    scope: str
    tiers: Tuple[RateLimitTier, ...]
    fail_closed: bool = False
    message: str = "Too many requests. Please try again later."

    @property
    def smallest_window(self) -> int:
        return min(t.window_seconds for t in self.tiers)


@dataclass(frozen=True)
class CounterKey:
    """Storage key for a fixed-window counter."""
    scope: str
    identifier: str
    window_seconds: int

    def as_string(self, prefix: str = "ratelimit") -> str:
        return f"{prefix}:{self.scope}:{self.identifier}:{self.window_seconds}"


@dataclass
class CounterState:
    """Mutable fixed-window counter entry owned by a counter store."""
    count: int = 0
    window_start: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CounterResult:
    """Outcome of a counter increment or peek."""
    count: int
    window_start: float
    window_remaining: float


@dataclass(frozen=True)
class TierStatus:
    """Per-tier view of a rate limit check."""
    window_seconds: int
    limit: int
    count: int
    reset_after: float

    @property
    def violated(self) -> bool:
        return self.count > self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of RateLimiter.check: Allowed, or Denied with a retry hint."""
    allowed: bool
    scope: str
    identifier: str
    retry_after: Optional[float] = None
    tiers: Tuple[TierStatus, ...] = ()
    degraded: bool = False

    @property
    def denied(self) -> bool:
        return not self.allowed

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Retry hint rounded up to whole seconds (Retry-After header value)."""
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))

    @property
    def limiting_tier(self) -> Optional[TierStatus]:
        """The tier whose limit and remaining budget are reported to clients."""
        if not self.tiers:
            return None
        violated = [t for t in self.tiers if t.violated]
        if violated:
            return min(violated, key=lambda t: t.window_seconds)
        return min(self.tiers, key=lambda t: (t.remaining, t.window_seconds))
