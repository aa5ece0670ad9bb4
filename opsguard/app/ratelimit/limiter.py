"""Multi-tier rate limiter.

Each scope has one or more (window, max count) tiers. Every check
increments all tiers of the scope, including tiers looser than one that
already denies, so per-tier counts always reflect every attempt.
"""

import logging
from typing import TYPE_CHECKING, List

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.exceptions import CounterStoreError, RateLimitExceededError
from opsguard.app.ratelimit.models import (
    RateLimitDecision,
    RateLimitRule,
    TierStatus,
    format_window,
)
from opsguard.app.ratelimit.window_counter import WindowCounter

if TYPE_CHECKING:
    from opsguard.app.core.config import EngineConfig

logger = get_logger(__name__)

# Scopes whose denials are logged at CRITICAL rather than WARNING
CRITICAL_SCOPES = frozenset({"system-operations"})


class RateLimiter:
    """Allow/deny decisions for (scope, identifier) pairs.

    Usage:
        limiter = RateLimiter(config, WindowCounter(store))
        decision = await limiter.check("admin-auth", "ip:ab12")
        if decision.denied:
            ...  # respond 429 with decision.retry_after_seconds
    """

    def __init__(self, config: "EngineConfig", counter: WindowCounter):
        self._config = config
        self.counter = counter

    @property
    def config(self) -> "EngineConfig":
        return self._config

    def update_config(self, config: "EngineConfig") -> None:
        """Swap in a new configuration; in-flight checks keep the old one."""
        self._config = config

    async def check(self, scope: str, identifier: str) -> RateLimitDecision:
        """Count one attempt for identifier in scope and decide.

        Raises:
            ConfigurationError: If scope has no configured rule
        """
        rule = self._config.rule_for(scope)

        statuses: List[TierStatus] = []
        try:
            for tier in rule.tiers:
                result = await self.counter.increment(scope, identifier, tier.window_seconds)
                statuses.append(
                    TierStatus(
                        window_seconds=tier.window_seconds,
                        limit=tier.max_count,
                        count=result.count,
                        reset_after=result.window_remaining,
                    )
                )
        except CounterStoreError as e:
            return self._handle_store_failure(rule, identifier, e)

        violated = [s for s in statuses if s.violated]
        if not violated:
            return RateLimitDecision(
                allowed=True, scope=scope, identifier=identifier, tiers=tuple(statuses)
            )

        # Tightest violated tier decides when the caller may retry
        tightest = min(violated, key=lambda s: s.window_seconds)
        decision = RateLimitDecision(
            allowed=False,
            scope=scope,
            identifier=identifier,
            retry_after=tightest.reset_after,
            tiers=tuple(statuses),
        )
        level = logging.CRITICAL if scope in CRITICAL_SCOPES else logging.WARNING
        logger.log(
            level,
            f"Rate limit exceeded for {scope}: {tightest.count}/{tightest.limit} "
            f"in {format_window(tightest.window_seconds)}, "
            f"retry after {decision.retry_after_seconds}s",
            extra=get_log_context(scope=scope, identifier=identifier),
        )
        return decision

    async def enforce(self, scope: str, identifier: str) -> RateLimitDecision:
        """Like check(), but raise RateLimitExceededError on denial."""
        decision = await self.check(scope, identifier)
        if decision.denied:
            rule = self._config.rule_for(scope)
            raise RateLimitExceededError(
                scope, decision.retry_after_seconds or rule.smallest_window, rule.message
            )
        return decision

    def _handle_store_failure(
        self, rule: RateLimitRule, identifier: str, error: CounterStoreError
    ) -> RateLimitDecision:
        """Resolve a counter store outage per the scope's fail policy."""
        if rule.fail_closed:
            logger.error(
                f"Counter store unavailable, denying {rule.scope} (fail-closed): {error}",
                extra=get_log_context(scope=rule.scope, identifier=identifier),
            )
            return RateLimitDecision(
                allowed=False,
                scope=rule.scope,
                identifier=identifier,
                retry_after=float(rule.smallest_window),
                degraded=True,
            )

        logger.warning(
            f"Counter store unavailable, allowing {rule.scope} (fail-open): {error}",
            extra=get_log_context(scope=rule.scope, identifier=identifier),
        )
        return RateLimitDecision(
            allowed=True, scope=rule.scope, identifier=identifier, degraded=True
        )
