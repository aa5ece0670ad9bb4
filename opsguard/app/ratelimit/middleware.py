"""HTTP middleware that applies rate limits before business logic."""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from opsguard.app.core.logging import get_logger
from opsguard.app.ratelimit.identity import identifier_for_request
from opsguard.app.ratelimit.limiter import RateLimiter
from opsguard.app.ratelimit.models import RateLimitDecision

logger = get_logger(__name__)


def _rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    tier = decision.limiting_tier
    if tier is None:
        return {}
    return {
        "X-RateLimit-Limit": str(tier.limit),
        "X-RateLimit-Remaining": str(tier.remaining),
        "X-RateLimit-Reset": str(max(0, int(round(tier.reset_after)))),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce scoped rate limits on requests.

    The request path selects the scope (longest configured prefix wins);
    paths outside every prefix are not limited. The subject is the
    authenticated user if an upstream layer set request.state.user_id,
    otherwise the hashed client address.

    The limiter is read from app.state.rate_limiter unless one is passed in,
    so the app factory can build it inside the lifespan.
    """

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self._limiter = limiter

    def _get_limiter(self, request: Request) -> Optional[RateLimiter]:
        if self._limiter is not None:
            return self._limiter
        return getattr(request.app.state, "rate_limiter", None)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        limiter = self._get_limiter(request)
        if limiter is None:
            return await call_next(request)

        scope = limiter.config.scope_for_path(request.url.path)
        if scope is None:
            return await call_next(request)

        identifier = identifier_for_request(request, limiter.config.trusted_proxies)
        decision = await limiter.check(scope, identifier)
        headers = _rate_limit_headers(decision)

        if decision.denied:
            retry_after = decision.retry_after_seconds or limiter.config.rule_for(scope).smallest_window
            headers["Retry-After"] = str(retry_after)
            headers.setdefault("X-RateLimit-Remaining", "0")
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "message": limiter.config.rule_for(scope).message,
                    "retry_after": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
