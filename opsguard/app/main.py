from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from opsguard.app.api.monitoring import ErrorRateMiddleware, router as monitoring_router
from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.config import Settings, build_engine_config, get_settings
from opsguard.app.core.http_client import init_http_client
from opsguard.app.core.logging import get_logger, setup_logging
from opsguard.app.engine import build_engine
from opsguard.app.exceptions import RateLimitExceededError
from opsguard.app.monitoring.probes import Probe
from opsguard.app.ratelimit.middleware import RateLimitMiddleware
from opsguard.app.ratelimit.store import CounterStore, create_counter_store


def create_app(
    settings: Optional[Settings] = None,
    probes: Optional[Sequence[Probe]] = None,
    store: Optional[CounterStore] = None,
    clock: Clock = system_clock,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Configuration is validated here, so an invalid rate-limit or threshold
    table stops the process before it starts serving.

    Raises:
        ConfigurationError: If settings do not form a valid configuration
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger(__name__)

    config = build_engine_config(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Builds the engine on startup, starts the monitoring scheduler and
        tears everything down on shutdown.
        """
        async with init_http_client(settings) as http_client:
            engine = build_engine(
                config,
                http_client=http_client,
                store=store if store is not None else create_counter_store(settings),
                probes=probes,
                clock=clock,
            )
            app.state.engine = engine
            app.state.rate_limiter = engine.rate_limiter

            if settings.monitoring_enabled:
                await engine.scheduler.start()

            logger.info(
                "Application startup complete",
                extra={
                    "scopes": sorted(config.rules),
                    "thresholds": len(config.thresholds),
                    "channels": sorted(engine.dispatcher.channels),
                    "monitoring_enabled": settings.monitoring_enabled,
                },
            )
            try:
                yield {"http_client": http_client}
            finally:
                await engine.close()
                app.state.engine = None
                app.state.rate_limiter = None
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="opsguard",
        description="Rate limiting and monitoring/alerting engine",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = None
    app.state.rate_limiter = None

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(ErrorRateMiddleware)
    app.add_middleware(RateLimitMiddleware)

    app.include_router(monitoring_router)

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return JSONResponse(
            status_code=429,
            content={"success": False, "message": exc.message, "retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Full details are logged server-side; clients get a generic message
        (plus the exception text in debug mode).
        """
        logger.exception(
            "Unhandled exception",
            extra={
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )
        content: dict[str, Any] = {"success": False, "message": "Internal server error"}
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app
