"""Shared HTTP client management for connection pooling.

Webhook-style notification channels share one httpx.AsyncClient that is
created on application startup and closed on shutdown.
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator

import httpx

if TYPE_CHECKING:
    from opsguard.app.core.config import Settings


def create_http_client(settings: "Settings") -> httpx.AsyncClient:
    """Create an HTTP client configured from settings.

    The caller owns the client and must close it:
        async with create_http_client(settings) as client:
            ...
    """
    timeout = httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=settings.httpx_read_timeout,
        write=settings.httpx_connect_timeout,
        pool=settings.httpx_connect_timeout,
    )
    limits = httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=max(1, settings.httpx_max_connections // 2),
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits)


@asynccontextmanager
async def init_http_client(settings: "Settings") -> AsyncGenerator[httpx.AsyncClient, None]:
    """Yield a shared HTTP client for the lifetime of the context.

    Used from the FastAPI lifespan and the CLI:

        async with init_http_client(settings) as http_client:
            engine = build_engine(config, http_client=http_client)
    """
    client = create_http_client(settings)
    try:
        yield client
    finally:
        await client.aclose()
