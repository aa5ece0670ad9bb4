"""Metric probes.

A probe measures one component and returns a ProbeReading. Probes never
enforce their own deadline; MetricSampler time-boxes every call.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

import psutil
from sqlalchemy import text

if TYPE_CHECKING:
    from opsguard.app.ratelimit.window_counter import WindowCounter

# Counter the HTTP layer bumps for every 5xx response
ERROR_SCOPE = "errors"
ERROR_IDENTIFIER = "global"
ERROR_WINDOW_SECONDS = 60


@dataclass(frozen=True)
class ProbeReading:
    """Raw probe output; ok=False marks the component as unavailable."""
    value: Optional[float]
    ok: bool = True


class Probe(ABC):
    """Base class for component probes.

    Attributes:
        component: Name matched against threshold components
        unit: Unit of the reported value
        timeout: Per-probe override of the sampler's timeout
    """

    component: str = "unknown"
    unit: str = ""
    timeout: Optional[float] = None

    @abstractmethod
    async def probe(self) -> ProbeReading:
        """Take one measurement."""
        pass


class MemoryProbe(Probe):
    """Resident memory of this process in MB."""

    unit = "MB"

    def __init__(self, component: str = "memory"):
        self.component = component
        self._process = psutil.Process()

    async def probe(self) -> ProbeReading:
        rss = self._process.memory_info().rss
        return ProbeReading(value=round(rss / 1024 / 1024, 2))


class DiskUsageProbe(Probe):
    """Used space of the filesystem holding path, in percent."""

    unit = "%"

    def __init__(self, path: str = "/", component: str = "disk"):
        self.component = component
        self.path = path

    async def probe(self) -> ProbeReading:
        # statvfs can hang on network mounts
        usage = await asyncio.to_thread(psutil.disk_usage, self.path)
        return ProbeReading(value=float(usage.percent))


class LatencyProbe(Probe):
    """Round-trip time of an async ping callable, in milliseconds.

    The ping may return False to report the component as down.
    """

    unit = "ms"

    def __init__(self, component: str, ping: Callable[[], Awaitable[Any]]):
        self.component = component
        self._ping = ping

    async def probe(self) -> ProbeReading:
        start = time.perf_counter()
        result = await self._ping()
        elapsed_ms = (time.perf_counter() - start) * 1000
        if result is False:
            return ProbeReading(value=None, ok=False)
        return ProbeReading(value=round(elapsed_ms, 2))


class SQLAlchemyLatencyProbe(LatencyProbe):
    """Database latency measured with SELECT 1 over an AsyncEngine."""

    def __init__(self, engine: Any, component: str = "database"):
        self._engine = engine
        super().__init__(component, self._select_one)

    async def _select_one(self) -> bool:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True


class RedisLatencyProbe(LatencyProbe):
    """Cache latency measured with PING against a redis.asyncio client."""

    def __init__(self, client: Any, component: str = "cache"):
        self._client = client
        super().__init__(component, self._ping_redis)

    async def _ping_redis(self) -> bool:
        return bool(await self._client.ping())


class QueueDepthProbe(Probe):
    """Number of pending items reported by a queue client."""

    unit = "items"

    def __init__(
        self,
        depth: Callable[[], Union[int, Awaitable[int]]],
        component: str = "queue",
    ):
        self.component = component
        self._depth = depth

    async def probe(self) -> ProbeReading:
        value = self._depth()
        if asyncio.iscoroutine(value):
            value = await value
        return ProbeReading(value=float(value))


class ErrorRateProbe(Probe):
    """Server errors counted in the current one-minute window."""

    unit = "errors/min"

    def __init__(self, counter: "WindowCounter", component: str = "error_rate"):
        self.component = component
        self._counter = counter

    async def probe(self) -> ProbeReading:
        count = await self._counter.peek(ERROR_SCOPE, ERROR_IDENTIFIER, ERROR_WINDOW_SECONDS)
        return ProbeReading(value=float(count))


async def record_server_error(counter: "WindowCounter") -> None:
    """Count one server error toward the error-rate probe."""
    await counter.increment(ERROR_SCOPE, ERROR_IDENTIFIER, ERROR_WINDOW_SECONDS)
