"""Concurrent, time-boxed metric sampling."""

import asyncio
from typing import Dict, List, Optional, Sequence

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.exceptions import ProbeTimeoutError
from opsguard.app.monitoring.models import MetricSample, SampleStatus
from opsguard.app.monitoring.probes import Probe

logger = get_logger(__name__)


class MetricSampler:
    """Runs every probe concurrently, each under its own timeout.

    A slow or failing probe only affects its own sample: timeouts yield a
    TIMEOUT sample and errors an UNAVAILABLE one, both with value None.
    A whole sample() call therefore takes at most the largest probe timeout.

    Usage:
        sampler = MetricSampler([MemoryProbe(), DiskUsageProbe("/")], timeout=2.0)
        samples = await sampler.sample()
    """

    def __init__(
        self,
        probes: Sequence[Probe],
        timeout: float = 2.0,
        clock: Clock = system_clock,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._probes = list(probes)
        self._timeout = timeout
        self._clock = clock
        self._latest: Dict[str, MetricSample] = {}

    @property
    def probes(self) -> List[Probe]:
        return list(self._probes)

    def add_probe(self, probe: Probe) -> None:
        self._probes.append(probe)

    def latest(self) -> List[MetricSample]:
        """Samples from the most recent sample() call."""
        return list(self._latest.values())

    async def sample(self) -> List[MetricSample]:
        """Take one sample per probe."""
        if not self._probes:
            return []
        samples = await asyncio.gather(*(self._sample_one(p) for p in self._probes))
        self._latest = {s.component: s for s in samples}
        return list(samples)

    async def _sample_one(self, probe: Probe) -> MetricSample:
        captured_at = self._clock.now()
        timeout = probe.timeout or self._timeout
        try:
            reading = await asyncio.wait_for(probe.probe(), timeout=timeout)
        except asyncio.TimeoutError:
            error = ProbeTimeoutError(probe.component, timeout)
            logger.warning(str(error), extra=get_log_context(component=probe.component))
            return MetricSample(
                component=probe.component,
                value=None,
                unit=probe.unit,
                captured_at=captured_at,
                status=SampleStatus.TIMEOUT,
                error=str(error),
            )
        except Exception as e:
            logger.warning(
                f"Probe '{probe.component}' failed: {e}",
                extra=get_log_context(component=probe.component),
            )
            return self._unavailable(probe, captured_at, str(e) or type(e).__name__)

        if not reading.ok or reading.value is None:
            return self._unavailable(probe, captured_at, "probe reported unavailable")

        return MetricSample(
            component=probe.component,
            value=float(reading.value),
            unit=probe.unit,
            captured_at=captured_at,
        )

    @staticmethod
    def _unavailable(probe: Probe, captured_at: float, error: Optional[str]) -> MetricSample:
        return MetricSample(
            component=probe.component,
            value=None,
            unit=probe.unit,
            captured_at=captured_at,
            status=SampleStatus.UNAVAILABLE,
            error=error,
        )
