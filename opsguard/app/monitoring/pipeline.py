"""One monitoring pass: sample, evaluate, throttle, dispatch, record."""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.dispatcher import NotificationDispatcher
from opsguard.app.monitoring.evaluator import ThresholdEvaluator
from opsguard.app.monitoring.history import AlertHistory
from opsguard.app.monitoring.models import (
    AlertEvent,
    AlertRecord,
    AlertState,
    MetricSample,
    ThrottleDecision,
)
from opsguard.app.monitoring.sampler import MetricSampler
from opsguard.app.monitoring.throttle import AlertThrottle
from opsguard.app.ratelimit.window_counter import WindowCounter

logger = get_logger(__name__)


@dataclass(frozen=True)
class TickReport:
    """What happened during one monitoring tick."""
    tick: int
    samples: Tuple[MetricSample, ...] = ()
    alerts: Tuple[AlertEvent, ...] = ()
    records: Tuple[AlertRecord, ...] = field(default_factory=tuple)

    @property
    def dispatched(self) -> List[AlertRecord]:
        return [r for r in self.records if r.state is not AlertState.SUPPRESSED]


class MonitoringPipeline:
    """Wires the monitoring components into a single tick.

    Admitted alerts are dispatched concurrently; suppressed alerts are
    recorded without touching any channel. When a WindowCounter is given,
    stale rate limit counters are evicted once per tick.
    """

    def __init__(
        self,
        sampler: MetricSampler,
        evaluator: ThresholdEvaluator,
        throttle: AlertThrottle,
        dispatcher: NotificationDispatcher,
        history: Optional[AlertHistory] = None,
        counter: Optional[WindowCounter] = None,
        eviction_grace: float = 2.0,
    ):
        self.sampler = sampler
        self.evaluator = evaluator
        self.throttle = throttle
        self.dispatcher = dispatcher
        self.history = history if history is not None else AlertHistory()
        self.counter = counter
        self.eviction_grace = eviction_grace
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    async def run_tick(self) -> TickReport:
        self._ticks += 1
        tick = self._ticks

        samples = await self.sampler.sample()
        events = self.evaluator.evaluate(samples)
        records = await self.process_alerts(events)

        if self.counter is not None:
            await self.counter.evict_stale(self.eviction_grace)

        logger.debug(
            f"Tick {tick}: {len(samples)} samples, {len(events)} alerts, "
            f"{sum(1 for r in records if r.state is not AlertState.SUPPRESSED)} dispatched",
            extra=get_log_context(tick=tick),
        )
        return TickReport(
            tick=tick,
            samples=tuple(samples),
            alerts=tuple(events),
            records=tuple(records),
        )

    async def process_alerts(self, events: List[AlertEvent]) -> List[AlertRecord]:
        admitted: List[AlertEvent] = []
        records: List[AlertRecord] = []
        for event in events:
            if self.throttle.admit(event) is ThrottleDecision.ADMITTED:
                admitted.append(event)
            else:
                record = AlertRecord(event=event, state=AlertState.SUPPRESSED)
                self.history.add(record)
                records.append(record)

        if admitted:
            records.extend(await asyncio.gather(*(self._dispatch(e) for e in admitted)))
        return records

    async def process_alert(self, event: AlertEvent) -> AlertRecord:
        """Throttle and dispatch a single alert outside the tick cycle."""
        records = await self.process_alerts([event])
        return records[0]

    async def _dispatch(self, event: AlertEvent) -> AlertRecord:
        report = await self.dispatcher.dispatch(event)
        record = AlertRecord(event=event, state=report.state, results=report.results)
        self.history.add(record)
        return record
