"""Tests for the monitoring pipeline and alert history."""

import pytest

from opsguard.app.monitoring.channels.log import LogChannel
from opsguard.app.monitoring.dispatcher import NotificationDispatcher
from opsguard.app.monitoring.evaluator import ThresholdEvaluator
from opsguard.app.monitoring.history import AlertHistory
from opsguard.app.monitoring.models import (
    AlertRecord,
    AlertState,
    Operator,
    Severity,
    Threshold,
)
from opsguard.app.monitoring.pipeline import MonitoringPipeline
from opsguard.app.monitoring.sampler import MetricSampler
from opsguard.app.monitoring.throttle import AlertThrottle
from opsguard.app.ratelimit.store import InMemoryCounterStore
from opsguard.app.ratelimit.window_counter import WindowCounter

THRESHOLDS = [
    Threshold("memory", Operator.GE, 500, Severity.WARNING),
    Threshold("disk", Operator.GE, 95, Severity.CRITICAL),
]


@pytest.fixture
def memory_probe(make_probe):
    return make_probe("memory", 520.0, "MB")


@pytest.fixture
def pipeline(memory_probe, make_probe, clock) -> MonitoringPipeline:
    return MonitoringPipeline(
        sampler=MetricSampler([memory_probe, make_probe("disk", 40.0, "%")], clock=clock),
        evaluator=ThresholdEvaluator(THRESHOLDS, clock=clock),
        throttle=AlertThrottle({"performance": 900}, clock=clock),
        dispatcher=NotificationDispatcher(
            {"log": LogChannel()},
            {Severity.WARNING: ("log",), Severity.CRITICAL: ("log",)},
        ),
        history=AlertHistory(max_size=10),
    )


class TestMonitoringPipeline:
    """Test MonitoringPipeline.run_tick()."""

    @pytest.mark.asyncio
    async def test_breach_is_dispatched_and_recorded(self, pipeline):
        report = await pipeline.run_tick()

        assert report.tick == 1
        assert [s.component for s in report.samples] == ["memory", "disk"]
        (alert,) = report.alerts
        assert alert.dedupe_key == "memory:warning"
        (record,) = report.dispatched
        assert record.state is AlertState.DELIVERED
        assert pipeline.history.recent() == [record]

    @pytest.mark.asyncio
    async def test_repeat_within_cooldown_is_suppressed(self, pipeline, clock):
        """The second tick re-detects the breach but does not notify."""
        await pipeline.run_tick()
        clock.advance(60)

        report = await pipeline.run_tick()

        (record,) = report.records
        assert record.state is AlertState.SUPPRESSED
        assert record.results == ()
        assert report.dispatched == []
        assert len(pipeline.history) == 2

    @pytest.mark.asyncio
    async def test_fires_again_after_cooldown(self, pipeline, clock):
        await pipeline.run_tick()
        clock.advance(900)

        report = await pipeline.run_tick()

        assert len(report.dispatched) == 1
        assert pipeline.ticks == 2

    @pytest.mark.asyncio
    async def test_healthy_tick(self, pipeline, memory_probe):
        memory_probe.value = 100.0

        report = await pipeline.run_tick()

        assert report.alerts == ()
        assert report.records == ()

    @pytest.mark.asyncio
    async def test_process_alert_outside_tick(self, pipeline, make_alert):
        record = await pipeline.process_alert(make_alert("queue", Severity.CRITICAL))

        assert record.state is AlertState.DELIVERED
        assert pipeline.ticks == 0

    @pytest.mark.asyncio
    async def test_evicts_stale_counters(self, pipeline, clock):
        counter = WindowCounter(InMemoryCounterStore(), clock=clock)
        pipeline.counter = counter
        await counter.increment("api", "ip:a", 60)
        clock.advance(121)

        await pipeline.run_tick()

        assert await counter.peek("api", "ip:a", 60) == 0
        assert len(counter.store) == 0


class TestAlertHistory:
    """Test the bounded alert history."""

    def test_newest_first(self, make_alert):
        history = AlertHistory()
        first = AlertRecord(make_alert("a"), AlertState.DELIVERED)
        second = AlertRecord(make_alert("b"), AlertState.FAILED)
        history.add(first)
        history.add(second)

        assert history.recent() == [second, first]
        assert history.recent(limit=1) == [second]

    def test_bounded(self, make_alert):
        history = AlertHistory(max_size=3)
        for i in range(5):
            history.add(AlertRecord(make_alert(f"c{i}"), AlertState.DELIVERED))

        assert len(history) == 3
        assert [r.event.component for r in history.recent()] == ["c4", "c3", "c2"]

    def test_clear(self, make_alert):
        history = AlertHistory()
        history.add(AlertRecord(make_alert(), AlertState.SUPPRESSED))
        history.clear()
        assert history.recent() == []

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            AlertHistory(max_size=0)
