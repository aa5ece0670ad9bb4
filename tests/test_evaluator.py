"""Tests for threshold evaluation."""

import pytest

from opsguard.app.monitoring.evaluator import HEALTH_CHECK_ALERT, ThresholdEvaluator
from opsguard.app.monitoring.models import Operator, SampleStatus, Severity, Threshold, ThrottleDecision
from opsguard.app.monitoring.throttle import AlertThrottle

MEMORY_WARNING = Threshold("memory", Operator.GE, 500, Severity.WARNING)
MEMORY_CRITICAL = Threshold("memory", Operator.GE, 600, Severity.CRITICAL)


@pytest.fixture
def evaluator(clock) -> ThresholdEvaluator:
    return ThresholdEvaluator([MEMORY_WARNING, MEMORY_CRITICAL], clock=clock)


class TestThresholdEvaluator:
    """Test ThresholdEvaluator.evaluate()."""

    def test_warning_breach(self, evaluator, make_sample, clock):
        """520 MB against a 500 MB warning yields one warning event."""
        (event,) = evaluator.evaluate([make_sample("memory", 520, "MB")])

        assert event.severity is Severity.WARNING
        assert event.type == "performance"
        assert event.component == "memory"
        assert event.value == 520
        assert event.limit == 500
        assert event.message == "memory is 520 MB (threshold >= 500 MB)"
        assert event.dedupe_key == "memory:warning"
        assert event.triggered_at == clock.now()

    def test_critical_supersedes_warning(self, evaluator, make_sample):
        """650 MB breaches both; only the critical event is emitted."""
        events = evaluator.evaluate([make_sample("memory", 650, "MB")])

        assert [e.severity for e in events] == [Severity.CRITICAL]
        assert events[0].dedupe_key == "memory:critical"

    def test_no_breach(self, evaluator, make_sample):
        assert evaluator.evaluate([make_sample("memory", 499.9, "MB")]) == []

    def test_boundary_is_inclusive_for_ge(self, evaluator, make_sample):
        (event,) = evaluator.evaluate([make_sample("memory", 500, "MB")])
        assert event.severity is Severity.WARNING

    def test_components_without_thresholds_ignored(self, evaluator, make_sample):
        assert evaluator.evaluate([make_sample("disk", 99, "%")]) == []

    def test_less_than_operator(self, clock, make_sample):
        evaluator = ThresholdEvaluator(
            [Threshold("workers", Operator.LT, 2, Severity.CRITICAL, alert_type="capacity")],
            clock=clock,
        )

        (event,) = evaluator.evaluate([make_sample("workers", 1)])

        assert event.type == "capacity"
        assert event.message == "workers is 1 (threshold < 2)"

    def test_unavailable_sample_raises_health_check(self, evaluator, make_sample):
        """An unavailable component is itself a critical alert."""
        sample = make_sample("memory", None, "MB", status=SampleStatus.TIMEOUT)

        (event,) = evaluator.evaluate([sample])

        assert event.type == HEALTH_CHECK_ALERT
        assert event.severity is Severity.CRITICAL
        assert event.value is None
        assert "timeout" in event.message
        assert event.dedupe_key == "memory:health_check"

    def test_health_check_does_not_throttle_later_breach(self, make_sample, clock):
        """A disk timeout and a real critical disk breach are separate problems."""
        evaluator = ThresholdEvaluator([Threshold("disk", Operator.GE, 95, Severity.CRITICAL)], clock=clock)
        throttle = AlertThrottle({"performance": 900, HEALTH_CHECK_ALERT: 300}, clock=clock)

        (timeout_event,) = evaluator.evaluate([make_sample("disk", None, "%", status=SampleStatus.TIMEOUT)])
        assert throttle.admit(timeout_event) is ThrottleDecision.ADMITTED

        clock.advance(30)
        (breach_event,) = evaluator.evaluate([make_sample("disk", 99, "%")])

        assert breach_event.dedupe_key == "disk:critical"
        assert throttle.admit(breach_event) is ThrottleDecision.ADMITTED

    def test_unavailable_alerts_can_be_disabled(self, clock, make_sample):
        evaluator = ThresholdEvaluator([MEMORY_WARNING], alert_on_unavailable=False, clock=clock)
        sample = make_sample("memory", None, status=SampleStatus.UNAVAILABLE)

        assert evaluator.evaluate([sample]) == []

    def test_explicit_thresholds_override(self, evaluator, make_sample):
        """Thresholds passed to evaluate() replace the configured ones for that call."""
        thresholds = [Threshold("memory", Operator.GT, 100, Severity.WARNING)]

        (event,) = evaluator.evaluate([make_sample("memory", 150, "MB")], thresholds)

        assert event.limit == 100

    def test_update_thresholds(self, evaluator, make_sample):
        evaluator.update_thresholds([])
        assert evaluator.evaluate([make_sample("memory", 9999, "MB")]) == []

    def test_events_have_unique_ids(self, evaluator, make_sample):
        first = evaluator.evaluate([make_sample("memory", 520, "MB")])[0]
        second = evaluator.evaluate([make_sample("memory", 520, "MB")])[0]

        assert first.id != second.id
        assert first.dedupe_key == second.dedupe_key
