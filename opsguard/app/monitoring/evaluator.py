"""Threshold evaluation: samples in, alert candidates out."""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.models import (
    AlertEvent,
    MetricSample,
    Severity,
    Threshold,
)

logger = get_logger(__name__)

HEALTH_CHECK_ALERT = "health_check"


def _format_value(value: float, unit: str) -> str:
    return f"{value:g} {unit}".strip()


class ThresholdEvaluator:
    """Compares samples against thresholds.

    Every threshold of a component is checked independently and yields at
    most one event. When a critical threshold fires for a component, its
    warnings from the same pass are dropped.

    Unavailable samples of a component that has thresholds produce a
    critical health_check event when alert_on_unavailable is set.
    """

    def __init__(
        self,
        thresholds: Sequence[Threshold] = (),
        alert_on_unavailable: bool = True,
        clock: Clock = system_clock,
    ):
        self._thresholds = tuple(thresholds)
        self._alert_on_unavailable = alert_on_unavailable
        self._clock = clock

    def update_thresholds(self, thresholds: Sequence[Threshold]) -> None:
        self._thresholds = tuple(thresholds)

    def evaluate(
        self,
        samples: Iterable[MetricSample],
        thresholds: Optional[Sequence[Threshold]] = None,
    ) -> List[AlertEvent]:
        by_component: Dict[str, List[Threshold]] = defaultdict(list)
        for threshold in (self._thresholds if thresholds is None else thresholds):
            by_component[threshold.component].append(threshold)

        now = self._clock.now()
        events: List[AlertEvent] = []
        for sample in samples:
            matching = by_component.get(sample.component)
            if not matching:
                continue

            if not sample.available:
                if self._alert_on_unavailable:
                    events.append(self._unavailable_event(sample, now))
                continue

            fired = [t for t in matching if t.breached(sample.value)]
            if any(t.severity is Severity.CRITICAL for t in fired):
                fired = [t for t in fired if t.severity is Severity.CRITICAL]
            events.extend(self._breach_event(sample, t, now) for t in fired)

        for event in events:
            logger.debug(
                f"Alert candidate {event.dedupe_key}: {event.message}",
                extra=get_log_context(component=event.component, severity=event.severity.value),
            )
        return events

    @staticmethod
    def _breach_event(sample: MetricSample, threshold: Threshold, now: float) -> AlertEvent:
        message = (
            f"{sample.component} is {_format_value(sample.value, sample.unit)} "
            f"(threshold {threshold.operator.value} {_format_value(threshold.limit, sample.unit)})"
        )
        return AlertEvent.create(
            type=threshold.alert_type,
            component=sample.component,
            severity=threshold.severity,
            message=message,
            triggered_at=now,
            value=sample.value,
            limit=threshold.limit,
            data={"unit": sample.unit, "operator": threshold.operator.value},
        )

    @staticmethod
    def _unavailable_event(sample: MetricSample, now: float) -> AlertEvent:
        detail = f": {sample.error}" if sample.error else ""
        return AlertEvent.create(
            type=HEALTH_CHECK_ALERT,
            component=sample.component,
            severity=Severity.CRITICAL,
            message=f"{sample.component} health check {sample.status.value}{detail}",
            triggered_at=now,
            data={"status": sample.status.value},
            dedupe_key=f"{sample.component}:{HEALTH_CHECK_ALERT}",
        )
