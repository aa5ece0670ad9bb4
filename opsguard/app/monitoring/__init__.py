"""Metric sampling, threshold evaluation and alert delivery."""

from opsguard.app.monitoring.dispatcher import NotificationDispatcher
from opsguard.app.monitoring.evaluator import ThresholdEvaluator
from opsguard.app.monitoring.history import AlertHistory
from opsguard.app.monitoring.models import (
    AlertEvent,
    AlertRecord,
    AlertState,
    ChannelResult,
    DeliveryStatus,
    DispatchReport,
    MetricSample,
    Operator,
    SampleStatus,
    Severity,
    Threshold,
    ThrottleDecision,
)
from opsguard.app.monitoring.pipeline import MonitoringPipeline, TickReport
from opsguard.app.monitoring.sampler import MetricSampler
from opsguard.app.monitoring.scheduler import MonitoringScheduler
from opsguard.app.monitoring.throttle import AlertThrottle

__all__ = [
    "AlertEvent",
    "AlertHistory",
    "AlertRecord",
    "AlertState",
    "AlertThrottle",
    "ChannelResult",
    "DeliveryStatus",
    "DispatchReport",
    "MetricSample",
    "MetricSampler",
    "MonitoringPipeline",
    "MonitoringScheduler",
    "NotificationDispatcher",
    "Operator",
    "SampleStatus",
    "Severity",
    "Threshold",
    "ThresholdEvaluator",
    "ThrottleDecision",
    "TickReport",
]
