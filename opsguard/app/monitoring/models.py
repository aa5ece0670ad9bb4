"""Monitoring and alerting data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Severity(str, Enum):
    """Alert severity levels."""
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return 2 if self is Severity.CRITICAL else 1


class Operator(str, Enum):
    """Comparison operators supported by thresholds."""
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="

    def compare(self, value: float, limit: float) -> bool:
        if self is Operator.GT:
            return value > limit
        if self is Operator.GE:
            return value >= limit
        if self is Operator.LT:
            return value < limit
        return value <= limit


class SampleStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class MetricSample:
    """Point-in-time measurement of one component.

    value is None when the probe failed or timed out.
    """
    component: str
    value: Optional[float]
    unit: str
    captured_at: float
    status: SampleStatus = SampleStatus.OK
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status is SampleStatus.OK and self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "component": self.component,
            "value": self.value,
            "unit": self.unit,
            "status": self.status.value,
            "captured_at": _iso(self.captured_at),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class Threshold:
    """Limit for a component; breaching it raises an alert of alert_type."""
    component: str
    operator: Operator
    limit: float
    severity: Severity
    alert_type: str = "performance"

    def breached(self, value: float) -> bool:
        return self.operator.compare(value, self.limit)


@dataclass(frozen=True)
class AlertEvent:
    """A single alert candidate produced by the evaluator."""
    id: str
    type: str
    component: str
    severity: Severity
    message: str
    triggered_at: float
    dedupe_key: str
    value: Optional[float] = None
    limit: Optional[float] = None
    data: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def create(
        cls,
        type: str,
        component: str,
        severity: Severity,
        message: str,
        triggered_at: float,
        value: Optional[float] = None,
        limit: Optional[float] = None,
        data: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
    ) -> "AlertEvent":
        return cls(
            id=uuid.uuid4().hex,
            type=type,
            component=component,
            severity=severity,
            message=message,
            triggered_at=triggered_at,
            dedupe_key=dedupe_key or make_dedupe_key(component, severity),
            value=value,
            limit=limit,
            data=dict(data or {}),
        )

    @property
    def triggered_at_iso(self) -> str:
        return _iso(self.triggered_at)

    def to_payload(self) -> Dict[str, Any]:
        """Fields handed to notification channels."""
        return {
            "type": self.type,
            "component": self.component,
            "severity": self.severity.value,
            "message": self.message,
            "triggeredAt": self.triggered_at_iso,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_payload()
        payload.update({
            "id": self.id,
            "dedupeKey": self.dedupe_key,
            "value": self.value,
            "limit": self.limit,
        })
        return payload


class AlertState(str, Enum):
    """Lifecycle of an alert event."""
    TRIGGERED = "triggered"
    ADMITTED = "admitted"
    DISPATCHING = "dispatching"
    DELIVERED = "delivered"
    PARTIALLY_DELIVERED = "partially_delivered"
    FAILED = "failed"
    SUPPRESSED = "suppressed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AlertState.DELIVERED,
            AlertState.PARTIALLY_DELIVERED,
            AlertState.FAILED,
            AlertState.SUPPRESSED,
        )


class ThrottleDecision(str, Enum):
    ADMITTED = "admitted"
    SUPPRESSED = "suppressed"


@dataclass
class ThrottleEntry:
    """Last time an alert with this dedupe key was let through."""
    dedupe_key: str
    last_sent_at: float
    cool_down: float

    def is_stale(self, now: float) -> bool:
        return now - self.last_sent_at > self.cool_down * 10


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of delivering one alert to one channel."""
    channel: str
    status: DeliveryStatus
    attempts: int
    duration_ms: float
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }


@dataclass(frozen=True)
class DispatchReport:
    """Aggregated outcome of one dispatch call."""
    alert_id: str
    state: AlertState
    results: Tuple[ChannelResult, ...] = ()


@dataclass(frozen=True)
class AlertRecord:
    """History entry: an alert and where it ended up."""
    event: AlertEvent
    state: AlertState
    results: Tuple[ChannelResult, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = self.event.to_dict()
        data["state"] = self.state.value
        data["channels"] = [r.to_dict() for r in self.results]
        return data


def make_dedupe_key(component: str, severity: Severity) -> str:
    return f"{component}:{severity.value}"


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
