"""Log channel: writes alerts to the opsguard.alerts logger."""

import logging

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.channels.base import NotificationChannel
from opsguard.app.monitoring.models import AlertEvent, Severity

alert_logger = get_logger("opsguard.alerts")


class LogChannel(NotificationChannel):
    name = "log"

    async def send(self, event: AlertEvent) -> None:
        level = logging.CRITICAL if event.severity is Severity.CRITICAL else logging.WARNING
        alert_logger.log(
            level,
            f"[{self.environment}] {event.severity.value.upper()} {event.type}: {event.message}",
            extra=get_log_context(
                alert_id=event.id,
                component=event.component,
                severity=event.severity.value,
            ),
        )
