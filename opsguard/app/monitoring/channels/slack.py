"""Slack incoming-webhook channel."""

from typing import Any, Dict

from opsguard.app.monitoring.channels.base import HTTPChannel
from opsguard.app.monitoring.models import AlertEvent, Severity

SLACK_COLORS = {
    Severity.CRITICAL: "danger",
    Severity.WARNING: "warning",
}


class SlackChannel(HTTPChannel):
    """Posts a legacy-attachment message to a Slack incoming webhook."""

    name = "slack"

    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        return {
            "text": f"System Alert: {event.type}",
            "attachments": [
                {
                    "color": SLACK_COLORS.get(event.severity, "good"),
                    "fields": [
                        {"title": "Severity", "value": event.severity.value.upper(), "short": True},
                        {"title": "Environment", "value": self.environment, "short": True},
                        {"title": "Component", "value": event.component, "short": True},
                        {"title": "Message", "value": event.message, "short": False},
                        {"title": "Timestamp", "value": event.triggered_at_iso, "short": True},
                        {"title": "Server", "value": self.server, "short": True},
                    ],
                }
            ],
        }
