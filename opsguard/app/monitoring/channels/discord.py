"""Discord webhook channel."""

from typing import Any, Dict

from opsguard.app.monitoring.channels.base import HTTPChannel
from opsguard.app.monitoring.models import AlertEvent, Severity

DISCORD_COLORS = {
    Severity.CRITICAL: 15158332,  # Red
    Severity.WARNING: 16776960,   # Yellow
}
DEFAULT_COLOR = 65280  # Green


class DiscordChannel(HTTPChannel):
    """Posts an embed to a Discord webhook."""

    name = "discord"

    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": f"System Alert: {event.type}",
                    "description": event.message,
                    "color": DISCORD_COLORS.get(event.severity, DEFAULT_COLOR),
                    "fields": [
                        {"name": "Severity", "value": event.severity.value.upper(), "inline": True},
                        {"name": "Environment", "value": self.environment, "inline": True},
                        {"name": "Component", "value": event.component, "inline": True},
                        {"name": "Server", "value": self.server, "inline": True},
                    ],
                    "timestamp": event.triggered_at_iso,
                }
            ]
        }
