"""Generic JSON webhook channel."""

from typing import Any, Dict

from opsguard.app.monitoring.channels.base import HTTPChannel
from opsguard.app.monitoring.models import AlertEvent


class WebhookChannel(HTTPChannel):
    """Posts the alert payload as-is, plus id and origin metadata."""

    name = "webhook"

    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        payload = event.to_payload()
        payload.update({
            "id": event.id,
            "dedupeKey": event.dedupe_key,
            "environment": self.environment,
            "server": self.server,
        })
        return payload
