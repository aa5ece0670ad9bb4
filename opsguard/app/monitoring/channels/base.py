"""Notification channel base classes."""

import socket
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from opsguard.app.exceptions import ChannelDeliveryError
from opsguard.app.monitoring.models import AlertEvent


class NotificationChannel(ABC):
    """Delivers an alert to one destination.

    send() returns on success and raises ChannelDeliveryError otherwise.
    Timeouts and retries are applied by the dispatcher, not the channel.
    """

    name: str = "channel"

    def __init__(self, environment: str = "production", server: Optional[str] = None):
        self.environment = environment
        self.server = server or socket.gethostname()

    @abstractmethod
    async def send(self, event: AlertEvent) -> None:
        pass

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class HTTPChannel(NotificationChannel):
    """Channel that POSTs a JSON document with a shared httpx client."""

    def __init__(
        self,
        url: str,
        http_client: httpx.AsyncClient,
        environment: str = "production",
        server: Optional[str] = None,
    ):
        super().__init__(environment=environment, server=server)
        if not url:
            raise ValueError(f"{self.name} channel requires a URL")
        self.url = url
        self._client = http_client

    @abstractmethod
    def build_payload(self, event: AlertEvent) -> Dict[str, Any]:
        pass

    async def send(self, event: AlertEvent) -> None:
        try:
            response = await self._client.post(self.url, json=self.build_payload(event))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ChannelDeliveryError(
                self.name,
                f"HTTP {status}",
                retryable=status >= 500 or status == 429,
            ) from e
        except httpx.RequestError as e:
            raise ChannelDeliveryError(self.name, f"{type(e).__name__}: {e}") from e
