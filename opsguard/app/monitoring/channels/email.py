"""SMTP email channel."""

import asyncio
import smtplib
import ssl
import threading
import time
from email.mime.text import MIMEText
from typing import Optional, Sequence

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.exceptions import ChannelDeliveryError
from opsguard.app.monitoring.channels.base import NotificationChannel
from opsguard.app.monitoring.models import AlertEvent

logger = get_logger(__name__)


class EmailChannel(NotificationChannel):
    """Sends a plain-text alert email.

    smtplib is blocking, so each send runs in a worker thread. The whole
    exchange shares one deadline of `timeout` seconds, and a new send is
    refused while an earlier worker is still talking to the server.
    """

    name = "email"

    def __init__(
        self,
        recipients: Sequence[str],
        host: str = "localhost",
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        from_address: str = "opsguard@localhost",
        timeout: float = 10.0,
        environment: str = "production",
        server: Optional[str] = None,
    ):
        super().__init__(environment=environment, server=server)
        if not recipients:
            raise ValueError("email channel requires at least one recipient")
        self.recipients = list(recipients)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout
        self._in_flight = threading.Lock()

    def subject(self, event: AlertEvent) -> str:
        return f"[{self.environment}] {event.severity.value} Alert: {event.type}"

    def render_text(self, event: AlertEvent) -> str:
        lines = [
            "System Alert Notification",
            "=" * 24,
            "",
            f"Type: {event.type}",
            f"Severity: {event.severity.value.upper()}",
            f"Component: {event.component}",
            f"Environment: {self.environment}",
            f"Server: {self.server}",
            f"Timestamp: {event.triggered_at_iso}",
            f"Alert ID: {event.id}",
            "",
            "Message:",
            event.message,
        ]
        if event.value is not None and event.limit is not None:
            lines.extend(["", f"Measured: {event.value:g}", f"Limit: {event.limit:g}"])
        lines.extend(["", "---", "This is an automated alert from opsguard."])
        return "\n".join(lines)

    async def send(self, event: AlertEvent) -> None:
        try:
            await asyncio.to_thread(self._send_sync, event)
        except asyncio.CancelledError:
            if self.busy:
                logger.warning(
                    f"Email for alert {event.id} abandoned; SMTP exchange ends within {self.timeout:g}s",
                    extra=get_log_context(alert_id=event.id, channel=self.name),
                )
            raise
        except smtplib.SMTPAuthenticationError as e:
            raise ChannelDeliveryError(self.name, f"authentication failed: {e}", retryable=False) from e
        except smtplib.SMTPRecipientsRefused as e:
            raise ChannelDeliveryError(self.name, f"recipients refused: {e}", retryable=False) from e
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(self.name, f"{type(e).__name__}: {e}") from e

    @property
    def busy(self) -> bool:
        """True while a worker thread is still in an SMTP exchange."""
        return self._in_flight.locked()

    def _send_sync(self, event: AlertEvent) -> None:
        # One SMTP exchange at a time; a send abandoned by the dispatcher
        # still holds the lock until its worker thread returns.
        if not self._in_flight.acquire(blocking=False):
            raise ChannelDeliveryError(self.name, "previous send still in progress", retryable=False)
        try:
            self._exchange(event, time.monotonic() + self.timeout)
        finally:
            self._in_flight.release()

    def _exchange(self, event: AlertEvent, deadline: float) -> None:
        msg = MIMEText(self.render_text(event), "plain", "utf-8")
        msg["Subject"] = self.subject(event)
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.recipients)

        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.use_tls:
                self._arm(server, deadline)
                server.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                self._arm(server, deadline)
                server.login(self.username, self.password)
            self._arm(server, deadline)
            server.sendmail(self.from_address, self.recipients, msg.as_string())
        finally:
            try:
                self._arm(server, deadline)
                server.quit()
            except (smtplib.SMTPException, OSError):
                server.close()

    def _arm(self, server: smtplib.SMTP, deadline: float) -> None:
        """Bound the next SMTP step by what is left of the exchange deadline."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError(f"SMTP exchange exceeded {self.timeout:g}s")
        if server.sock is not None:
            server.sock.settimeout(remaining)
