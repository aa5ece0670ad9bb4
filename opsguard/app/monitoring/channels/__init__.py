"""Notification channels and their construction from configuration."""

from typing import TYPE_CHECKING, Dict, Optional

import httpx

from opsguard.app.core.logging import get_logger
from opsguard.app.monitoring.channels.base import HTTPChannel, NotificationChannel
from opsguard.app.monitoring.channels.discord import DiscordChannel
from opsguard.app.monitoring.channels.email import EmailChannel
from opsguard.app.monitoring.channels.log import LogChannel
from opsguard.app.monitoring.channels.slack import SlackChannel
from opsguard.app.monitoring.channels.webhook import WebhookChannel

if TYPE_CHECKING:
    from opsguard.app.core.config import EngineConfig

logger = get_logger(__name__)

__all__ = [
    "DiscordChannel",
    "EmailChannel",
    "HTTPChannel",
    "LogChannel",
    "NotificationChannel",
    "SlackChannel",
    "WebhookChannel",
    "build_channels",
]


def build_channels(
    config: "EngineConfig",
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, NotificationChannel]:
    """Instantiate every enabled channel.

    HTTP channels are skipped with a warning when no client is supplied.
    """
    channels: Dict[str, NotificationChannel] = {}
    env = config.environment

    for name, settings in config.channels.items():
        if not settings.enabled:
            continue
        options = settings.options

        if name == "log":
            channels[name] = LogChannel(environment=env)
        elif name == "email":
            channels[name] = EmailChannel(
                recipients=options["recipients"],
                host=options["host"],
                port=options["port"],
                username=options["username"],
                password=options["password"],
                use_tls=options["use_tls"],
                from_address=options["from_address"],
                timeout=config.channel_timeout,
                environment=env,
            )
        elif http_client is None:
            logger.warning(f"Channel '{name}' enabled but no HTTP client available; skipping")
        elif name == "slack":
            channels[name] = SlackChannel(options["webhook_url"], http_client, environment=env)
        elif name == "discord":
            channels[name] = DiscordChannel(options["webhook_url"], http_client, environment=env)
        elif name == "webhook":
            channels[name] = WebhookChannel(options["url"], http_client, environment=env)

    logger.info(f"Notification channels enabled: {', '.join(sorted(channels)) or 'none'}")
    return channels
