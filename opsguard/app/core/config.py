import json
import re
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Annotated, Any, Mapping, Optional, Tuple

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from opsguard.app.exceptions import ConfigurationError
from opsguard.app.monitoring.models import Operator, Severity, Threshold
from opsguard.app.ratelimit.models import RateLimitRule, RateLimitTier

WINDOW_KEYS = {
    "per_second": 1,
    "per_minute": 60,
    "per_hour": 3600,
    "per_day": 86400,
}

KNOWN_CHANNELS = ("log", "slack", "discord", "email", "webhook")

DEFAULT_RATE_LIMIT_SCOPES: dict[str, dict[str, int]] = {
    "admin-auth": {"per_minute": 5, "per_hour": 20, "per_day": 50},
    "admin-api": {"per_minute": 120, "per_hour": 2000, "per_day": 10000},
    "file-upload": {"per_minute": 10, "per_hour": 50, "per_day": 200},
    "bulk-operations": {"per_minute": 5, "per_hour": 20, "per_day": 50},
    "system-operations": {"per_minute": 2, "per_hour": 5, "per_day": 10},
    "api": {"per_minute": 60},
}

DEFAULT_SCOPE_MESSAGES: dict[str, str] = {
    "admin-auth": "Too many authentication attempts. Please try again later.",
    "admin-api": "API rate limit exceeded. Please slow down your requests.",
    "file-upload": "File upload rate limit exceeded. Please wait before uploading more files.",
    "bulk-operations": "Bulk operations rate limit exceeded. Please wait before performing more bulk actions.",
    "system-operations": "System operations rate limit exceeded. Critical operations are heavily restricted.",
}

DEFAULT_PATH_SCOPES: dict[str, str] = {
    "/api/admin/auth": "admin-auth",
    "/api/admin/upload": "file-upload",
    "/api/admin/bulk": "bulk-operations",
    "/api/admin/system": "system-operations",
    "/api/admin": "admin-api",
    "/api": "api",
}

DEFAULT_THRESHOLDS: list[dict[str, Any]] = [
    {"component": "memory", "operator": ">=", "limit": 500, "severity": "warning"},
    {"component": "disk", "operator": ">=", "limit": 90, "severity": "warning"},
    {"component": "disk", "operator": ">=", "limit": 95, "severity": "critical"},
    {"component": "database", "operator": ">=", "limit": 100, "severity": "warning"},
    {"component": "cache", "operator": ">=", "limit": 50, "severity": "warning"},
    {
        "component": "error_rate",
        "operator": ">=",
        "limit": 5,
        "severity": "critical",
        "type": "error_rate",
    },
]

DEFAULT_COOLDOWNS: dict[str, float] = {
    "performance": 900,
    "system_error": 60,
    "error_rate": 60,
    "health_check": 300,
}

DEFAULT_ROUTING: dict[str, list[str]] = {
    "warning": ["log", "slack"],
    "critical": ["log", "slack", "discord", "email", "webhook"],
}


def _decode_json(raw: Any, default_type: type) -> Any:
    """Decode a JSON env value, passing through already-parsed values."""
    if raw is None:
        return default_type()
    if isinstance(raw, (dict, list)):
        return raw
    raw = str(raw).strip()
    if not raw:
        return default_type()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"expected JSON {default_type.__name__}: {e}") from e


def _parse_name_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(v).strip() for v in raw if str(v).strip()]
    raw = str(raw).strip()
    if raw.startswith("["):
        return _parse_name_list(_decode_json(raw, list))
    return [p for p in re.split(r"[,\s]+", raw) if p]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Table-shaped values (scopes, thresholds, cool-downs, routing) are JSON.
    """

    debug: bool = False
    environment: str = "production"
    admin_token: str = ""

    # Rate limiting settings
    rate_limit_scopes: Annotated[dict[str, dict[str, int]], NoDecode] = DEFAULT_RATE_LIMIT_SCOPES
    rate_limit_messages: Annotated[dict[str, str], NoDecode] = DEFAULT_SCOPE_MESSAGES
    rate_limit_path_scopes: Annotated[dict[str, str], NoDecode] = DEFAULT_PATH_SCOPES
    rate_limit_fail_closed_scopes: Annotated[list[str], NoDecode] = [
        "admin-auth",
        "system-operations",
    ]
    rate_limit_eviction_grace: float = 2.0  # Evict counters idle for 2x their window
    rate_limit_max_entries: int = 100000
    rate_limit_trusted_proxies: Annotated[list[str], NoDecode] = []  # Peers whose X-Forwarded-For is honoured

    # Redis settings (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Alert thresholds and throttling
    alert_thresholds: Annotated[list[dict[str, Any]], NoDecode] = DEFAULT_THRESHOLDS
    alert_cooldowns: Annotated[dict[str, float], NoDecode] = DEFAULT_COOLDOWNS
    alert_default_cooldown: float = 1800.0  # Same alert at most every 30 minutes
    alert_max_per_hour: int = 10  # 0 disables the global cap
    alert_on_unavailable: bool = True
    alert_routing: Annotated[dict[str, list[str]], NoDecode] = DEFAULT_ROUTING
    alert_history_size: int = 100

    # Notification channels
    notifications_enabled: bool = True
    alert_log_enabled: bool = True
    slack_webhook_url: str = ""
    discord_webhook_url: str = ""
    alert_webhook_url: str = ""
    alert_email_enabled: bool = False
    alert_email_recipients: Annotated[list[str], NoDecode] = []
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from_address: str = "opsguard@localhost"

    # Monitoring loop
    monitoring_enabled: bool = True
    monitoring_interval_seconds: float = 60.0
    monitoring_probe_timeout: float = 2.0
    monitoring_disk_path: str = "/"

    # Channel delivery
    channel_timeout: float = 5.0
    channel_max_retries: int = 1
    channel_retry_base_delay: float = 0.5

    # HTTP client settings (webhook channels)
    httpx_connect_timeout: float = 5.0
    httpx_read_timeout: float = 10.0
    httpx_max_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_scopes",
        "rate_limit_messages",
        "rate_limit_path_scopes",
        "alert_cooldowns",
        "alert_routing",
        mode="before",
    )
    @classmethod
    def decode_json_mapping(cls, v: Any) -> Any:
        return _decode_json(v, dict)

    @field_validator("alert_thresholds", mode="before")
    @classmethod
    def decode_json_list(cls, v: Any) -> Any:
        return _decode_json(v, list)

    @field_validator(
        "rate_limit_fail_closed_scopes",
        "rate_limit_trusted_proxies",
        "alert_email_recipients",
        mode="before",
    )
    @classmethod
    def decode_name_list(cls, v: Any) -> list[str]:
        return _parse_name_list(v)

    @field_validator(
        "monitoring_interval_seconds",
        "monitoring_probe_timeout",
        "channel_timeout",
        "rate_limit_eviction_grace",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("alert_max_per_hour", "channel_retry_base_delay")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("alert_history_size", "rate_limit_max_entries")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("channel_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """A failed delivery is retried at most once."""
        if v not in (0, 1):
            raise ValueError("must be 0 or 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@dataclass(frozen=True)
class ChannelSettings:
    """Enablement and credentials for one notification channel."""
    name: str
    enabled: bool
    options: Mapping[str, Any]


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration handed to every engine component.

    Built once from Settings by build_engine_config(); never mutated.
    """
    rules: Mapping[str, RateLimitRule]
    path_scopes: Tuple[Tuple[str, str], ...]
    eviction_grace: float
    max_counter_entries: int
    trusted_proxies: frozenset[str]
    thresholds: Tuple[Threshold, ...]
    cooldowns: Mapping[str, float]
    default_cooldown: float
    max_alerts_per_hour: int
    alert_on_unavailable: bool
    routing: Mapping[Severity, Tuple[str, ...]]
    channels: Mapping[str, ChannelSettings]
    notifications_enabled: bool
    probe_timeout: float
    channel_timeout: float
    channel_max_retries: int
    channel_retry_base_delay: float
    monitoring_interval: float
    history_size: int
    environment: str
    disk_path: str

    def rule_for(self, scope: str) -> RateLimitRule:
        try:
            return self.rules[scope]
        except KeyError:
            raise ConfigurationError(f"unknown rate limit scope '{scope}'", field="rate_limit_scopes") from None

    def cooldown_for(self, alert_type: str) -> float:
        return self.cooldowns.get(alert_type, self.default_cooldown)

    def scope_for_path(self, path: str) -> Optional[str]:
        for prefix, scope in self.path_scopes:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return scope
        return None


def _build_rules(settings: Settings) -> dict[str, RateLimitRule]:
    if not settings.rate_limit_scopes:
        raise ConfigurationError("rate limit table is empty", field="rate_limit_scopes")

    fail_closed = set(settings.rate_limit_fail_closed_scopes)
    rules: dict[str, RateLimitRule] = {}
    for scope, spec in settings.rate_limit_scopes.items():
        if not isinstance(spec, dict) or not spec:
            raise ConfigurationError(f"scope '{scope}' has no tiers", field="rate_limit_scopes")
        tiers = []
        for key, max_count in spec.items():
            window = WINDOW_KEYS.get(key)
            if window is None:
                raise ConfigurationError(
                    f"scope '{scope}' has unknown window '{key}' "
                    f"(expected one of {', '.join(WINDOW_KEYS)})",
                    field="rate_limit_scopes",
                )
            if not isinstance(max_count, int) or isinstance(max_count, bool) or max_count < 1:
                raise ConfigurationError(
                    f"scope '{scope}' {key} must be a positive integer", field="rate_limit_scopes"
                )
            tiers.append(RateLimitTier(window_seconds=window, max_count=max_count))
        tiers.sort(key=lambda t: t.window_seconds)
        rules[scope] = RateLimitRule(
            scope=scope,
            tiers=tuple(tiers),
            fail_closed=scope in fail_closed,
            message=settings.rate_limit_messages.get(
                scope, "Too many requests. Please try again later."
            ),
        )

    unknown = fail_closed - rules.keys()
    if unknown:
        raise ConfigurationError(
            f"fail-closed scopes not defined: {', '.join(sorted(unknown))}",
            field="rate_limit_fail_closed_scopes",
        )
    return rules


def _build_thresholds(settings: Settings) -> Tuple[Threshold, ...]:
    if not settings.alert_thresholds:
        raise ConfigurationError("threshold table is empty", field="alert_thresholds")

    thresholds = []
    for index, item in enumerate(settings.alert_thresholds):
        where = f"alert_thresholds[{index}]"
        if not isinstance(item, dict):
            raise ConfigurationError("threshold must be an object", field=where)
        component = str(item.get("component", "")).strip()
        if not component:
            raise ConfigurationError("component is required", field=where)
        try:
            operator = Operator(item.get("operator"))
        except ValueError:
            raise ConfigurationError(
                f"unknown operator {item.get('operator')!r}", field=where
            ) from None
        try:
            severity = Severity(item.get("severity"))
        except ValueError:
            raise ConfigurationError(
                f"unknown severity {item.get('severity')!r}", field=where
            ) from None
        try:
            limit = float(item["limit"])
        except (KeyError, TypeError, ValueError):
            raise ConfigurationError("limit must be a number", field=where) from None
        thresholds.append(
            Threshold(
                component=component,
                operator=operator,
                limit=limit,
                severity=severity,
                alert_type=str(item.get("type") or "performance"),
            )
        )
    return tuple(thresholds)


def _build_routing(settings: Settings) -> dict[Severity, Tuple[str, ...]]:
    routing: dict[Severity, Tuple[str, ...]] = {}
    for raw_severity, names in settings.alert_routing.items():
        try:
            severity = Severity(raw_severity)
        except ValueError:
            raise ConfigurationError(
                f"unknown severity {raw_severity!r}", field="alert_routing"
            ) from None
        names = _parse_name_list(names)
        unknown = [n for n in names if n not in KNOWN_CHANNELS]
        if unknown:
            raise ConfigurationError(
                f"unknown channels {unknown} for {severity.value}", field="alert_routing"
            )
        routing[severity] = tuple(dict.fromkeys(names))
    for severity in Severity:
        routing.setdefault(severity, ())
    return routing


def _build_channels(settings: Settings) -> dict[str, ChannelSettings]:
    return {
        "log": ChannelSettings("log", settings.alert_log_enabled, MappingProxyType({})),
        "slack": ChannelSettings(
            "slack",
            bool(settings.slack_webhook_url),
            MappingProxyType({"webhook_url": settings.slack_webhook_url}),
        ),
        "discord": ChannelSettings(
            "discord",
            bool(settings.discord_webhook_url),
            MappingProxyType({"webhook_url": settings.discord_webhook_url}),
        ),
        "webhook": ChannelSettings(
            "webhook",
            bool(settings.alert_webhook_url),
            MappingProxyType({"url": settings.alert_webhook_url}),
        ),
        "email": ChannelSettings(
            "email",
            settings.alert_email_enabled and bool(settings.alert_email_recipients),
            MappingProxyType({
                "recipients": tuple(settings.alert_email_recipients),
                "host": settings.smtp_host,
                "port": settings.smtp_port,
                "username": settings.smtp_username,
                "password": settings.smtp_password,
                "use_tls": settings.smtp_use_tls,
                "from_address": settings.smtp_from_address,
            }),
        ),
    }


def build_engine_config(settings: Settings) -> EngineConfig:
    """Validate settings and freeze them into an EngineConfig.

    Raises:
        ConfigurationError: If any rule, threshold, cool-down or route is invalid
    """
    rules = _build_rules(settings)
    thresholds = _build_thresholds(settings)

    cooldowns: dict[str, float] = {}
    for alert_type, seconds in settings.alert_cooldowns.items():
        try:
            value = float(seconds)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"cool-down for '{alert_type}' must be a number", field="alert_cooldowns"
            ) from None
        if value < 0:
            raise ConfigurationError(
                f"cool-down for '{alert_type}' must not be negative", field="alert_cooldowns"
            )
        cooldowns[alert_type] = value
    if settings.alert_default_cooldown < 0:
        raise ConfigurationError("must not be negative", field="alert_default_cooldown")

    for prefix, scope in settings.rate_limit_path_scopes.items():
        if scope not in rules:
            raise ConfigurationError(
                f"path '{prefix}' maps to unknown scope '{scope}'", field="rate_limit_path_scopes"
            )
    # Longest prefix wins
    path_scopes = tuple(
        sorted(settings.rate_limit_path_scopes.items(), key=lambda item: len(item[0]), reverse=True)
    )

    return EngineConfig(
        rules=MappingProxyType(rules),
        path_scopes=path_scopes,
        eviction_grace=settings.rate_limit_eviction_grace,
        max_counter_entries=settings.rate_limit_max_entries,
        trusted_proxies=frozenset(settings.rate_limit_trusted_proxies),
        thresholds=thresholds,
        cooldowns=MappingProxyType(cooldowns),
        default_cooldown=settings.alert_default_cooldown,
        max_alerts_per_hour=settings.alert_max_per_hour,
        alert_on_unavailable=settings.alert_on_unavailable,
        routing=MappingProxyType(_build_routing(settings)),
        channels=MappingProxyType(_build_channels(settings)),
        notifications_enabled=settings.notifications_enabled,
        probe_timeout=settings.monitoring_probe_timeout,
        channel_timeout=settings.channel_timeout,
        channel_max_retries=settings.channel_max_retries,
        channel_retry_base_delay=settings.channel_retry_base_delay,
        monitoring_interval=settings.monitoring_interval_seconds,
        history_size=settings.alert_history_size,
        environment=settings.environment,
        disk_path=settings.monitoring_disk_path,
    )


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment, reporting problems as ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(str(e), field="settings") from e


class ConfigHolder:
    """Holds the active EngineConfig and swaps it atomically on reload.

    Readers always see either the old or the new config, never a mix:
    the new value is fully built and validated before the reference changes.
    """

    def __init__(self, config: EngineConfig):
        self._config = config
        self._lock = threading.Lock()

    @property
    def current(self) -> EngineConfig:
        return self._config

    def reload(self, settings: Optional[Settings] = None) -> EngineConfig:
        new_config = build_engine_config(settings or load_settings())
        with self._lock:
            self._config = new_config
        return new_config


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (useful for testing)."""
    global _settings
    _settings = None
