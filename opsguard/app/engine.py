"""Assembly of the rate limiting and monitoring components.

build_engine() is the only place components are wired together; the app
lifespan and the CLI both go through it.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import httpx

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.config import ConfigHolder, EngineConfig, Settings
from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.channels import build_channels
from opsguard.app.monitoring.dispatcher import NotificationDispatcher
from opsguard.app.monitoring.evaluator import ThresholdEvaluator
from opsguard.app.monitoring.history import AlertHistory
from opsguard.app.monitoring.models import AlertEvent, AlertRecord, Severity
from opsguard.app.monitoring.pipeline import MonitoringPipeline
from opsguard.app.monitoring.probes import (
    DiskUsageProbe,
    ErrorRateProbe,
    MemoryProbe,
    Probe,
    RedisLatencyProbe,
    SQLAlchemyLatencyProbe,
)
from opsguard.app.monitoring.retry import RetryPolicy
from opsguard.app.monitoring.sampler import MetricSampler
from opsguard.app.monitoring.scheduler import MonitoringScheduler
from opsguard.app.monitoring.throttle import AlertThrottle
from opsguard.app.ratelimit.limiter import RateLimiter
from opsguard.app.ratelimit.store import CounterStore, InMemoryCounterStore
from opsguard.app.ratelimit.window_counter import WindowCounter

logger = get_logger(__name__)

TEST_ALERT_TYPE = "test_alert_command"


@dataclass
class Engine:
    """Every long-lived component of a running opsguard instance."""
    config_holder: ConfigHolder
    counter: WindowCounter
    rate_limiter: RateLimiter
    sampler: MetricSampler
    evaluator: ThresholdEvaluator
    throttle: AlertThrottle
    dispatcher: NotificationDispatcher
    history: AlertHistory
    pipeline: MonitoringPipeline
    scheduler: MonitoringScheduler
    clock: Clock = system_clock

    @property
    def config(self) -> EngineConfig:
        return self.config_holder.current

    def reload(self, settings: Optional[Settings] = None) -> EngineConfig:
        """Rebuild the configuration and hand it to every component.

        Raises:
            ConfigurationError: If the new settings are invalid; the running
                configuration stays in place
        """
        config = self.config_holder.reload(settings)
        self.rate_limiter.update_config(config)
        self.evaluator.update_thresholds(config.thresholds)
        self.throttle.configure(config.cooldowns, config.default_cooldown, config.max_alerts_per_hour)
        self.dispatcher.update_routing(config.routing)
        logger.info("Configuration reloaded")
        return config

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.dispatcher.close()
        await self.counter.close()


def default_probes(
    config: EngineConfig,
    counter: WindowCounter,
    db_engine: Optional[Any] = None,
    redis_client: Optional[Any] = None,
) -> List[Probe]:
    """Memory, disk and error-rate probes, plus database/cache when clients are given."""
    probes: List[Probe] = [
        MemoryProbe(),
        DiskUsageProbe(config.disk_path),
        ErrorRateProbe(counter),
    ]
    if db_engine is not None:
        probes.append(SQLAlchemyLatencyProbe(db_engine))
    if redis_client is not None:
        probes.append(RedisLatencyProbe(redis_client))
    return probes


def build_engine(
    config: EngineConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[CounterStore] = None,
    probes: Optional[Sequence[Probe]] = None,
    clock: Clock = system_clock,
    db_engine: Optional[Any] = None,
    redis_client: Optional[Any] = None,
) -> Engine:
    """Build all components from one immutable config."""
    if store is None:
        store = InMemoryCounterStore(max_entries=config.max_counter_entries)
    counter = WindowCounter(store, clock=clock)
    if probes is None:
        probes = default_probes(config, counter, db_engine=db_engine, redis_client=redis_client)

    sampler = MetricSampler(probes, timeout=config.probe_timeout, clock=clock)
    evaluator = ThresholdEvaluator(
        config.thresholds,
        alert_on_unavailable=config.alert_on_unavailable,
        clock=clock,
    )
    throttle = AlertThrottle(
        config.cooldowns,
        default_cooldown=config.default_cooldown,
        max_per_hour=config.max_alerts_per_hour,
        clock=clock,
    )
    channels = build_channels(config, http_client) if config.notifications_enabled else {}
    dispatcher = NotificationDispatcher(
        channels,
        config.routing,
        timeout=config.channel_timeout,
        retry_policy=RetryPolicy(
            max_retries=config.channel_max_retries,
            base_delay=config.channel_retry_base_delay,
        ),
    )
    history = AlertHistory(config.history_size)
    pipeline = MonitoringPipeline(
        sampler,
        evaluator,
        throttle,
        dispatcher,
        history=history,
        counter=counter,
        eviction_grace=config.eviction_grace,
    )
    return Engine(
        config_holder=ConfigHolder(config),
        counter=counter,
        rate_limiter=RateLimiter(config, counter),
        sampler=sampler,
        evaluator=evaluator,
        throttle=throttle,
        dispatcher=dispatcher,
        history=history,
        pipeline=pipeline,
        scheduler=MonitoringScheduler(pipeline, interval=config.monitoring_interval, clock=clock),
        clock=clock,
    )


async def send_test_alert(
    engine: Engine,
    severity: Severity = Severity.WARNING,
    alert_type: str = TEST_ALERT_TYPE,
    message: Optional[str] = None,
) -> AlertRecord:
    """Push one synthetic alert through the throttle and dispatcher."""
    event = AlertEvent.create(
        type=alert_type,
        component="opsguard",
        severity=severity,
        message=message or f"Test alert of type: {severity.value}",
        triggered_at=engine.clock.now(),
        data={"test_data": "This is test data", "environment": engine.config.environment},
    )
    record = await engine.pipeline.process_alert(event)
    logger.info(
        f"Test alert {record.state.value}",
        extra=get_log_context(alert_id=event.id, severity=severity.value),
    )
    return record
