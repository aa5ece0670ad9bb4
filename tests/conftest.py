"""Shared test fixtures."""

import asyncio
import logging
from typing import Any, Callable, Optional

import pytest

from opsguard.app.core.clock import ManualClock
from opsguard.app.core.config import EngineConfig, Settings, build_engine_config, load_settings, reset_settings
from opsguard.app.monitoring.models import AlertEvent, MetricSample, SampleStatus, Severity
from opsguard.app.monitoring.probes import Probe, ProbeReading


class StaticProbe(Probe):
    """Probe returning a fixed value, optionally after a delay or with an error."""

    def __init__(
        self,
        component: str,
        value: Optional[float] = 0.0,
        unit: str = "",
        delay: float = 0.0,
        error: Optional[Exception] = None,
        ok: bool = True,
    ):
        self.component = component
        self.value = value
        self.unit = unit
        self.delay = delay
        self.error = error
        self.ok = ok
        self.calls = 0

    async def probe(self) -> ProbeReading:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProbeReading(value=self.value, ok=self.ok)


@pytest.fixture(autouse=True)
def reset_cached_settings():
    """Reset the settings singleton before and after each test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo setup_logging() so later tests see records through caplog."""
    yield
    for name in ("", "opsguard", "uvicorn"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            if handler.name in ("console", "error_console"):
                logger.removeHandler(handler)
    logging.getLogger("opsguard").propagate = True


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Settings from defaults plus overrides, ignoring any .env file."""
    def _make(**overrides: Any) -> Settings:
        overrides.setdefault("_env_file", None)
        return load_settings(**overrides)
    return _make


@pytest.fixture
def make_config(make_settings) -> Callable[..., EngineConfig]:
    def _make(**overrides: Any) -> EngineConfig:
        return build_engine_config(make_settings(**overrides))
    return _make


@pytest.fixture
def engine_config(make_config) -> EngineConfig:
    return make_config()


@pytest.fixture
def make_probe() -> Callable[..., StaticProbe]:
    return StaticProbe


@pytest.fixture
def make_sample() -> Callable[..., MetricSample]:
    def _make(
        component: str,
        value: Optional[float],
        unit: str = "",
        status: SampleStatus = SampleStatus.OK,
    ) -> MetricSample:
        return MetricSample(
            component=component,
            value=value,
            unit=unit,
            captured_at=1_700_000_000.0,
            status=status,
        )
    return _make


@pytest.fixture
def make_alert() -> Callable[..., AlertEvent]:
    def _make(
        component: str = "memory",
        severity: Severity = Severity.WARNING,
        type: str = "performance",
        triggered_at: float = 1_700_000_000.0,
    ) -> AlertEvent:
        return AlertEvent.create(
            type=type,
            component=component,
            severity=severity,
            message=f"{component} test alert",
            triggered_at=triggered_at,
        )
    return _make
