"""Tests for engine assembly, reload and test alerts."""

import pytest

from opsguard.app.engine import TEST_ALERT_TYPE, build_engine, default_probes, send_test_alert
from opsguard.app.exceptions import ConfigurationError
from opsguard.app.monitoring.models import AlertState, DeliveryStatus, Severity
from opsguard.app.monitoring.probes import DiskUsageProbe, ErrorRateProbe, MemoryProbe
from opsguard.app.ratelimit.store import InMemoryCounterStore


@pytest.fixture
def engine(engine_config, make_probe, clock):
    return build_engine(
        engine_config,
        store=InMemoryCounterStore(),
        probes=[make_probe("memory", 100.0, "MB")],
        clock=clock,
    )


class TestBuildEngine:
    """Test component wiring."""

    def test_components_share_counter_and_config(self, engine, engine_config):
        assert engine.config is engine_config
        assert engine.rate_limiter.counter is engine.counter
        assert engine.pipeline.counter is engine.counter
        assert engine.pipeline.history is engine.history

    def test_injected_empty_store_is_used(self, engine_config, clock):
        store = InMemoryCounterStore(max_entries=7)

        engine = build_engine(engine_config, store=store, probes=[], clock=clock)

        assert engine.counter.store is store

    def test_default_store_honours_max_entries(self, make_config, clock):
        engine = build_engine(make_config(rate_limit_max_entries=7), probes=[], clock=clock)

        assert engine.counter.store.max_entries == 7

    def test_only_enabled_channels(self, engine):
        assert list(engine.dispatcher.channels) == ["log"]

    def test_notifications_disabled(self, make_config, clock):
        engine = build_engine(make_config(notifications_enabled=False), probes=[], clock=clock)
        assert engine.dispatcher.channels == {}

    def test_default_probes(self, engine_config, engine):
        probes = default_probes(engine_config, engine.counter)

        assert [type(p) for p in probes] == [MemoryProbe, DiskUsageProbe, ErrorRateProbe]

    def test_default_probes_with_clients(self, engine_config, engine):
        probes = default_probes(engine_config, engine.counter, db_engine=object(), redis_client=object())

        assert [p.component for p in probes][-2:] == ["database", "cache"]


class TestEngineHistory:
    """Alerts recorded by the pipeline are the ones the engine serves."""

    @pytest.mark.asyncio
    async def test_tick_alerts_visible_in_engine_history(self, engine_config, make_probe, clock):
        engine = build_engine(engine_config, probes=[make_probe("memory", 900.0, "MB")], clock=clock)

        report = await engine.pipeline.run_tick()
        await send_test_alert(engine)

        assert len(report.records) == 1
        assert len(engine.history) == 2
        assert [r.event.component for r in engine.history.recent()] == ["opsguard", "memory"]


class TestSendTestAlert:
    """Test the synthetic alert used to verify channel setup."""

    @pytest.mark.asyncio
    async def test_delivered_to_log(self, engine):
        record = await send_test_alert(engine, Severity.CRITICAL)

        assert record.state is AlertState.DELIVERED
        assert record.event.type == TEST_ALERT_TYPE
        assert record.event.component == "opsguard"
        assert record.event.message == "Test alert of type: critical"
        assert [(r.channel, r.status) for r in record.results] == [("log", DeliveryStatus.DELIVERED)]
        assert engine.history.recent() == [record]

    @pytest.mark.asyncio
    async def test_throttled_like_any_alert(self, engine):
        await send_test_alert(engine)

        record = await send_test_alert(engine, message="again")

        assert record.state is AlertState.SUPPRESSED

    @pytest.mark.asyncio
    async def test_custom_type_and_message(self, engine):
        record = await send_test_alert(engine, alert_type="pager_check", message="Pager check")

        assert record.event.type == "pager_check"
        assert record.event.message == "Pager check"


class TestReload:
    """Test configuration reload across components."""

    @pytest.mark.asyncio
    async def test_reload_updates_components(self, engine, make_settings):
        scopes = {"api": {"per_minute": 1}}
        new_config = engine.reload(make_settings(
            rate_limit_scopes=scopes,
            rate_limit_path_scopes={"/api": "api"},
            rate_limit_fail_closed_scopes=[],
            alert_cooldowns={TEST_ALERT_TYPE: 0},
        ))

        assert engine.config is new_config
        assert engine.rate_limiter.config is new_config
        assert engine.throttle.cooldown_for(TEST_ALERT_TYPE) == 0
        assert (await engine.rate_limiter.check("api", "ip:a")).allowed
        assert (await engine.rate_limiter.check("api", "ip:a")).denied

    def test_invalid_reload_keeps_running_config(self, engine, engine_config, make_settings):
        with pytest.raises(ConfigurationError):
            engine.reload(make_settings(alert_thresholds=[]))

        assert engine.config is engine_config
        assert engine.rate_limiter.config is engine_config

    @pytest.mark.asyncio
    async def test_close(self, engine):
        await engine.close()
        assert not engine.scheduler.running
