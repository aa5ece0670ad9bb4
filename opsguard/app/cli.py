"""Operator command line.

    opsguard monitor --interval 60 --duration 300
    opsguard test-alert --severity critical --message "Pager check"
    opsguard check-config
    opsguard serve --port 8000
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import uvicorn

from opsguard.app.core.config import KNOWN_CHANNELS, EngineConfig, build_engine_config, load_settings
from opsguard.app.core.http_client import init_http_client
from opsguard.app.core.logging import get_logger, setup_logging
from opsguard.app.engine import TEST_ALERT_TYPE, build_engine, send_test_alert
from opsguard.app.exceptions import ConfigurationError
from opsguard.app.monitoring.models import AlertState, Severity
from opsguard.app.ratelimit.store import create_counter_store

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="opsguard", description="Rate limiting and monitoring engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser("monitor", help="Run the monitoring loop in the foreground")
    monitor.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    monitor.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    monitor.add_argument("--max-ticks", type=int, default=None, help="Stop after this many ticks")

    test_alert = subparsers.add_parser("test-alert", help="Send a test alert through the configured channels")
    test_alert.add_argument(
        "--severity", choices=[s.value for s in Severity], default=Severity.WARNING.value
    )
    test_alert.add_argument("--type", dest="alert_type", default=TEST_ALERT_TYPE)
    test_alert.add_argument("--message", default=None, help="Custom alert message")
    test_alert.add_argument("--channel", choices=KNOWN_CHANNELS, default=None, help="Send to this channel only")

    serve = subparsers.add_parser("serve", help="Serve the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("check-config", help="Validate configuration and print a summary")
    return parser


def describe_config(config: EngineConfig) -> List[str]:
    lines = ["Rate limit scopes:"]
    for scope, rule in sorted(config.rules.items()):
        tiers = ", ".join(f"{t.max_count}/{t.label}" for t in rule.tiers)
        policy = "fail-closed" if rule.fail_closed else "fail-open"
        lines.append(f"  {scope}: {tiers} ({policy})")
    lines.append("Thresholds:")
    for t in config.thresholds:
        lines.append(f"  {t.component} {t.operator.value} {t.limit:g} -> {t.severity.value} ({t.alert_type})")
    lines.append("Routing:")
    for severity, names in config.routing.items():
        enabled = [n for n in names if config.channels[n].enabled]
        lines.append(f"  {severity.value}: {', '.join(enabled) or 'none'}")
    return lines


async def _monitor(args: argparse.Namespace) -> int:
    settings = load_settings()
    if args.interval is not None:
        settings = settings.model_copy(update={"monitoring_interval_seconds": args.interval})
    config = build_engine_config(settings)

    async with init_http_client(settings) as http_client:
        engine = build_engine(config, http_client=http_client, store=create_counter_store(settings))
        try:
            ticks = await engine.scheduler.run(duration=args.duration, max_ticks=args.max_ticks)
        finally:
            await engine.close()

    alerts = engine.history.recent()
    print(f"Ran {ticks} tick(s); {len(alerts)} alert(s) recorded")
    for record in alerts:
        print(f"  [{record.state.value}] {record.event.dedupe_key}: {record.event.message}")
    return 0


async def _test_alert(args: argparse.Namespace) -> int:
    settings = load_settings()
    config = build_engine_config(settings)
    severity = Severity(args.severity)

    async with init_http_client(settings) as http_client:
        engine = build_engine(config, http_client=http_client)
        if args.channel:
            engine.dispatcher.update_routing({severity: (args.channel,)})
        try:
            record = await send_test_alert(engine, severity, args.alert_type, args.message)
        finally:
            await engine.close()

    print(f"Test alert {record.event.id}: {record.state.value}")
    for result in record.results:
        detail = f" ({result.error})" if result.error else ""
        print(f"  {result.channel}: {result.status.value} after {result.attempts} attempt(s){detail}")
    return 0 if record.state in (AlertState.DELIVERED, AlertState.PARTIALLY_DELIVERED) else 1


def _check_config(args: argparse.Namespace) -> int:
    config = build_engine_config(load_settings())
    for line in describe_config(config):
        print(line)
    print("Configuration OK")
    return 0


def _serve(args: argparse.Namespace) -> int:
    uvicorn.run(
        "opsguard.app.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_config=None,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
        setup_logging(settings.log_level, settings.log_format)
        if args.command == "monitor":
            return asyncio.run(_monitor(args))
        if args.command == "test-alert":
            return asyncio.run(_test_alert(args))
        if args.command == "serve":
            return _serve(args)
        return _check_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
