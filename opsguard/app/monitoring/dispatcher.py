"""Concurrent multi-channel alert delivery."""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.exceptions import ChannelDeliveryError
from opsguard.app.monitoring.channels.base import NotificationChannel
from opsguard.app.monitoring.models import (
    AlertEvent,
    AlertState,
    ChannelResult,
    DeliveryStatus,
    DispatchReport,
    Severity,
)
from opsguard.app.monitoring.retry import RetryPolicy, call_with_retry

logger = get_logger(__name__)


class NotificationDispatcher:
    """Fans an alert out to the channels routed for its severity.

    Each channel runs in its own task with its own per-attempt timeout and
    retry budget, so one failing or hanging channel never delays or fails
    the others. dispatch() always returns a report once every task has
    finished; worst case per channel is (max_retries + 1) timeouts plus
    backoff.

    Usage:
        dispatcher = NotificationDispatcher(
            channels={"log": LogChannel(), "slack": slack},
            routing={Severity.WARNING: ("log",), Severity.CRITICAL: ("log", "slack")},
        )
        report = await dispatcher.dispatch(event)
    """

    def __init__(
        self,
        channels: Mapping[str, NotificationChannel],
        routing: Mapping[Severity, Sequence[str]],
        timeout: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._channels: Dict[str, NotificationChannel] = dict(channels)
        self._routing = {severity: tuple(names) for severity, names in routing.items()}
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def channels(self) -> Dict[str, NotificationChannel]:
        return dict(self._channels)

    def update_routing(self, routing: Mapping[Severity, Sequence[str]]) -> None:
        self._routing = {severity: tuple(names) for severity, names in routing.items()}

    def channels_for(self, severity: Severity) -> List[str]:
        """Routed channel names that are also enabled."""
        return [name for name in self._routing.get(severity, ()) if name in self._channels]

    async def dispatch(self, event: AlertEvent) -> DispatchReport:
        names = self.channels_for(event.severity)
        if not names:
            logger.warning(
                f"No enabled channel routed for {event.severity.value} alert {event.dedupe_key}",
                extra=get_log_context(alert_id=event.id, severity=event.severity.value),
            )
            return DispatchReport(alert_id=event.id, state=AlertState.FAILED, results=())

        tasks = [
            asyncio.create_task(
                self._deliver(name, self._channels[name], event),
                name=f"alert-{event.id[:8]}-{name}",
            )
            for name in names
        ]
        try:
            results: Tuple[ChannelResult, ...] = tuple(await asyncio.gather(*tasks))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            pending = [name for name, task in zip(names, tasks) if not _finished_ok(task)]
            logger.warning(
                f"Dispatch of alert {event.id} cancelled; abandoned sends: {', '.join(pending) or 'none'}",
                extra=get_log_context(alert_id=event.id),
            )
            raise

        delivered = sum(1 for r in results if r.delivered)
        if delivered == len(results):
            state = AlertState.DELIVERED
        elif delivered:
            state = AlertState.PARTIALLY_DELIVERED
        else:
            state = AlertState.FAILED

        log = logger.info if state is AlertState.DELIVERED else logger.warning
        log(
            f"Alert {event.dedupe_key} {state.value}: {delivered}/{len(results)} channels",
            extra=get_log_context(alert_id=event.id, severity=event.severity.value),
        )
        return DispatchReport(alert_id=event.id, state=state, results=results)

    async def _deliver(
        self, name: str, channel: NotificationChannel, event: AlertEvent
    ) -> ChannelResult:
        attempts = 0
        start = time.perf_counter()

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            try:
                await asyncio.wait_for(channel.send(event), timeout=self._timeout)
            except asyncio.TimeoutError:
                raise ChannelDeliveryError(name, f"timed out after {self._timeout:g}s") from None

        try:
            await call_with_retry(attempt, self._retry_policy, name=name, sleep=self._sleep)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            reason = e.reason if isinstance(e, ChannelDeliveryError) else f"{type(e).__name__}: {e}"
            logger.error(
                f"Channel '{name}' failed for alert {event.dedupe_key} after {attempts} attempt(s): {reason}",
                extra=get_log_context(
                    alert_id=event.id, channel=name, duration_ms=round(duration_ms, 2)
                ),
            )
            return ChannelResult(
                channel=name,
                status=DeliveryStatus.FAILED,
                attempts=attempts,
                duration_ms=duration_ms,
                error=reason,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Channel '{name}' delivered alert {event.dedupe_key}",
            extra=get_log_context(alert_id=event.id, channel=name, duration_ms=round(duration_ms, 2)),
        )
        return ChannelResult(
            channel=name,
            status=DeliveryStatus.DELIVERED,
            attempts=attempts,
            duration_ms=duration_ms,
        )

    async def close(self) -> None:
        for channel in self._channels.values():
            await channel.close()


def _finished_ok(task: "asyncio.Task[ChannelResult]") -> bool:
    return task.done() and not task.cancelled() and task.exception() is None
