"""Periodic monitoring loop.

This module runs MonitoringPipeline ticks on a fixed interval, either as a
background task owned by the application or as a bounded foreground run.
"""

import asyncio
from typing import Optional

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.models import AlertEvent, Severity
from opsguard.app.monitoring.pipeline import MonitoringPipeline, TickReport

logger = get_logger(__name__)

MONITORING_ERROR_TYPE = "system_error"
MONITORING_COMPONENT = "monitoring"


class MonitoringScheduler:
    """Drives the monitoring pipeline on an interval.

    This class provides:
    - A bounded foreground run (duration and/or tick limit)
    - A background task with graceful shutdown
    - Isolation of tick failures: a failing tick raises a critical
      monitoring alert and the loop carries on

    Usage:
        scheduler = MonitoringScheduler(pipeline, interval=60.0)

        # Background
        await scheduler.start()
        ...
        await scheduler.stop()

        # Foreground, e.g. from the CLI
        await scheduler.run(duration=300)
    """

    def __init__(
        self,
        pipeline: MonitoringPipeline,
        interval: float = 60.0,
        clock: Clock = system_clock,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._pipeline = pipeline
        self._interval = interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.last_report: Optional[TickReport] = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(
        self,
        duration: Optional[float] = None,
        max_ticks: Optional[int] = None,
    ) -> int:
        """Run ticks until stopped, duration elapses or max_ticks is reached.

        Once duration has elapsed no new tick starts, and a tick still in
        flight at the deadline is cancelled.

        Returns:
            Number of ticks started
        """
        deadline = None if duration is None else self._clock.monotonic() + duration
        ticks = 0

        while not self._stop_event.is_set():
            if max_ticks is not None and ticks >= max_ticks:
                break
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                break

            ticks += 1
            await self._run_tick(timeout=remaining)

            if max_ticks is not None and ticks >= max_ticks:
                break
            wait = self._interval
            remaining = self._remaining(deadline)
            if remaining is not None:
                if remaining <= 0:
                    break
                wait = min(wait, remaining)
            await self._wait(wait)

        logger.info(f"Monitoring run finished after {ticks} tick(s)")
        return ticks

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - self._clock.monotonic()

    async def _run_tick(self, timeout: Optional[float] = None) -> Optional[TickReport]:
        try:
            report = await asyncio.wait_for(self._pipeline.run_tick(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Monitoring tick cancelled at run deadline")
            return None
        except Exception as e:
            logger.error(f"Error during monitoring tick: {e}", exc_info=True)
            await self._report_tick_failure(e)
            return None

        self.last_report = report
        return report

    async def _report_tick_failure(self, error: Exception) -> None:
        event = AlertEvent.create(
            type=MONITORING_ERROR_TYPE,
            component=MONITORING_COMPONENT,
            severity=Severity.CRITICAL,
            message=f"Monitoring tick failed: {type(error).__name__}: {error}",
            triggered_at=self._clock.now(),
            data={"alert": "monitoring_error"},
        )
        try:
            await self._pipeline.process_alert(event)
        except Exception as e:
            logger.error(
                f"Could not raise monitoring_error alert: {e}",
                extra=get_log_context(alert_id=event.id),
            )

    async def _wait(self, seconds: float) -> None:
        """Sleep on the clock, waking early when stop() is called."""
        if seconds <= 0:
            return
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        try:
            await asyncio.wait({stop_waiter, sleeper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (stop_waiter, sleeper):
                if not fut.done():
                    fut.cancel()
            await asyncio.gather(stop_waiter, sleeper, return_exceptions=True)

    async def start(self) -> None:
        """Start the background monitoring task."""
        if self.running:
            logger.debug("Monitoring scheduler already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="opsguard-monitoring")
        logger.info(f"Started monitoring scheduler (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Stop the background task, cancelling it if it does not finish in time."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Monitoring task did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped monitoring scheduler")
