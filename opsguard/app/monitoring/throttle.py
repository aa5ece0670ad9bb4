"""Alert de-duplication and volume control."""

import threading
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional

from opsguard.app.core.clock import Clock, system_clock
from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.monitoring.models import AlertEvent, ThrottleDecision, ThrottleEntry

logger = get_logger(__name__)

HOUR_SECONDS = 3600.0


class AlertThrottle:
    """Lets an alert through at most once per cool-down per dedupe key.

    Cool-downs are looked up by alert type, falling back to default_cooldown.
    max_per_hour additionally caps admitted alerts across all keys over a
    rolling hour (0 disables the cap). Entries idle for more than ten
    cool-downs are evicted on the next admit() call.

    Usage:
        throttle = AlertThrottle({"performance": 900}, default_cooldown=1800)
        if throttle.admit(event) is ThrottleDecision.ADMITTED:
            await dispatcher.dispatch(event)
    """

    def __init__(
        self,
        cooldowns: Optional[Mapping[str, float]] = None,
        default_cooldown: float = 1800.0,
        max_per_hour: int = 0,
        clock: Clock = system_clock,
    ):
        self._cooldowns = dict(cooldowns or {})
        self._default_cooldown = default_cooldown
        self._max_per_hour = max_per_hour
        self._clock = clock
        self._entries: Dict[str, ThrottleEntry] = {}
        self._admitted_at: Deque[float] = deque()
        self._lock = threading.Lock()

    def cooldown_for(self, alert_type: str) -> float:
        return self._cooldowns.get(alert_type, self._default_cooldown)

    def configure(
        self,
        cooldowns: Mapping[str, float],
        default_cooldown: float,
        max_per_hour: int,
    ) -> None:
        """Apply new limits; existing entries keep their last_sent_at."""
        with self._lock:
            self._cooldowns = dict(cooldowns)
            self._default_cooldown = default_cooldown
            self._max_per_hour = max_per_hour

    def admit(self, event: AlertEvent) -> ThrottleDecision:
        now = self._clock.now()
        cool_down = self.cooldown_for(event.type)

        with self._lock:
            self._evict_stale(now)

            entry = self._entries.get(event.dedupe_key)
            if entry is not None and now - entry.last_sent_at < cool_down:
                logger.info(
                    f"Alert {event.dedupe_key} suppressed: cool-down "
                    f"{cool_down:g}s, last sent {now - entry.last_sent_at:.0f}s ago",
                    extra=get_log_context(alert_id=event.id, component=event.component),
                )
                return ThrottleDecision.SUPPRESSED

            if self._max_per_hour > 0:
                while self._admitted_at and now - self._admitted_at[0] >= HOUR_SECONDS:
                    self._admitted_at.popleft()
                if len(self._admitted_at) >= self._max_per_hour:
                    logger.warning(
                        f"Alert {event.dedupe_key} suppressed: hourly limit of "
                        f"{self._max_per_hour} alerts reached",
                        extra=get_log_context(alert_id=event.id, component=event.component),
                    )
                    return ThrottleDecision.SUPPRESSED
                self._admitted_at.append(now)

            self._entries[event.dedupe_key] = ThrottleEntry(
                dedupe_key=event.dedupe_key,
                last_sent_at=now,
                cool_down=cool_down,
            )
            return ThrottleDecision.ADMITTED

    def _evict_stale(self, now: float) -> None:
        stale = [key for key, entry in self._entries.items() if entry.is_stale(now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} stale throttle entries")

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> List[Dict[str, Any]]:
        """Current throttle entries, for operational visibility."""
        now = self._clock.now()
        with self._lock:
            return [
                {
                    "dedupe_key": entry.dedupe_key,
                    "last_sent_at": entry.last_sent_at,
                    "cool_down": entry.cool_down,
                    "remaining": max(0.0, entry.last_sent_at + entry.cool_down - now),
                }
                for entry in self._entries.values()
            ]
