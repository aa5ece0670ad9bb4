"""Core utilities: clocks, logging and shared HTTP client."""

from opsguard.app.core.clock import Clock, ManualClock, SystemClock, system_clock
from opsguard.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "system_clock",
    "get_log_context",
    "get_logger",
    "setup_logging",
]
