"""Bounded in-memory record of recent alerts."""

import threading
from collections import deque
from typing import Deque, List, Optional

from opsguard.app.monitoring.models import AlertRecord


class AlertHistory:
    """Keeps the last max_size alert records, newest last."""

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._records: Deque[AlertRecord] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def add(self, record: AlertRecord) -> None:
        with self._lock:
            self._records.append(record)

    def recent(self, limit: Optional[int] = None) -> List[AlertRecord]:
        """Most recent records first."""
        with self._lock:
            records = list(reversed(self._records))
        if limit is not None:
            records = records[:max(0, limit)]
        return records

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
