"""
dedup_gate.py
~~~~~~~~~~~~~
Bounded idempotency filter for retried submissions.

Identifiers are kept in insertion order; once the gate holds more than
``capacity`` ids the oldest one is dropped (FIFO, not LRU). A replay that
arrives after its id was evicted is admitted again.
"""

from __future__ import annotations

import logging
import threading
from typing import Final

MAX_IDS: Final = 1000

LOG = logging.getLogger("dedup_gate")


class DedupGate:
    """Admit each request id once while it is resident."""

    def __init__(self, capacity: int = MAX_IDS) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._ids: dict[str, None] = {}  # dicts keep insertion order
        self._lock = threading.Lock()

    def admit(self, request_id: str) -> bool:
        """
        Return *True* the first time *request_id* is seen, *False* after.

        Check-and-insert happens under one lock, so two concurrent callers
        with the same id cannot both be admitted.
        """
        with self._lock:
            if request_id in self._ids:
                return False
            self._ids[request_id] = None
            if len(self._ids) > self.capacity:
                oldest = next(iter(self._ids))
                del self._ids[oldest]
                LOG.debug("[dedup] evicted %s", oldest)
            return True

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
