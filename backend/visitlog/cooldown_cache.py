"""
cooldown_cache.py
~~~~~~~~~~~~~~~~~
Per-key minimum-interval gate ("at most one every *window* seconds").

The ingestion and notification limits are two separate instances.
"""

from __future__ import annotations

import logging
import threading

LOG = logging.getLogger("cooldown_cache")


class CooldownCache:
    """
    Remember when each key was last allowed.

    Args:
        window_s:   Minimum spacing between two allowed calls for one key.
        horizon_s:  Entries older than this are dropped by :meth:`sweep`.
        name:       Label used in log lines.
    """

    def __init__(self, window_s: float, horizon_s: float, name: str = "cooldown") -> None:
        self.window_s = window_s
        self.horizon_s = horizon_s
        self.name = name
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, now: float) -> bool:
        """
        Return *True* and stamp *key* if its window has elapsed.

        A denied call leaves the stored timestamp untouched.
        """
        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self.window_s:
                return False
            self._last_seen[key] = now
            return True

    def sweep(self, now: float) -> int:
        """Drop entries last allowed more than ``horizon_s`` ago; return count."""
        with self._lock:
            stale = [k for k, ts in self._last_seen.items() if now - ts > self.horizon_s]
            for key in stale:
                del self._last_seen[key]
        if stale:
            LOG.debug("[%s] swept %d stale entries", self.name, len(stale))
        return len(stale)

    def last_seen(self, key: str) -> float | None:
        with self._lock:
            return self._last_seen.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_seen)
