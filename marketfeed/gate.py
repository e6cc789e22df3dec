from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Dict, Optional, Tuple


class RequestGate:
    """Process-wide cap on how often a request may start upstream work.

    A request arriving within ``min_interval`` seconds of the last accepted
    one is degraded: it is answered from cache without touching the provider.
    """

    def __init__(self, min_interval: float = 2.0, clock: Callable[[], float] = time.time) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._lock = Lock()
        self._last_accepted_at: Optional[float] = None

    def admit(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._last_accepted_at is not None and now - self._last_accepted_at < self.min_interval:
                return False
            self._last_accepted_at = now
            return True

    @property
    def last_accepted_at(self) -> Optional[float]:
        with self._lock:
            return self._last_accepted_at


class ClientRateLimiter:
    """Fixed one-minute window request counter per client IP."""

    _MAX_KEYS = 8000

    def __init__(self, rpm: int, clock: Callable[[], float] = time.time) -> None:
        self.rpm = rpm
        self._clock = clock
        self._lock = Lock()
        self._state: Dict[str, Dict[str, int]] = {}

    def check(self, ip: str) -> Tuple[bool, int]:
        """Count one request for ``ip``; return (allowed, remaining)."""
        if self.rpm <= 0:
            return True, -1
        window = int(self._clock() // 60)
        with self._lock:
            entry = self._state.get(ip)
            if not entry or entry.get("window", -1) != window:
                entry = {"window": window, "count": 0}
                self._state[ip] = entry
            count = int(entry.get("count", 0))
            if count >= self.rpm:
                return False, 0
            count += 1
            entry["count"] = count
            if len(self._state) > self._MAX_KEYS:
                for key in list(self._state.keys()):
                    if self._state[key].get("window") != window:
                        self._state.pop(key, None)
            return True, max(0, self.rpm - count)
