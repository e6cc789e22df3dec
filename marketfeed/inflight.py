from __future__ import annotations

from threading import Event, Lock
from typing import Dict, List


class InflightRegistry:
    """Single-flight bookkeeping keyed by symbol.

    The caller that wins ``claim`` owns the fetch and must ``release`` it;
    everyone else can ``wait`` for that fetch to finish.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: Dict[str, Event] = {}

    def claim(self, symbol: str) -> bool:
        with self._lock:
            if symbol in self._events:
                return False
            self._events[symbol] = Event()
            return True

    def release(self, symbol: str) -> None:
        with self._lock:
            event = self._events.pop(symbol, None)
        if event is not None:
            event.set()

    def wait(self, symbol: str, timeout: float) -> bool:
        with self._lock:
            event = self._events.get(symbol)
        if event is None:
            return True
        return event.wait(timeout)

    def is_inflight(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._events

    def pending(self) -> List[str]:
        with self._lock:
            return sorted(self._events)
