from __future__ import annotations

import threading
from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from marketfeed.config import Settings
from marketfeed.errors import RateLimitError
from marketfeed.service import MarketDataService

_INTERVAL_MINUTES = {"1m": 1, "5m": 5, "15m": 15, "30m": 30, "1h": 60}


class FakeClock:
    """Deterministic time source; ``sleep`` advances the clock instead of blocking."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self.now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeProvider:
    """In-memory provider recording every call.

    ``quote_failures`` and ``candle_failures[symbol]`` are consumed one
    exception per call; ``None`` in the list means that call succeeds.
    """

    def __init__(self) -> None:
        self.quote_calls: List[List[str]] = []
        self.candle_calls: List[tuple] = []
        self.prices: Dict[str, tuple] = {}
        self.quote_failures: List[Optional[Exception]] = []
        self.candle_failures: Dict[str, List[Optional[Exception]]] = {}
        self.candle_payloads: Dict[str, object] = {}
        self.candle_gate: Optional[threading.Event] = None
        self.candle_entered = threading.Event()
        self._lock = threading.Lock()

    def fetch_quotes(self, symbols):
        with self._lock:
            self.quote_calls.append(list(symbols))
            failure = self.quote_failures.pop(0) if self.quote_failures else None
        if failure is not None:
            raise failure
        return {sym: self.prices.get(sym, (100.0, 1.25)) for sym in symbols}

    def fetch_candles(self, symbol, start, end, interval):
        with self._lock:
            self.candle_calls.append((symbol, start, end, interval))
            failures = self.candle_failures.get(symbol)
            failure = failures.pop(0) if failures else None
        self.candle_entered.set()
        if self.candle_gate is not None:
            self.candle_gate.wait(5)
        if failure is not None:
            raise failure
        if symbol in self.candle_payloads:
            return self.candle_payloads[symbol]
        step = timedelta(minutes=_INTERVAL_MINUTES.get(interval, 15))
        count = int((end - start) / step)
        return {"meta": {"symbol": symbol}, "quotes": [{"close": 100.0 + i * 0.1} for i in range(count)]}

    def candle_calls_for(self, symbol: str) -> int:
        return sum(1 for call in self.candle_calls if call[0] == symbol)


def rate_limited() -> RateLimitError:
    return RateLimitError("Too Many Requests")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_service(clock, provider):
    created: List[MarketDataService] = []

    def _make(**overrides) -> MarketDataService:
        service = MarketDataService(provider, Settings(**overrides), clock=clock, sleep=clock.sleep)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()
