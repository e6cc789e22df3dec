"""Serial, paced, retrying refresh of per-symbol candle history.

Yahoo throttles bursts of chart requests far more aggressively than batched
quote lookups, so history is fetched one symbol at a time with a fixed gap
between symbols. Only rate-limit rejections are retried.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Iterable, List, Optional

import pandas as pd

from marketfeed.cache import HistoryCache
from marketfeed.errors import HistoryFetchFailure, MalformedPayloadError
from marketfeed.models import Candle, HistoryEntry, normalize_symbol
from marketfeed.provider import MarketDataProvider
from marketfeed.retry import RetryPolicy

logger = logging.getLogger(__name__)

_WRAPPED_FIELDS = ("quotes", "candles")
_CLOSE_FIELDS = ("close", "Close", "value")


def _finite(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _close_of(item: object) -> Optional[float]:
    if isinstance(item, dict):
        for key in _CLOSE_FIELDS:
            if key in item:
                return _finite(item[key])
        return None
    return _finite(item)


def normalize_candles(payload: object) -> List[Candle]:
    """Reduce any supported upstream shape to closing values, oldest first.

    Accepted shapes: a DataFrame with a ``Close`` column, a bare list of
    candle dicts (or numbers), or a dict wrapping such a list under
    ``quotes`` or ``candles``. Samples without a usable close are dropped.
    """
    if isinstance(payload, pd.DataFrame):
        if payload.empty:
            return []
        df = payload
        if isinstance(df.columns, pd.MultiIndex):
            df = df.copy()
            df.columns = df.columns.droplevel(1)
        if "Close" not in df.columns:
            raise MalformedPayloadError("candle frame has no Close column")
        series = df["Close"].dropna().sort_index()
        return [Candle(float(v)) for v in series.tolist() if math.isfinite(float(v))]

    if isinstance(payload, dict):
        for key in _WRAPPED_FIELDS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            raise MalformedPayloadError(f"candle payload has none of {_WRAPPED_FIELDS}")

    if not isinstance(payload, (list, tuple)):
        raise MalformedPayloadError(f"unexpected candle payload type {type(payload).__name__}")

    out = []
    for item in payload:
        close = _close_of(item)
        if close is not None:
            out.append(Candle(close))
    return out


class HistoryFetchScheduler:
    """Refill the history cache one symbol at a time.

    A process-wide lock keeps fetches strictly serial even when several
    callers drive the scheduler, and the pacing gap is measured from the end
    of the previous fetch so it holds across refresh cycles too.
    """

    def __init__(
        self,
        cache: HistoryCache,
        provider: MarketDataProvider,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        pacing: float = 1.5,
        window: timedelta = timedelta(hours=24),
        interval: str = "15m",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.pacing = pacing
        self.window = window
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._serial_lock = Lock()
        self._last_finished: Optional[float] = None

    def run(self, symbols: Iterable[str]) -> List[str]:
        """Fetch each symbol in turn; return the ones that were refreshed."""
        symbols = [s for s in dict.fromkeys(normalize_symbol(s) for s in symbols) if s]
        if not symbols:
            return []
        logger.info("updating history for %d symbol(s)", len(symbols))
        refreshed = [sym for sym in symbols if self.refresh_symbol(sym)]
        logger.info("history cycle finished: %d/%d refreshed", len(refreshed), len(symbols))
        return refreshed

    def refresh_symbol(self, symbol: str) -> bool:
        """Fetch one symbol under the serial lock. Failures are logged, never raised."""
        with self._serial_lock:
            self._wait_for_pacing()
            try:
                entry = self._fetch_with_retry(symbol)
            except HistoryFetchFailure as exc:
                kind = "rate limited" if exc.rate_limited else "failed"
                logger.warning("history %s for %s after %d attempt(s): %s", kind, symbol, exc.attempts, exc.cause)
                return False
            finally:
                self._last_finished = self._clock()
            self.cache.put(symbol, entry)
            logger.info("history updated: %s (%d candles)", symbol, len(entry.candles))
            return True

    def _wait_for_pacing(self) -> None:
        if self._last_finished is None or self.pacing <= 0:
            return
        remaining = self.pacing - (self._clock() - self._last_finished)
        if remaining > 0:
            self._sleep(remaining)

    def _fetch_with_retry(self, symbol: str) -> HistoryEntry:
        attempts = 0

        def _attempt() -> HistoryEntry:
            nonlocal attempts
            attempts += 1
            end = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
            payload = self.provider.fetch_candles(symbol, end - self.window, end, self.interval)
            candles = normalize_candles(payload)
            return HistoryEntry(symbol, tuple(candles), self._clock())

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            logger.warning("history rate limited for %s (attempt %d), retrying in %.1fs", symbol, attempt, delay)

        try:
            return self.retry_policy.run(_attempt, sleep=self._sleep, on_retry=_on_retry)
        except Exception as exc:
            raise HistoryFetchFailure(symbol, attempts, exc) from exc
