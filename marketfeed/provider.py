"""Upstream market data access through yfinance.

Every call runs on a small worker pool and is abandoned after a wall-clock
deadline, so a hung socket can stall neither the quote batches nor the
history scheduler.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, Dict, List, Protocol, Tuple, TypeVar

import pandas as pd
import yfinance as yf

from marketfeed.errors import RateLimitError, UpstreamError, UpstreamTimeoutError, is_rate_limit_error

T = TypeVar("T")

_OHLC_FIELDS = {"Open", "High", "Low", "Close", "Adj Close", "Volume"}
_UPSTREAM_POOL = ThreadPoolExecutor(max_workers=4, thread_name_prefix="upstream")

# symbol -> (price, change_percent)
QuoteMap = Dict[str, Tuple[float, float]]


class MarketDataProvider(Protocol):
    def fetch_quotes(self, symbols: List[str]) -> QuoteMap:
        ...

    def fetch_candles(self, symbol: str, start: datetime, end: datetime, interval: str) -> object:
        ...


def call_with_deadline(fn: Callable[[], T], deadline: float) -> T:
    future = _UPSTREAM_POOL.submit(fn)
    try:
        return future.result(timeout=deadline)
    except FutureTimeoutError as exc:
        future.cancel()
        raise UpstreamTimeoutError(f"upstream call exceeded {deadline:.1f}s deadline") from exc


def _translate(exc: Exception) -> UpstreamError:
    if isinstance(exc, UpstreamError):
        return exc
    if is_rate_limit_error(exc):
        return RateLimitError(str(exc) or "rate limited")
    return UpstreamError(str(exc) or exc.__class__.__name__)


def _extract_symbol_df(df: pd.DataFrame, symbol: str) -> pd.DataFrame:
    if not isinstance(df.columns, pd.MultiIndex):
        return df
    level0 = df.columns.get_level_values(0)
    level1 = df.columns.get_level_values(1)
    if set(level1).issubset(_OHLC_FIELDS):
        return df[symbol] if symbol in level0 else pd.DataFrame()
    if set(level0).issubset(_OHLC_FIELDS):
        return df.xs(symbol, level=1, axis=1) if symbol in level1 else pd.DataFrame()
    return pd.DataFrame()


def quotes_from_frame(df: pd.DataFrame, symbols: List[str]) -> QuoteMap:
    """Latest close and day-over-day change percent per symbol."""
    quotes: QuoteMap = {}
    if df is None or df.empty:
        return quotes
    for sym in symbols:
        sym_df = _extract_symbol_df(df, sym)
        if sym_df.empty or "Close" not in sym_df.columns:
            continue
        closes = sym_df["Close"].dropna()
        if closes.empty:
            continue
        last = float(closes.iloc[-1])
        if not math.isfinite(last):
            continue
        pct = 0.0
        if len(closes) >= 2:
            prev = float(closes.iloc[-2])
            if prev:
                pct = (last - prev) / prev * 100
        quotes[sym] = (last, pct)
    return quotes


class YahooMarketData:
    """Batched quotes and ranged candles from Yahoo Finance."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def fetch_quotes(self, symbols: List[str]) -> QuoteMap:
        tickers = list(dict.fromkeys(symbols))
        if not tickers:
            return {}

        def _download() -> pd.DataFrame:
            return yf.download(
                tickers,
                period="5d",
                interval="1d",
                progress=False,
                auto_adjust=False,
                timeout=self.timeout,
                threads=False,
            )

        try:
            df = call_with_deadline(_download, self.timeout)
        except Exception as exc:
            raise _translate(exc) from exc
        if not isinstance(df, pd.DataFrame) or df.empty:
            raise UpstreamError(f"no quote rows for {','.join(tickers)}")
        return quotes_from_frame(df, tickers)

    def fetch_candles(self, symbol: str, start: datetime, end: datetime, interval: str) -> pd.DataFrame:
        def _history() -> pd.DataFrame:
            return yf.Ticker(symbol).history(
                start=start,
                end=end,
                interval=interval,
                auto_adjust=False,
                actions=False,
                timeout=self.timeout,
                raise_errors=True,
            )

        try:
            return call_with_deadline(_history, self.timeout)
        except Exception as exc:
            raise _translate(exc) from exc
