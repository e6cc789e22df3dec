"""Exceptions raised by the market data service."""

from __future__ import annotations

from typing import Optional

import requests
from yfinance.exceptions import YFRateLimitError


class MarketFeedError(Exception):
    """Base exception for all service errors."""


class ConfigError(MarketFeedError):
    """Raised when environment configuration is invalid."""


class UpstreamError(MarketFeedError):
    """Raised when the market data provider call fails."""


class RateLimitError(UpstreamError):
    """Raised when the provider rejects a call with a 429-class response."""


class UpstreamTimeoutError(UpstreamError):
    """Raised when a provider call does not finish before its deadline."""


class MalformedPayloadError(UpstreamError):
    """Raised when the provider returns a shape we cannot read."""


class BatchQuoteFailure(MarketFeedError):
    def __init__(self, symbols, cause: Optional[BaseException] = None) -> None:
        self.symbols = list(symbols)
        self.cause = cause
        super().__init__(f"quote batch failed for {','.join(self.symbols)}: {cause}")


class HistoryFetchFailure(MarketFeedError):
    def __init__(self, symbol: str, attempts: int, cause: BaseException) -> None:
        self.symbol = symbol
        self.attempts = attempts
        self.cause = cause
        self.rate_limited = is_rate_limit_error(cause)
        super().__init__(f"history fetch failed for {symbol} after {attempts} attempt(s): {cause}")


def _status_code(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if code is None:
        code = getattr(exc, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimitError, YFRateLimitError)):
        return True
    if isinstance(exc, requests.HTTPError) or _status_code(exc) is not None:
        return _status_code(exc) == 429
    text = str(exc).lower()
    return "too many requests" in text or "rate limit" in text
