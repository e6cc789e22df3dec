from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, List

from marketfeed.cache import QuoteCache
from marketfeed.errors import BatchQuoteFailure
from marketfeed.models import QuoteEntry, normalize_symbol
from marketfeed.provider import MarketDataProvider

logger = logging.getLogger(__name__)


def chunk_symbols(symbols: List[str], chunk_size: int) -> List[List[str]]:
    if chunk_size <= 0:
        chunk_size = 1
    return [symbols[i : i + chunk_size] for i in range(0, len(symbols), chunk_size)]


@dataclass
class QuoteRefreshResult:
    chunks: int = 0
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class QuoteBatchFetcher:
    """Refill the quote cache with one provider call per chunk of symbols."""

    def __init__(
        self,
        cache: QuoteCache,
        provider: MarketDataProvider,
        *,
        chunk_size: int = 10,
        chunk_pause: float = 0.5,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cache = cache
        self.provider = provider
        self.chunk_size = chunk_size
        self.chunk_pause = chunk_pause
        self._clock = clock
        self._sleep = sleep

    def refresh(self, symbols: List[str]) -> QuoteRefreshResult:
        result = QuoteRefreshResult()
        chunks = chunk_symbols(list(dict.fromkeys(symbols)), self.chunk_size)
        if not chunks:
            return result
        logger.info("batch fetching quotes for %d symbol(s) in %d chunk(s)", len(symbols), len(chunks))
        for index, chunk in enumerate(chunks):
            if index > 0 and self.chunk_pause > 0:
                self._sleep(self.chunk_pause)
            result.chunks += 1
            try:
                self._fetch_chunk(chunk, result)
            except BatchQuoteFailure as exc:
                logger.warning("%s", exc)
                result.failed.extend(chunk)
        return result

    def _fetch_chunk(self, chunk: List[str], result: QuoteRefreshResult) -> None:
        try:
            quotes = self.provider.fetch_quotes(chunk)
        except Exception as exc:
            raise BatchQuoteFailure(chunk, exc) from exc
        now = self._clock()
        wanted = set(chunk)
        for raw_symbol, (price, change_pct) in quotes.items():
            symbol = normalize_symbol(raw_symbol)
            if symbol not in wanted or price is None or not math.isfinite(price):
                continue
            pct = change_pct if change_pct is not None and math.isfinite(change_pct) else 0.0
            self.cache.put(symbol, QuoteEntry(symbol, float(price), float(pct), now))
            result.refreshed.append(symbol)
        missing = [sym for sym in chunk if sym not in result.refreshed]
        if missing:
            logger.debug("no quote returned for %s", ",".join(missing))
