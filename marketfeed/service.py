"""Request orchestration: gate, refresh stale entries, answer from cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from marketfeed.assembler import assemble_response
from marketfeed.cache import HistoryCache, QuoteCache
from marketfeed.config import Settings
from marketfeed.gate import RequestGate
from marketfeed.history import HistoryFetchScheduler
from marketfeed.inflight import InflightRegistry
from marketfeed.models import normalize_symbol
from marketfeed.provider import MarketDataProvider
from marketfeed.quotes import QuoteBatchFetcher
from marketfeed.retry import RetryPolicy
from marketfeed.worker import HistoryWorker

logger = logging.getLogger(__name__)


def parse_symbol_request(body: object) -> Optional[List[str]]:
    """Return the requested symbols, or None when there is nothing to serve."""
    if not isinstance(body, dict):
        return None
    symbols = body.get("symbols")
    if not isinstance(symbols, list):
        return None
    symbols = [s for s in symbols if isinstance(s, str)]
    return symbols or None


@dataclass
class MarketDataResult:
    data: Dict[str, Dict[str, object]]
    degraded: bool = False
    pending: List[str] = field(default_factory=list)


class MarketDataService:
    def __init__(
        self,
        provider: MarketDataProvider,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or Settings()
        self._clock = clock
        s = self.settings
        self.quotes = QuoteCache(s.quote_ttl)
        self.history = HistoryCache(s.history_ttl)
        self.gate = RequestGate(s.min_request_interval, clock=clock)
        self.registry = InflightRegistry()
        self.quote_fetcher = QuoteBatchFetcher(
            self.quotes,
            provider,
            chunk_size=s.quote_chunk_size,
            chunk_pause=s.quote_chunk_pause,
            clock=clock,
            sleep=sleep,
        )
        self.history_scheduler = HistoryFetchScheduler(
            self.history,
            provider,
            retry_policy=RetryPolicy(max_attempts=s.history_max_attempts, backoff_base=s.history_backoff),
            pacing=s.history_pacing,
            window=timedelta(hours=s.history_window_hours),
            interval=s.history_interval,
            clock=clock,
            sleep=sleep,
        )
        self.worker = HistoryWorker(self.history_scheduler, self.registry)

    def get_market_data(self, symbols: List[str]) -> MarketDataResult:
        if not self.gate.admit():
            logger.debug("request degraded by gate; serving %d symbol(s) from cache", len(symbols))
            return MarketDataResult(
                data=assemble_response(symbols, self.quotes, self.history),
                degraded=True,
                pending=self._pending_for(symbols),
            )

        now = self._clock()
        stale_quotes = self.quotes.stale(symbols, now)
        stale_history = self.history.stale(symbols, now)

        if stale_quotes:
            self.quote_fetcher.refresh(stale_quotes)

        if stale_history:
            if self.settings.history_mode == "inline":
                self._refresh_history_inline(stale_history)
            else:
                queued = self.worker.submit(stale_history)
                if queued:
                    logger.info("queued history refresh for %s", ",".join(queued))

        return MarketDataResult(
            data=assemble_response(symbols, self.quotes, self.history),
            pending=self._pending_for(symbols),
        )

    def _refresh_history_inline(self, symbols: List[str]) -> None:
        owned = [sym for sym in symbols if self.registry.claim(sym)]
        shared = [sym for sym in symbols if sym not in owned]
        try:
            self.history_scheduler.run(owned)
        finally:
            for sym in owned:
                self.registry.release(sym)
        deadline = self._clock() + self.settings.inline_wait_timeout
        for sym in shared:
            remaining = max(0.0, deadline - self._clock())
            if not self.registry.wait(sym, remaining):
                logger.warning("gave up waiting on in-flight history fetch for %s", sym)

    def _pending_for(self, symbols: List[str]) -> List[str]:
        wanted = {normalize_symbol(s) for s in symbols}
        return [sym for sym in self.registry.pending() if sym in wanted]

    def stats(self) -> Dict[str, object]:
        return {
            "history_mode": self.settings.history_mode,
            "quote_entries": len(self.quotes),
            "history_entries": len(self.history),
            "history_pending": self.registry.pending(),
            "worker_running": self.worker.running,
        }

    def shutdown(self) -> None:
        self.worker.stop()
