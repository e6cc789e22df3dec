from __future__ import annotations

from typing import Dict, Iterable

from marketfeed.cache import HistoryCache, QuoteCache


def assemble_response(symbols: Iterable[str], quotes: QuoteCache, history: HistoryCache) -> Dict[str, Dict[str, object]]:
    """Build the per-symbol payload straight from the caches.

    Keys are the symbols as the caller sent them. Symbols never fetched get a
    zero quote and an empty history; stale entries are served as they are.
    """
    out: Dict[str, Dict[str, object]] = {}
    for raw in symbols:
        quote = quotes.get(raw)
        hist = history.get(raw)
        out[raw] = {
            "price": quote.price if quote is not None else 0,
            "changePercent": quote.change_percent if quote is not None else 0,
            "history": [candle.to_dict() for candle in hist.candles] if hist is not None else [],
        }
    return out
