"""Lock-guarded per-symbol caches for quotes and candle history.

Entries are only replaced by newer successful fetches. Nothing is evicted:
a stale entry stays readable until a refresh supersedes it.
"""

from __future__ import annotations

from threading import Lock
from typing import Dict, Generic, Iterable, List, Optional, TypeVar, Union

from marketfeed.models import HistoryEntry, QuoteEntry, normalize_symbol

EntryT = TypeVar("EntryT", QuoteEntry, HistoryEntry)


def is_fresh(entry: Union[QuoteEntry, HistoryEntry], ttl: float, now: float) -> bool:
    return now - entry.fetched_at <= ttl


class SymbolCache(Generic[EntryT]):
    def __init__(self, ttl: float) -> None:
        self.ttl = ttl
        self._lock = Lock()
        self._entries: Dict[str, EntryT] = {}

    def get(self, symbol: str) -> Optional[EntryT]:
        key = normalize_symbol(symbol)
        with self._lock:
            return self._entries.get(key)

    def put(self, symbol: str, entry: EntryT) -> bool:
        """Store ``entry`` unless it is older than what is cached.

        Returns False when the write was rejected to keep ``fetched_at``
        monotonic for the symbol.
        """
        key = normalize_symbol(symbol)
        if not key:
            return False
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current.fetched_at > entry.fetched_at:
                return False
            self._entries[key] = entry
            return True

    def is_fresh(self, entry: EntryT, now: float) -> bool:
        return is_fresh(entry, self.ttl, now)

    def stale(self, symbols: Iterable[str], now: float) -> List[str]:
        """Normalized symbols that are absent or past the TTL, first-seen order."""
        out: List[str] = []
        seen = set()
        with self._lock:
            for symbol in symbols:
                key = normalize_symbol(symbol)
                if not key or key in seen:
                    continue
                seen.add(key)
                entry = self._entries.get(key)
                if entry is None or not is_fresh(entry, self.ttl, now):
                    out.append(key)
        return out

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class QuoteCache(SymbolCache[QuoteEntry]):
    pass


class HistoryCache(SymbolCache[HistoryEntry]):
    pass
