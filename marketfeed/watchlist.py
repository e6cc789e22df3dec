from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Iterable, List

from marketfeed.models import normalize_symbol

logger = logging.getLogger(__name__)


def normalize_watchlist(items: Iterable[object]) -> List[str]:
    cleaned: List[str] = []
    for item in items or []:
        sym = normalize_symbol(item)
        if sym and sym not in cleaned:
            cleaned.append(sym)
    return cleaned


class WatchlistStore:
    """JSON file holding the tracked symbols; read and replace-all only."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def load(self) -> List[str]:
        with self._lock:
            if not self.path.exists():
                return []
            data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"watchlist file {self.path} does not hold a list")
        return normalize_watchlist(data)

    def save(self, symbols: Iterable[object]) -> List[str]:
        cleaned = normalize_watchlist(symbols)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(cleaned, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        logger.info("watchlist saved with %d symbol(s)", len(cleaned))
        return cleaned
