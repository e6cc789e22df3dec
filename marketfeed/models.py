from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

_SYMBOL_CHARS = "=.-^/"


def normalize_symbol(symbol: object) -> str:
    if symbol is None:
        return ""
    return "".join(ch for ch in str(symbol).upper().strip() if ch.isalnum() or ch in _SYMBOL_CHARS)


@dataclass(frozen=True)
class Candle:
    value: float

    def to_dict(self) -> Dict[str, float]:
        return {"value": self.value}


@dataclass(frozen=True)
class QuoteEntry:
    symbol: str
    price: float
    change_percent: float
    fetched_at: float


@dataclass(frozen=True)
class HistoryEntry:
    symbol: str
    candles: Tuple[Candle, ...]
    fetched_at: float
