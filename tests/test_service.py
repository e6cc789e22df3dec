from __future__ import annotations

import threading
from types import SimpleNamespace

import pandas as pd
import pytest

import marketfeed.provider as provider_module
from marketfeed.config import Settings
from marketfeed.errors import UpstreamError
from marketfeed.models import Candle, HistoryEntry, QuoteEntry
from marketfeed.provider import YahooMarketData
from marketfeed.service import MarketDataService, parse_symbol_request


def test_parse_symbol_request_treats_malformed_bodies_as_empty() -> None:
    assert parse_symbol_request({"symbols": []}) is None
    assert parse_symbol_request({"symbols": "AAPL"}) is None
    assert parse_symbol_request({}) is None
    assert parse_symbol_request(["AAPL"]) is None
    assert parse_symbol_request({"symbols": ["AAPL", 7, None, {"s": "X"}]}) == ["AAPL"]
    assert parse_symbol_request({"symbols": [None, 7]}) is None


def test_response_covers_exactly_the_requested_symbols(make_service, provider) -> None:
    service = make_service(history_mode="inline")
    provider.quote_failures = [UpstreamError("down")]
    provider.candle_failures = {"AAPL": [UpstreamError("down")], "MSFT": [UpstreamError("down")]}
    symbols = ["AAPL", "msft", "???"]

    result = service.get_market_data(symbols)

    assert set(result.data) == set(symbols)
    assert result.data["AAPL"] == {"price": 0, "changePercent": 0, "history": []}
    assert result.data["???"] == {"price": 0, "changePercent": 0, "history": []}


def test_fresh_quote_is_not_refetched(make_service, provider, clock) -> None:
    service = make_service(history_mode="inline")
    service.quotes.put("AAPL", QuoteEntry("AAPL", 190.0, 0.4, clock.now - 10))

    result = service.get_market_data(["AAPL", "MSFT"])

    assert provider.quote_calls == [["MSFT"]]
    assert result.data["AAPL"]["price"] == 190.0


def test_fresh_history_is_not_refetched(make_service, provider, clock) -> None:
    service = make_service(history_mode="inline")
    service.history.put("AAPL", HistoryEntry("AAPL", (Candle(5.0),), clock.now - 600))

    result = service.get_market_data(["AAPL", "MSFT"])

    assert [call[0] for call in provider.candle_calls] == ["MSFT"]
    assert result.data["AAPL"]["history"] == [{"value": 5.0}]


def test_stale_entries_are_refreshed(make_service, provider, clock) -> None:
    service = make_service(history_mode="inline")
    service.quotes.put("AAPL", QuoteEntry("AAPL", 190.0, 0.4, clock.now - 31))
    service.history.put("AAPL", HistoryEntry("AAPL", (Candle(5.0),), clock.now - 901))

    result = service.get_market_data(["AAPL"])

    assert provider.quote_calls == [["AAPL"]]
    assert provider.candle_calls_for("AAPL") == 1
    assert result.data["AAPL"]["price"] == 100.0
    assert len(result.data["AAPL"]["history"]) == 96


def test_degraded_request_serves_cache_without_upstream_calls(make_service, provider, clock) -> None:
    service = make_service(history_mode="inline")
    service.get_market_data(["AAPL"])
    quote_calls = len(provider.quote_calls)
    candle_calls = len(provider.candle_calls)

    clock.advance(0.5)
    result = service.get_market_data(["AAPL", "NEW"])

    assert result.degraded
    assert len(provider.quote_calls) == quote_calls
    assert len(provider.candle_calls) == candle_calls
    assert result.data["AAPL"]["price"] == 100.0
    assert result.data["NEW"] == {"price": 0, "changePercent": 0, "history": []}


def test_background_mode_returns_before_history_and_fills_later(make_service, provider, clock) -> None:
    service = make_service()
    provider.candle_gate = threading.Event()

    first = service.get_market_data(["AAPL"])

    assert first.data["AAPL"]["price"] == 100.0
    assert first.data["AAPL"]["history"] == []
    assert first.pending == ["AAPL"]

    provider.candle_gate.set()
    service.worker.join()
    clock.advance(2.0)
    second = service.get_market_data(["AAPL"])

    assert second.pending == []
    assert len(second.data["AAPL"]["history"]) == 96
    assert provider.candle_calls_for("AAPL") == 1


def test_concurrent_cold_requests_share_one_background_fetch(make_service, provider) -> None:
    service = make_service(min_request_interval=0)
    provider.candle_gate = threading.Event()

    service.get_market_data(["AAPL"])
    assert provider.candle_entered.wait(5)
    overlapping = service.get_market_data(["AAPL"])
    provider.candle_gate.set()
    service.worker.join()

    assert overlapping.pending == ["AAPL"]
    assert provider.candle_calls_for("AAPL") == 1


def test_concurrent_cold_requests_share_one_inline_fetch(make_service, provider) -> None:
    service = make_service(history_mode="inline", min_request_interval=0)
    provider.candle_gate = threading.Event()
    results = {}

    first = threading.Thread(target=lambda: results.setdefault("first", service.get_market_data(["AAPL"])))
    first.start()
    assert provider.candle_entered.wait(5)
    second = threading.Thread(target=lambda: results.setdefault("second", service.get_market_data(["AAPL"])))
    second.start()
    provider.candle_gate.set()
    first.join(5)
    second.join(5)

    assert provider.candle_calls_for("AAPL") == 1
    assert len(results["first"].data["AAPL"]["history"]) == 96
    assert len(results["second"].data["AAPL"]["history"]) == 96


def test_history_failure_does_not_affect_other_symbols(make_service, provider) -> None:
    service = make_service(history_mode="inline")
    provider.candle_failures["AAPL"] = [UpstreamError("boom")]

    result = service.get_market_data(["AAPL", "MSFT"])

    assert result.data["AAPL"]["history"] == []
    assert len(result.data["MSFT"]["history"]) == 96
    assert result.data["AAPL"]["price"] == 100.0


def test_stats_reports_cache_sizes(make_service) -> None:
    service = make_service(history_mode="inline")
    service.get_market_data(["AAPL", "MSFT"])

    stats = service.stats()

    assert stats["quote_entries"] == 2
    assert stats["history_entries"] == 2
    assert stats["history_pending"] == []


def test_yahoo_adapter_end_to_end(monkeypatch, clock) -> None:
    columns = pd.MultiIndex.from_product([["Close"], ["AAPL", "MSFT"]], names=["Price", "Ticker"])
    daily = pd.DataFrame(
        [[200.0, 400.0], [210.0, 396.0]],
        columns=columns,
        index=pd.to_datetime(["2025-01-02", "2025-01-03"]),
    )
    intraday = pd.DataFrame(
        {"Close": [1.0, 2.0, float("nan"), 3.0]},
        index=pd.date_range("2025-01-03 14:30", periods=4, freq="15min", tz="UTC"),
    )
    downloads = []

    class FakeTicker:
        def __init__(self, symbol: str) -> None:
            self.symbol = symbol

        def history(self, **kwargs):
            assert kwargs["interval"] == "15m"
            return intraday

    def fake_download(tickers, **kwargs):
        downloads.append(list(tickers))
        return daily

    monkeypatch.setattr(provider_module, "yf", SimpleNamespace(download=fake_download, Ticker=FakeTicker))
    service = MarketDataService(
        YahooMarketData(timeout=2),
        Settings(history_mode="inline"),
        clock=clock,
        sleep=clock.sleep,
    )
    try:
        result = service.get_market_data(["AAPL", "MSFT"])
    finally:
        service.shutdown()

    assert downloads == [["AAPL", "MSFT"]]
    assert result.data["AAPL"]["price"] == 210.0
    assert result.data["AAPL"]["changePercent"] == pytest.approx(5.0)
    assert result.data["MSFT"]["changePercent"] == pytest.approx(-1.0)
    assert result.data["AAPL"]["history"] == [{"value": 1.0}, {"value": 2.0}, {"value": 3.0}]
    assert result.pending == []
    assert not result.degraded
