"""Tests for the refresh job wiring."""

from unittest.mock import MagicMock

import pytest

from portfolio_tracker.config import Settings
from portfolio_tracker.exceptions import InsufficientHoldingsError, PersistenceError, QuoteFetchError
from portfolio_tracker.main import build_service, build_store, refresh_once, run
from portfolio_tracker.store import InMemoryDocumentStore


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(
        user_id="u1",
        store_backend="memory",
        run_once=True,
        default_usd_krw=1300.0,
        stock_list_kr_path=str(tmp_path / "kr.csv"),
        stock_list_us_path=str(tmp_path / "us.csv"),
    )


def _quotes(prices):
    quotes = MagicMock()

    def get_price(ticker):
        if ticker not in prices:
            raise QuoteFetchError("missing", ticker=ticker)
        return prices[ticker]

    quotes.get_price.side_effect = get_price
    return quotes


class TestWiring:
    def test_memory_store(self, settings):
        assert isinstance(build_store(settings), InMemoryDocumentStore)

    def test_refresh_falls_back_to_default_rate(self, settings):
        store = InMemoryDocumentStore()
        quotes = _quotes({"AAPL": 200.0})
        service = build_service(settings, store, quotes)
        service.deposit("USD", 1000)
        service.add_holding("AAPL", "Tech", "Growth")
        service.add_trade("AAPL", {"date": "2024-01-02", "price": "100", "quantity": "5"})
        # mutations value USD at the stored or default rate, without a live lookup
        quotes.get_price.assert_not_called()

        assert refresh_once(service) is True
        holding = store.get("users/u1/stocks/AAPL")
        assert holding["currentPrice"] == 200.0
        # no live KRW=X quote: default rate used
        assert holding["valueInKRW"] == pytest.approx(200 * 5 * 1300.0)
        assert store.get("users/u1/exchange_rate") is None

    def test_live_rate_is_persisted(self, settings):
        store = InMemoryDocumentStore()
        service = build_service(settings, store, _quotes({"KRW=X": 1380.0}))
        run(settings, service)
        assert store.get("users/u1/exchange_rate") == 1380.0


@pytest.mark.parametrize(
    "error",
    [PersistenceError("offline"), InsufficientHoldingsError("oversold", ticker="AAPL", requested=5, available=1)],
)
def test_refresh_once_reports_failure(error):
    service = MagicMock()
    service.refresh_quotes.side_effect = error
    assert refresh_once(service) is False
