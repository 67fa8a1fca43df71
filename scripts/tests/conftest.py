"""Pytest configuration and fixtures."""

import datetime as dt

import pytest

from portfolio_tracker.exceptions import QuoteFetchError
from portfolio_tracker.repository import PortfolioRepository
from portfolio_tracker.service import PortfolioService
from portfolio_tracker.store import InMemoryDocumentStore

USD_KRW = 1400.0
TODAY = dt.date(2024, 6, 1)


class FakeQuotes:
    """Deterministic price source; tickers missing from *prices* fail."""

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices = dict(prices or {})
        self.calls: list[str] = []

    def get_price(self, ticker: str) -> float:
        self.calls.append(ticker)
        if ticker not in self.prices:
            raise QuoteFetchError(f"no quote for {ticker}", ticker=ticker)
        return self.prices[ticker]


@pytest.fixture(name="store")
def store_fixture():
    return InMemoryDocumentStore()


@pytest.fixture(name="repository")
def repository_fixture(store):
    return PortfolioRepository(store, "user-1")


@pytest.fixture(name="quotes")
def quotes_fixture():
    return FakeQuotes({"005930": 70000.0, "AAPL": 200.0})


@pytest.fixture(name="service")
def service_fixture(repository, quotes):
    return PortfolioService(
        repository=repository,
        get_price=quotes.get_price,
        get_usd_krw=lambda: USD_KRW,
        today=lambda: TODAY,
        default_usd_krw=USD_KRW,
    )
