"""Unit tests for ticker conventions and the instrument name lookup."""

import pytest

from portfolio_tracker.instruments import (
    InstrumentDirectory,
    chart_symbol,
    currency_for_ticker,
    normalize_ticker,
)


@pytest.mark.parametrize(
    ("ticker", "currency", "normalized", "chart"),
    [
        ("005930", "KRW", "005930", "005930.KS"),
        ("aapl", "USD", "AAPL", "aapl"),
        (" brk.b ", "USD", "BRK.B", " brk.b "),
    ],
)
def test_ticker_conventions(ticker, currency, normalized, chart):
    assert currency_for_ticker(ticker.strip()) == currency
    assert normalize_ticker(ticker) == normalized
    assert chart_symbol(ticker) == chart


class TestInstrumentDirectory:
    @pytest.fixture
    def directory(self, tmp_path):
        kr = tmp_path / "stock_list_kr.csv"
        kr.write_text("Code,Name,Market\n005930,삼성전자,KOSPI\n000660, SK하이닉스 ,KOSPI\n", encoding="utf-8")
        us = tmp_path / "stock_list_us.csv"
        us.write_text("Code,Name\nAAPL,Apple Inc.\n", encoding="utf-8")
        return InstrumentDirectory(kr, us)

    def test_exact_code_match(self, directory):
        assert directory.company_name("005930") == "삼성전자"
        assert directory.company_name("000660") == "SK하이닉스"
        assert directory.company_name("AAPL") == "Apple Inc."

    def test_unknown_code(self, directory):
        assert directory.company_name("5930") is None
        assert directory.company_name("MSFT") is None

    def test_missing_file_behaves_as_empty(self, tmp_path):
        directory = InstrumentDirectory(tmp_path / "nope.csv", tmp_path / "nope_us.csv")
        assert directory.company_name("005930") is None
