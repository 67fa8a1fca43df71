"""Fetch latest quotes over the quote API and daily history via yfinance."""

from __future__ import annotations

from typing import Any

import httpx
import pandas as pd
import yfinance as yf
from loguru import logger

from .exceptions import QuoteFetchError, ValidationError
from .instruments import chart_symbol
from .models import QuoteRecord
from .parsing import parse_number

_OHLCV = ["open", "high", "low", "close", "volume"]


class QuoteClient:
    """Client for the quote API.

    ``GET {base_url}/stock-price?ticker=...`` answers ``{"price": ...}`` where
    the price is a number or a string such as ``"71,300"``.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://quotes.example.com/api``.
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-built ``httpx.Client`` (tests pass one with a mock transport).
    """

    def __init__(self, base_url: str, timeout: float = 20.0, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> QuoteClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_price(self, ticker: str) -> float:
        return self.get_quote(ticker).price

    def get_quote(self, ticker: str) -> QuoteRecord:
        """Fetch the latest price for *ticker*.

        Raises :class:`QuoteFetchError` on transport errors, non-2xx
        responses and payloads without a usable price.
        """
        logger.debug("Fetching price for '{}'", ticker)
        payload = self._get_json("/stock-price", ticker)

        raw_price = payload.get("price") if isinstance(payload, dict) else None
        try:
            price = parse_number(raw_price, "price")
        except ValidationError as exc:
            raise QuoteFetchError(f"Invalid price for {ticker}: {raw_price!r}", ticker=ticker) from exc
        if price <= 0:
            raise QuoteFetchError(f"Invalid price for {ticker}: {raw_price!r}", ticker=ticker)

        logger.debug("Price for '{}': {}", ticker, price)
        return QuoteRecord(ticker=ticker, price=price)

    def _get_json(self, path: str, ticker: str) -> Any:
        try:
            response = self._client.get(path, params={"ticker": ticker})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise QuoteFetchError(
                f"Quote API returned {exc.response.status_code} for {ticker}", ticker=ticker
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise QuoteFetchError(f"Quote API request for {ticker} failed: {exc}", ticker=ticker) from exc


def fetch_price_history(ticker: str, start_date: str) -> pd.DataFrame:
    """Download daily OHLCV for *ticker* from *start_date* via yfinance.

    Parameters
    ----------
    ticker:
        Instrument code; Korean codes are mapped to their ``.KS`` symbol.
    start_date:
        ISO-format date string ``YYYY-MM-DD``.

    Returns
    -------
    pd.DataFrame
        Lower-cased ``open/high/low/close/volume`` columns, NaN rows dropped.
        Empty when nothing was returned.

    Raises
    ------
    QuoteFetchError
        When the download itself fails.
    """
    symbol = chart_symbol(ticker)
    logger.info("Downloading price history for '{}' from {}", symbol, start_date)
    try:
        data = yf.download(
            symbol,
            start=start_date,
            auto_adjust=True,
            progress=False,
            multi_level_index=False,
        )
    except Exception as exc:  # noqa: BLE001
        raise QuoteFetchError(f"Failed to download history for {symbol}: {exc}", ticker=ticker) from exc

    if data is None or data.empty:
        logger.warning("No data returned for ticker '{}'", symbol)
        return pd.DataFrame(columns=_OHLCV)

    frame = data.rename(columns=str.lower)
    frame = frame[[column for column in _OHLCV if column in frame.columns]].dropna()
    logger.debug("Parsed {} history row(s) for '{}'", len(frame), symbol)
    return frame
