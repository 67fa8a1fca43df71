"""Resolve the USD/KRW exchange rate with fallbacks."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from .exceptions import PersistenceError, QuoteFetchError
from .models import ExchangeRateRecord

# Quote API symbol for KRW per USD.
USD_KRW_TICKER = "KRW=X"


class ExchangeRateProvider:
    """Returns the USD/KRW rate, never failing.

    Resolution order: the live quote, the last rate saved to the store, then
    the configured default. A live rate is saved back so it can serve as the
    fallback next time.

    Parameters
    ----------
    fetch_price:
        Callable returning the latest price for a quote-API ticker; raises
        :class:`QuoteFetchError` on failure.
    load_stored:
        Returns the last saved rate, or ``None``.
    save:
        Persists a freshly fetched rate.
    default_rate:
        Rate used when neither a live nor a stored value is available.
    """

    def __init__(
        self,
        fetch_price: Callable[[str], float],
        load_stored: Callable[[], float | None] = lambda: None,
        save: Callable[[float], None] = lambda rate: None,
        default_rate: float = 1450.0,
    ) -> None:
        self._fetch_price = fetch_price
        self._load_stored = load_stored
        self._save = save
        self._default_rate = default_rate

    def get_usd_krw(self) -> float:
        return self.get_rate().usd_krw

    def get_rate(self) -> ExchangeRateRecord:
        try:
            rate = self._fetch_price(USD_KRW_TICKER)
        except QuoteFetchError as exc:
            logger.warning("Failed to fetch USD/KRW rate: {}", exc)
        else:
            logger.info("USD/KRW rate: {}", rate)
            try:
                self._save(rate)
            except PersistenceError as exc:
                logger.warning("Could not store USD/KRW rate: {}", exc)
            return ExchangeRateRecord(usd_krw=rate, source="live")

        try:
            stored = self._load_stored()
        except PersistenceError as exc:
            logger.warning("Could not read stored USD/KRW rate: {}", exc)
            stored = None

        if stored is not None and stored > 0:
            logger.info("Using stored USD/KRW rate: {}", stored)
            return ExchangeRateRecord(usd_krw=stored, source="stored")

        logger.warning("Using default USD/KRW rate: {}", self._default_rate)
        return ExchangeRateRecord(usd_krw=self._default_rate, source="default")
