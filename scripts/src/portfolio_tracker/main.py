"""Main entry point: periodically refresh quotes and recompute the portfolio."""

from __future__ import annotations

import sys
import time

from loguru import logger

from .config import Settings, get_settings
from .exceptions import PortfolioError
from .instruments import InstrumentDirectory
from .price_fetcher import QuoteClient
from .rate_fetcher import ExchangeRateProvider
from .repository import PortfolioRepository
from .service import PortfolioService
from .store import DocumentStore, InMemoryDocumentStore, SheetsDocumentStore


# ------------------------------------------------------------------
# Logging setup
# ------------------------------------------------------------------


def configure_logging(level: str = "DEBUG") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan> | "
            "{message}"
        ),
        level=level,
        colorize=True,
    )


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------


def build_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "memory":
        logger.warning("Using in-memory store; nothing will be persisted")
        return InMemoryDocumentStore()
    return SheetsDocumentStore(
        spreadsheet_id=settings.google_sheets_id,
        service_account_json_path=settings.service_account_json_path,
    )


def build_service(settings: Settings, store: DocumentStore, quotes: QuoteClient) -> PortfolioService:
    repository = PortfolioRepository(store, settings.user_id)
    rates = ExchangeRateProvider(
        fetch_price=quotes.get_price,
        load_stored=repository.get_exchange_rate,
        save=repository.put_exchange_rate,
        default_rate=settings.default_usd_krw,
    )
    instruments = InstrumentDirectory(settings.stock_list_kr_path, settings.stock_list_us_path)
    return PortfolioService(
        repository=repository,
        get_price=quotes.get_price,
        get_usd_krw=rates.get_usd_krw,
        instruments=instruments,
        default_usd_krw=settings.default_usd_krw,
    )


# ------------------------------------------------------------------
# Core logic
# ------------------------------------------------------------------


def refresh_once(service: PortfolioService) -> bool:
    """Run one refresh pass; returns False when it failed."""
    try:
        holdings = service.refresh_quotes()
        summary = service.summary()
    except PortfolioError as exc:
        logger.error("Refresh failed: {}", exc)
        return False

    totals = summary.totals
    logger.info(
        "=== Refreshed {} holding(s): value {:,.0f} KRW, profit {:+,.0f} KRW ({:+.2f}%), cash {:,.0f} KRW ===",
        len(holdings),
        totals.total_value,
        totals.total_profit,
        totals.total_profit_rate,
        totals.cash_value,
    )
    return True


def run(settings: Settings, service: PortfolioService) -> None:
    """Refresh on a fixed interval until interrupted (or once when configured)."""
    while True:
        refresh_once(service)
        if settings.run_once:
            return
        logger.debug("Next refresh in {}s", settings.refresh_interval_seconds)
        time.sleep(settings.refresh_interval_seconds)


def main() -> None:
    """Run the portfolio refresh job."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("=== Portfolio Tracker starting ===")
    logger.info(
        "Config loaded — user_id={} store={} quote_api={} interval={}s",
        settings.user_id,
        settings.store_backend,
        settings.quote_api_base_url,
        settings.refresh_interval_seconds,
    )

    store = build_store(settings)
    with QuoteClient(settings.quote_api_base_url, timeout=settings.http_timeout_seconds) as quotes:
        service = build_service(settings, store, quotes)
        try:
            run(settings, service)
        except KeyboardInterrupt:
            logger.info("=== Portfolio Tracker stopped ===")


if __name__ == "__main__":
    main()
