"""Ticker conventions and the instrument code-to-name lookup."""

from __future__ import annotations

import re
from pathlib import Path

import pandas as pd
from loguru import logger

# Korean-market codes are purely numeric, e.g. ``005930``.
_KR_TICKER = re.compile(r"^\d+$")

# Suffix Yahoo-style chart endpoints expect for KOSPI listings.
_KR_CHART_SUFFIX = ".KS"


def is_korean_ticker(ticker: str) -> bool:
    return bool(_KR_TICKER.match(ticker))


def currency_for_ticker(ticker: str) -> str:
    """Return ``"KRW"`` for Korean-market codes and ``"USD"`` for everything else."""
    return "KRW" if is_korean_ticker(ticker) else "USD"


def normalize_ticker(ticker: str) -> str:
    """Trim *ticker* and upper-case it unless it is a Korean numeric code."""
    ticker = ticker.strip()
    return ticker if is_korean_ticker(ticker) else ticker.upper()


def chart_symbol(ticker: str) -> str:
    """Return the symbol used for chart/history lookups (``005930`` -> ``005930.KS``)."""
    return f"{ticker}{_KR_CHART_SUFFIX}" if is_korean_ticker(ticker) else ticker


class InstrumentDirectory:
    """Looks up display names in the KR and US instrument lists.

    Each list is a CSV with ``Code`` and ``Name`` columns. Files are read
    lazily on first use; a missing or unreadable file behaves as an empty list.

    Parameters
    ----------
    kr_path:
        CSV listing Korean-market instruments.
    us_path:
        CSV listing US-market instruments.
    """

    def __init__(self, kr_path: str | Path, us_path: str | Path) -> None:
        self._paths = {"KRW": Path(kr_path), "USD": Path(us_path)}
        self._names: dict[str, dict[str, str]] = {}

    def company_name(self, ticker: str) -> str | None:
        """Return the name listed for *ticker* (exact code match), or ``None``."""
        names = self._load(currency_for_ticker(ticker))
        name = names.get(ticker.strip())
        if name is None:
            logger.debug("No instrument name found for '{}'", ticker)
        return name

    def _load(self, currency: str) -> dict[str, str]:
        if currency in self._names:
            return self._names[currency]

        path = self._paths[currency]
        try:
            frame = pd.read_csv(path, dtype=str, usecols=["Code", "Name"]).dropna()
        except (OSError, ValueError) as exc:
            logger.warning("Could not read instrument list '{}': {}", path, exc)
            frame = pd.DataFrame(columns=["Code", "Name"])

        names = {
            str(code).strip(): str(name).strip()
            for code, name in zip(frame["Code"], frame["Name"])
        }
        logger.info("Loaded {} instrument name(s) from '{}'", len(names), path)
        self._names[currency] = names
        return names
