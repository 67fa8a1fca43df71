"""Per-user portfolio records on top of a :class:`DocumentStore`.

Layout under ``users/{user_id}/``::

    stocks/{ticker}            Holding
    cash/{currency}            CashPosition
    cash_history/{YYYY-MM}     list of CashHistoryEntry
    memos/{id}                 Memo
    exchange_rate              last known USD/KRW rate
"""

from __future__ import annotations

from typing import Any

import pydantic
from loguru import logger

from .exceptions import PersistenceError
from .models import CURRENCIES, CashHistoryEntry, CashPosition, Holding, Memo
from .store import DocumentStore


def _as_list(value: Any) -> list[Any]:
    """Stores that turn arrays into index-keyed maps hand back dicts; undo that."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [value[key] for key in sorted(value, key=lambda k: int(k) if str(k).isdigit() else k)]
    return list(value)


class PortfolioRepository:
    """Typed read/write access to one user's portfolio tree.

    Every failure of the underlying store, and every stored record that no
    longer validates, surfaces as :class:`PersistenceError`.
    """

    def __init__(self, store: DocumentStore, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must not be empty")
        self._store = store
        self._root = f"users/{user_id}"

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    def list_holdings(self) -> list[Holding]:
        documents = self._get("stocks") or {}
        holdings = [self._to_holding(doc) for doc in documents.values() if doc]
        logger.debug("Loaded {} holding(s)", len(holdings))
        return sorted(holdings, key=lambda h: h.ticker)

    def get_holding(self, ticker: str) -> Holding | None:
        document = self._get(f"stocks/{ticker}")
        return self._to_holding(document) if document else None

    def put_holding(self, holding: Holding) -> None:
        self._set(f"stocks/{holding.ticker}", holding.to_document())

    def delete_holding(self, ticker: str) -> None:
        self._set(f"stocks/{ticker}", None)

    # ------------------------------------------------------------------
    # Cash
    # ------------------------------------------------------------------

    def get_cash(self, currency: str) -> CashPosition:
        """Return the cash position for *currency*; an empty one if none is stored."""
        document = self._get(f"cash/{currency}")
        if not document:
            return CashPosition(currency=currency)
        return self._validate(CashPosition, {**document, "currency": currency}, f"cash/{currency}")

    def get_all_cash(self) -> dict[str, CashPosition]:
        return {currency: self.get_cash(currency) for currency in CURRENCIES}

    def put_cash(self, position: CashPosition) -> None:
        self._set(f"cash/{position.currency}", position.to_document())

    def append_cash_history(self, entry: CashHistoryEntry) -> None:
        path = f"cash_history/{entry.year_month}"
        entries = _as_list(self._get(path))
        entries.append(entry.to_document())
        self._set(path, entries)

    def list_cash_history(self, year_month: str | None = None) -> list[CashHistoryEntry]:
        """Return ledger entries, oldest month first; one month when *year_month* is given."""
        if year_month is not None:
            months = {year_month: self._get(f"cash_history/{year_month}")}
        else:
            months = self._get("cash_history") or {}

        entries: list[CashHistoryEntry] = []
        for month in sorted(months):
            for doc in _as_list(months[month]):
                entries.append(self._validate(CashHistoryEntry, doc, f"cash_history/{month}"))
        return entries

    # ------------------------------------------------------------------
    # Memos
    # ------------------------------------------------------------------

    def list_memos(self) -> list[Memo]:
        documents = self._get("memos") or {}
        memos = [self._validate(Memo, doc, f"memos/{key}") for key, doc in documents.items() if doc]
        return sorted(memos, key=lambda m: (m.date, m.id), reverse=True)

    def get_memo(self, memo_id: int) -> Memo | None:
        document = self._get(f"memos/{memo_id}")
        return self._validate(Memo, document, f"memos/{memo_id}") if document else None

    def put_memo(self, memo: Memo) -> None:
        self._set(f"memos/{memo.id}", memo.to_document())

    def delete_memo(self, memo_id: int) -> None:
        self._set(f"memos/{memo_id}", None)

    # ------------------------------------------------------------------
    # Exchange rate
    # ------------------------------------------------------------------

    def get_exchange_rate(self) -> float | None:
        value = self._get("exchange_rate")
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable stored exchange rate: {!r}", value)
            return None

    def put_exchange_rate(self, usd_krw: float) -> None:
        self._set("exchange_rate", usd_krw)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _to_holding(self, document: dict[str, Any]) -> Holding:
        document = {**document, "trades": _as_list(document.get("trades"))}
        return self._validate(Holding, document, f"stocks/{document.get('ticker', '?')}")

    def _validate(self, model: type[pydantic.BaseModel], document: Any, path: str) -> Any:
        try:
            return model.model_validate(document)
        except pydantic.ValidationError as exc:
            logger.error("Stored record at '{}' is invalid: {}", path, exc)
            raise PersistenceError(f"Stored record at {path} is invalid", path=path) from exc

    def _get(self, relative: str) -> Any:
        path = f"{self._root}/{relative}"
        try:
            return self._store.get(path)
        except Exception as exc:
            logger.error("Failed to read '{}': {}", path, exc)
            raise PersistenceError(f"Could not read {relative}", path=path) from exc

    def _set(self, relative: str, value: Any) -> None:
        path = f"{self._root}/{relative}"
        try:
            self._store.set(path, value)
        except Exception as exc:
            logger.error("Failed to write '{}': {}", path, exc)
            raise PersistenceError(f"Could not save {relative}", path=path) from exc
