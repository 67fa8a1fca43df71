"""Allocation breakdowns and table helpers built on revalued holdings."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Literal

from .models import CashPosition, Holding, Trade

GroupBy = Literal["sector", "category", "currency", "volatility"]

UNCLASSIFIED = "unclassified"
CASH_BUCKET = "cash"

SORT_KEYS: dict[str, Callable[[Holding], float | str]] = {
    "sector": lambda h: h.sector,
    "category": lambda h: h.category,
    "volatility": lambda h: h.volatility,
    "total_investment": lambda h: sum(t.price * t.quantity for t in h.trades),
    "avg_price": lambda h: h.avg_price,
    "current_price": lambda h: h.current_price,
    "value": lambda h: h.current_price * h.current_quantity,
    "profit": lambda h: h.profit,
    "profit_rate": lambda h: h.profit_rate,
    "weight": lambda h: h.weight,
}


def _holding_label(holding: Holding, by: GroupBy) -> str:
    if by == "currency":
        return holding.currency
    label = getattr(holding, by)
    if not label or label == "unset":
        return UNCLASSIFIED
    return label


def _cash_label(position: CashPosition, by: GroupBy) -> str:
    if by == "currency":
        return position.currency
    if by == "volatility":
        return "stable"
    return CASH_BUCKET


def group_weights(
    holdings: Iterable[Holding],
    cash: Mapping[str, CashPosition],
    by: GroupBy,
) -> dict[str, float]:
    """Sum member weights per *by* label.

    Only currently held holdings take part. Cash lands in its own currency
    bucket for ``currency``, in ``stable`` for ``volatility`` and in ``cash``
    otherwise. Empty cash positions are left out.
    """
    groups: dict[str, float] = {}
    for holding in holdings:
        if not holding.is_held:
            continue
        label = _holding_label(holding, by)
        groups[label] = groups.get(label, 0.0) + holding.weight

    for position in cash.values():
        if position.amount <= 0:
            continue
        label = _cash_label(position, by)
        groups[label] = groups.get(label, 0.0) + position.weight

    return groups


def profit_loss_counts(holdings: Iterable[Holding]) -> tuple[int, int]:
    """Return ``(profitable, losing)`` counts over currently held holdings."""
    profitable = losing = 0
    for holding in holdings:
        if not holding.is_held:
            continue
        if holding.profit > 0:
            profitable += 1
        elif holding.profit < 0:
            losing += 1
    return profitable, losing


def sort_holdings(holdings: Iterable[Holding], key: str | None, descending: bool = True) -> list[Holding]:
    """Sort holdings for the table view; ``key=None`` keeps the given order."""
    holdings = list(holdings)
    if key is None:
        return holdings
    try:
        extract = SORT_KEYS[key]
    except KeyError:
        raise ValueError(f"unknown sort key {key!r}; expected one of {sorted(SORT_KEYS)}") from None
    return sorted(holdings, key=extract, reverse=descending)


def trade_return_rate(trade: Trade, current_price: float) -> float:
    """Return of a single trade's price against the current price, in percent."""
    return (current_price - trade.price) / trade.price * 100
