"""Preconditions checked before a trade or cash movement is written."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .exceptions import InsufficientFundsError, InsufficientHoldingsError, ValidationError
from .models import CashPosition, Trade
from .parsing import parse_date, parse_positive_number, parse_text
from .valuation import QUANTITY_EPSILON, replay_trades, sort_trades

_TRADE_TYPES = ("buy", "sell")

# Cash amounts closer than this are treated as equal.
CASH_EPSILON = 1e-6


class IdSource:
    """Synthetic record ids: milliseconds since the epoch, strictly increasing.

    Parameters
    ----------
    clock:
        Returns the current time in seconds; defaults to :func:`time.time`.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def __call__(self) -> int:
        self._last = max(int(self._clock() * 1000), self._last + 1)
        return self._last


def settle(amount: float) -> float:
    """Snap a cash balance within :data:`CASH_EPSILON` of zero to exactly zero."""
    return 0.0 if abs(amount) < CASH_EPSILON else amount


def parse_trade_form(form: Mapping[str, Any], trade_id: int) -> Trade:
    """Build a :class:`Trade` with id *trade_id* from raw form input.

    ``date``, ``price`` and ``quantity`` are required; ``type`` defaults to
    ``buy`` and ``memo`` to an empty string.
    """
    trade_type = parse_text(form.get("type"), "type") or "buy"
    if trade_type not in _TRADE_TYPES:
        raise ValidationError(f"type must be one of {', '.join(_TRADE_TYPES)}", field="type")

    return Trade(
        id=trade_id,
        date=parse_date(form.get("date"), "date"),
        type=trade_type,
        price=parse_positive_number(form.get("price"), "price"),
        quantity=parse_positive_number(form.get("quantity"), "quantity"),
        memo=parse_text(form.get("memo"), "memo"),
    )


def check_buy(trade: Trade, currency: str, cash: CashPosition) -> float:
    """Require enough cash in *currency* to pay for *trade*; return the cost."""
    cost = trade.price * trade.quantity
    if cash.currency != currency:
        raise ValueError(f"cash position is {cash.currency}, trade settles in {currency}")
    if cost > cash.amount + CASH_EPSILON:
        raise InsufficientFundsError(
            f"Insufficient {currency} cash: buying costs {cost:,.2f}, available {cash.amount:,.2f}",
            currency=currency,
            required=cost,
            available=cash.amount,
        )
    return cost


def held_before(trades: Sequence[Trade], candidate: Trade, exclude_id: int | None = None) -> float:
    """Quantity held immediately before *candidate* in date order.

    *exclude_id* drops a trade from the history, used when *candidate* is an
    edited version of that trade.
    """
    history = [t for t in trades if t.id != exclude_id and t.id != candidate.id]
    ordered = sort_trades([*history, candidate])
    position = next(i for i, t in enumerate(ordered) if t is candidate)
    quantity, _, _ = replay_trades(ordered[:position])
    return quantity


def check_sell(
    trades: Sequence[Trade],
    candidate: Trade,
    ticker: str = "",
    exclude_id: int | None = None,
) -> None:
    """Reject a sell larger than the holding at that date.

    The whole history with *candidate* in place is replayed as well, so a
    back-dated sell cannot push a later sell below zero.
    """
    available = held_before(trades, candidate, exclude_id=exclude_id)
    if candidate.quantity > available + QUANTITY_EPSILON:
        raise InsufficientHoldingsError(
            f"Insufficient holdings: selling {candidate.quantity:g} {ticker} but only {available:g} held",
            ticker=ticker,
            requested=candidate.quantity,
            available=available,
        )
    check_history(replace_trade(trades, candidate, exclude_id), ticker=ticker)


def check_history(trades: Sequence[Trade], ticker: str = "") -> None:
    """Raise :class:`InsufficientHoldingsError` if any sell in *trades* oversells."""
    replay_trades(trades, ticker=ticker)


def replace_trade(trades: Sequence[Trade], trade: Trade, exclude_id: int | None = None) -> list[Trade]:
    """Return *trades* with *exclude_id* (or *trade*'s own id) swapped for *trade*."""
    target = exclude_id if exclude_id is not None else trade.id
    kept = [t for t in trades if t.id != target]
    return [*kept, trade]


def check_withdrawal(amount: float, cash: CashPosition) -> None:
    if amount > cash.amount + CASH_EPSILON:
        raise InsufficientFundsError(
            f"Insufficient {cash.currency} cash: withdrawing {amount:,.2f}, available {cash.amount:,.2f}",
            currency=cash.currency,
            required=amount,
            available=cash.amount,
        )
