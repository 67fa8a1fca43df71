"""Portfolio valuation: cost basis, profit and allocation weights.

Everything here is pure. Functions take validated models and return new
values; nothing reads the store or the network.

Cost basis follows the running weighted average. Buys add to the invested
amount; a sell removes ``quantity * average`` from it, so selling never
changes the average cost of the shares that remain. Investment is tracked in
the instrument's native currency and converted to KRW once, at the end.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Mapping, Sequence
from typing import TypeVar

from loguru import logger

from .exceptions import InsufficientHoldingsError
from .models import CashPosition, Holding, HoldingMetrics, PortfolioTotals, Trade

K = TypeVar("K")

# Quantities this close to zero after a sell count as fully sold.
QUANTITY_EPSILON = 1e-9

_DAYS_PER_YEAR = 365.25


def fx_multiplier(currency: str, usd_krw: float) -> float:
    """Return the factor converting *currency* amounts to KRW."""
    return 1.0 if currency == "KRW" else usd_krw


def sort_trades(trades: Iterable[Trade]) -> list[Trade]:
    """Order trades by date; same-day trades keep id order, then list order."""
    indexed = list(enumerate(trades))
    indexed.sort(key=lambda pair: (pair[1].date, pair[1].id, pair[0]))
    return [trade for _, trade in indexed]


def replay_trades(trades: Iterable[Trade], ticker: str = "") -> tuple[float, float, dict[int, float]]:
    """Run the sequential cost-basis pass over *trades*.

    Returns ``(quantity, investment, sell_avg_prices)`` where *investment* is
    the native-currency cost of the quantity still held and
    *sell_avg_prices* maps each sell's id to the average cost it saw.

    Raises :class:`InsufficientHoldingsError` when a sell exceeds what is held
    at that point of the history.
    """
    quantity = 0.0
    investment = 0.0
    sell_avg_prices: dict[int, float] = {}

    for trade in sort_trades(trades):
        if trade.type == "buy":
            quantity += trade.quantity
            investment += trade.price * trade.quantity
            continue

        if quantity <= 0 or trade.quantity > quantity + QUANTITY_EPSILON:
            raise InsufficientHoldingsError(
                f"Cannot sell {trade.quantity:g} {ticker or 'units'} on {trade.date}: "
                f"only {quantity:g} held",
                ticker=ticker,
                requested=trade.quantity,
                available=quantity,
            )

        avg_price = investment / quantity
        sell_avg_prices[trade.id] = avg_price
        quantity -= trade.quantity
        if quantity > QUANTITY_EPSILON:
            investment -= trade.quantity * avg_price
        else:
            quantity = 0.0
            investment = 0.0

    return quantity, investment, sell_avg_prices


def compute_holding_metrics(
    trades: Sequence[Trade],
    current_price: float,
    currency: str,
    usd_krw: float,
    ticker: str = "",
) -> HoldingMetrics:
    """Compute quantity, average cost, value and unrealized profit for one holding."""
    quantity, investment, sell_avg_prices = replay_trades(trades, ticker=ticker)
    fx = fx_multiplier(currency, usd_krw)

    avg_price = investment / quantity if quantity > 0 else 0.0
    value_in_krw = current_price * quantity * fx
    profit = (current_price - avg_price) * quantity * fx if quantity > 0 else 0.0
    profit_rate = (current_price - avg_price) / avg_price * 100 if avg_price != 0 else 0.0

    return HoldingMetrics(
        current_quantity=quantity,
        avg_price=avg_price,
        profit=profit,
        profit_rate=profit_rate,
        value_in_krw=value_in_krw,
        sell_avg_prices=sell_avg_prices,
    )


def realized_profit(trade: Trade) -> float:
    """Profit booked by a sell against its recorded cost basis (native currency)."""
    if trade.type != "sell" or trade.avg_buy_price is None:
        return 0.0
    return (trade.price - trade.avg_buy_price) * trade.quantity


def realized_profit_rate(trade: Trade) -> float:
    if trade.type != "sell" or not trade.avg_buy_price:
        return 0.0
    return (trade.price - trade.avg_buy_price) / trade.avg_buy_price * 100


def revalue_holding(holding: Holding, usd_krw: float) -> Holding:
    """Return a copy of *holding* with its derived fields recomputed."""
    metrics = compute_holding_metrics(
        holding.trades,
        holding.current_price,
        holding.currency,
        usd_krw,
        ticker=holding.ticker,
    )
    return holding.model_copy(
        update={
            "trades": sort_trades(holding.trades),
            "current_quantity": metrics.current_quantity,
            "avg_price": metrics.avg_price,
            "profit": metrics.profit,
            "profit_rate": metrics.profit_rate,
            "value_in_krw": metrics.value_in_krw,
        }
    )


def _revalue_or_zero(holding: Holding, usd_krw: float) -> Holding:
    try:
        return revalue_holding(holding, usd_krw)
    except InsufficientHoldingsError as exc:
        logger.warning("Valuing '{}' at zero, its trade history is inconsistent: {}", holding.ticker, exc)
        return holding.model_copy(
            update={
                "current_quantity": 0.0,
                "avg_price": 0.0,
                "profit": 0.0,
                "profit_rate": 0.0,
                "value_in_krw": 0.0,
            }
        )


def cash_value_in_krw(position: CashPosition, usd_krw: float) -> float:
    return position.amount * fx_multiplier(position.currency, usd_krw)


def normalize_weights(values: Mapping[K, float]) -> dict[K, float]:
    """Express each value as a percentage of the total (all zero if the total is not positive)."""
    total = sum(values.values())
    if total <= 0:
        return {key: 0.0 for key in values}
    return {key: value / total * 100 for key, value in values.items()}


def revalue_portfolio(
    holdings: Iterable[Holding],
    cash: Mapping[str, CashPosition],
    usd_krw: float,
) -> tuple[list[Holding], dict[str, CashPosition]]:
    """Recompute every holding and both cash positions, weights included.

    Holdings that are not currently held get a weight of zero. The weights of
    held holdings and cash positions sum to 100 whenever the total asset
    value is positive. A holding whose stored history oversells is logged and
    valued at zero instead of failing the whole pass.
    """
    revalued = [_revalue_or_zero(holding, usd_krw) for holding in holdings]

    values: dict[tuple[str, str], float] = {
        ("stock", h.ticker): h.value_in_krw for h in revalued if h.is_held
    }
    cash_values = {currency: cash_value_in_krw(position, usd_krw) for currency, position in cash.items()}
    values.update({("cash", currency): value for currency, value in cash_values.items()})

    weights = normalize_weights(values)

    holdings_out = [
        h.model_copy(update={"weight": weights.get(("stock", h.ticker), 0.0)}) for h in revalued
    ]
    cash_out = {
        currency: position.model_copy(
            update={
                "value_in_krw": cash_values[currency],
                "weight": weights[("cash", currency)],
            }
        )
        for currency, position in cash.items()
    }
    return holdings_out, cash_out


def earliest_buy_date(holdings: Iterable[Holding]) -> dt.date | None:
    dates = [t.date for h in holdings for t in h.trades if t.type == "buy"]
    return min(dates) if dates else None


def compute_cagr(end_value: float, total_investment: float, years: float) -> float | None:
    """Compound annual growth rate, or ``None`` when it is undefined."""
    if years <= 0 or total_investment <= 0 or end_value < 0:
        return None
    return (end_value / total_investment) ** (1 / years) - 1


def compute_totals(
    holdings: Sequence[Holding],
    cash: Mapping[str, CashPosition],
    usd_krw: float,
    as_of: dt.date | None = None,
) -> PortfolioTotals:
    """Aggregate already revalued *holdings* and *cash* into portfolio totals."""
    held = [h for h in holdings if h.is_held]
    total_investment = sum(
        h.avg_price * h.current_quantity * fx_multiplier(h.currency, usd_krw) for h in held
    )
    total_value = sum(h.value_in_krw for h in held)
    total_profit = total_value - total_investment
    total_profit_rate = total_profit / total_investment * 100 if total_investment > 0 else 0.0

    realized = sum(
        realized_profit(t) * fx_multiplier(h.currency, usd_krw) for h in holdings for t in h.trades
    )
    cash_value = sum(cash_value_in_krw(position, usd_krw) for position in cash.values())

    cagr = None
    first_buy = earliest_buy_date(held)
    if first_buy is not None:
        years = ((as_of or dt.date.today()) - first_buy).days / _DAYS_PER_YEAR
        cagr = compute_cagr(total_value + cash_value, total_investment, years)

    return PortfolioTotals(
        total_investment=total_investment,
        total_value=total_value,
        total_profit=total_profit,
        total_profit_rate=total_profit_rate,
        realized_profit=realized,
        cash_value=cash_value,
        total_asset_value=total_value + cash_value,
        cagr=cagr,
    )
