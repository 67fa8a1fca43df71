"""Portfolio operations: validate, mutate, recompute, persist.

Each mutation re-reads the records it touches, merges the change in memory,
rewrites whole records and finishes with a full weight recompute. All checks
run before the first write, so a rejected operation leaves the store as it
was. Writes are not transactional: a failure after the first write can leave
weights stale until the next recompute.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Mapping
from typing import Any

import pandas as pd
from loguru import logger

from .exceptions import (
    DuplicateHoldingError,
    HoldingNotFoundError,
    MemoNotFoundError,
    QuoteFetchError,
    TradeNotFoundError,
    ValidationError,
)
from .indicators import indicator_frame
from .instruments import InstrumentDirectory, normalize_ticker
from .models import (
    CURRENCIES,
    CashHistoryEntry,
    CashPosition,
    Holding,
    Memo,
    PortfolioSummary,
    Trade,
    TradeView,
)
from .parsing import parse_date, parse_positive_number, parse_text
from .price_fetcher import fetch_price_history
from .reports import group_weights, profit_loss_counts, sort_holdings, trade_return_rate
from .repository import PortfolioRepository
from .validation import (
    IdSource,
    check_buy,
    check_history,
    check_sell,
    check_withdrawal,
    parse_trade_form,
    replace_trade,
    settle,
)
from .valuation import (
    compute_holding_metrics,
    compute_totals,
    realized_profit,
    realized_profit_rate,
    revalue_portfolio,
)

VOLATILITIES = ("unset", "volatile", "neutral", "stable")
EDITABLE_HOLDING_FIELDS = ("company_name", "sector", "category", "volatility")
CHART_LOOKBACK_DAYS = 365


def cash_effect(trade: Trade) -> float:
    """Signed cash movement caused by *trade*: buys pay out, sells pay in."""
    amount = trade.price * trade.quantity
    return -amount if trade.type == "buy" else amount


class PortfolioService:
    """Caller layer around the valuation engine for one user's portfolio.

    Parameters
    ----------
    repository:
        Typed access to the user's records.
    get_price:
        Returns the latest native-currency price for a ticker; raises
        :class:`QuoteFetchError` on failure.
    get_usd_krw:
        Returns the live USD/KRW rate. Only :meth:`refresh_quotes` calls it;
        other recomputes use the stored rate.
    instruments:
        Optional name lookup used when a holding is created.
    today:
        Returns the current date; defaults to :meth:`datetime.date.today`.
    default_usd_krw:
        Rate used while no rate has been stored yet.
    new_id:
        Returns a fresh record id; defaults to an :class:`IdSource`.
    get_history:
        Returns daily OHLC history for a ticker from an ISO start date.
    """

    def __init__(
        self,
        repository: PortfolioRepository,
        get_price: Callable[[str], float],
        get_usd_krw: Callable[[], float],
        instruments: InstrumentDirectory | None = None,
        today: Callable[[], dt.date] = dt.date.today,
        default_usd_krw: float = 1450.0,
        new_id: Callable[[], int] | None = None,
        get_history: Callable[[str, str], pd.DataFrame] = fetch_price_history,
    ) -> None:
        self._repo = repository
        self._get_price = get_price
        self._get_usd_krw = get_usd_krw
        self._instruments = instruments
        self._today = today
        self._default_usd_krw = default_usd_krw
        self._new_id = new_id or IdSource()
        self._get_history = get_history

    # ------------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------------

    def add_holding(self, ticker: str, sector: str, category: str, volatility: str = "unset") -> Holding:
        """Start tracking *ticker* with an empty trade history."""
        ticker = normalize_ticker(parse_text(ticker, "ticker", required=True))
        sector = parse_text(sector, "sector", required=True)
        category = parse_text(category, "category", required=True)
        volatility = self._parse_volatility(volatility)

        if self._repo.get_holding(ticker) is not None:
            raise DuplicateHoldingError(f"{ticker} is already in the portfolio")

        company_name = ticker
        if self._instruments is not None:
            company_name = self._instruments.company_name(ticker) or ticker

        holding = Holding(
            ticker=ticker,
            company_name=company_name,
            sector=sector,
            category=category,
            volatility=volatility,
        )
        self._repo.put_holding(holding)
        logger.info("Added holding {} ({})", ticker, company_name)

        self.recalculate_weights()
        return holding

    def delete_holding(self, ticker: str) -> None:
        """Remove *ticker* and all its trades."""
        self._require_holding(ticker)
        self._repo.delete_holding(ticker)
        logger.info("Deleted holding {}", ticker)
        self.recalculate_weights()

    def update_holding_field(self, ticker: str, field: str, value: Any) -> Holding:
        """Change a descriptive field; weights and cost basis are unaffected."""
        if field not in EDITABLE_HOLDING_FIELDS:
            raise ValidationError(f"{field} cannot be edited", field=field)
        holding = self._require_holding(ticker)

        value = self._parse_volatility(value) if field == "volatility" else parse_text(value, field)
        updated = holding.model_copy(update={field: value})
        self._repo.put_holding(updated)
        logger.info("Updated {} of {} to '{}'", field, ticker, value)
        return updated

    def holdings(self, sort_key: str | None = None, descending: bool = True) -> list[Holding]:
        return sort_holdings(self._repo.list_holdings(), sort_key, descending)

    def get_holding(self, ticker: str) -> Holding:
        return self._require_holding(ticker)

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def add_trade(self, ticker: str, form: Mapping[str, Any]) -> Trade:
        """Record a buy or sell from raw form input.

        A buy must be covered by cash in the instrument's currency; a sell
        must not exceed the quantity held at its date. The cash position and
        ledger are updated with the trade amount.
        """
        holding = self._require_holding(ticker)
        trade = parse_trade_form(form, trade_id=self._new_id())
        currency = holding.currency
        cash = self._repo.get_cash(currency)

        if trade.type == "buy":
            check_buy(trade, currency, cash)
        else:
            check_sell(holding.trades, trade, ticker=ticker)

        trades = self._with_snapshots(holding, [*holding.trades, trade], refresh_id=trade.id)
        trade = next(t for t in trades if t.id == trade.id)

        self._repo.put_holding(holding.model_copy(update={"trades": trades}))
        self._apply_cash(cash, cash_effect(trade), trade, f"{trade.type} {ticker} {trade.quantity:g} @ {trade.price:g}")
        logger.info("Added {} trade {} on {}", trade.type, trade.id, ticker)

        self.recalculate_weights()
        return trade

    def edit_trade(self, ticker: str, trade_id: int, form: Mapping[str, Any]) -> Trade:
        """Replace price, quantity, date (and optionally memo) of a trade.

        The trade's type cannot change. The difference in cash movement is
        booked to the cash position and ledger.
        """
        holding = self._require_holding(ticker)
        existing = self._require_trade(holding, trade_id)

        form = {"type": existing.type, "memo": existing.memo, **form}
        edited = parse_trade_form(form, trade_id=trade_id)
        if edited.type != existing.type:
            raise ValidationError("Trade type cannot be changed; delete the trade and add a new one", field="type")

        currency = holding.currency
        cash = self._repo.get_cash(currency)
        delta = cash_effect(edited) - cash_effect(existing)

        if edited.type == "sell":
            check_sell(holding.trades, edited, ticker=ticker, exclude_id=trade_id)
        else:
            check_history(replace_trade(holding.trades, edited), ticker=ticker)
        if delta < 0:
            check_withdrawal(-delta, cash)

        trades = self._with_snapshots(holding, replace_trade(holding.trades, edited), refresh_id=trade_id)
        edited = next(t for t in trades if t.id == trade_id)

        self._repo.put_holding(holding.model_copy(update={"trades": trades}))
        self._apply_cash(cash, delta, edited, f"edit {edited.type} {ticker} #{trade_id}")
        logger.info("Edited trade {} on {}", trade_id, ticker)

        self.recalculate_weights()
        return edited

    def edit_trade_memo(self, ticker: str, trade_id: int, memo: str) -> Trade:
        holding = self._require_holding(ticker)
        existing = self._require_trade(holding, trade_id)

        updated = existing.model_copy(update={"memo": parse_text(memo, "memo")})
        trades = [updated if t.id == trade_id else t for t in holding.trades]
        self._repo.put_holding(holding.model_copy(update={"trades": trades}))
        logger.info("Updated memo of trade {} on {}", trade_id, ticker)
        return updated

    def delete_trade(self, ticker: str, trade_id: int) -> None:
        """Remove a trade and reverse its cash movement.

        Rejected when a later sell would then exceed the holding, or when
        reversing a sell would overdraw the cash position.
        """
        holding = self._require_holding(ticker)
        existing = self._require_trade(holding, trade_id)

        remaining = [t for t in holding.trades if t.id != trade_id]
        check_history(remaining, ticker=ticker)

        cash = self._repo.get_cash(holding.currency)
        delta = -cash_effect(existing)
        if delta < 0:
            check_withdrawal(-delta, cash)

        self._repo.put_holding(holding.model_copy(update={"trades": remaining}))
        self._apply_cash(cash, delta, existing, f"delete {existing.type} {ticker} #{trade_id}")
        logger.info("Deleted trade {} on {}", trade_id, ticker)

        self.recalculate_weights()

    def trade_views(self, ticker: str) -> list[TradeView]:
        """Trade history rows with per-trade return and realized profit."""
        holding = self._require_holding(ticker)
        return [
            TradeView(
                trade=trade,
                return_rate=trade_return_rate(trade, holding.current_price),
                realized_profit=realized_profit(trade),
                realized_profit_rate=realized_profit_rate(trade),
            )
            for trade in holding.trades
        ]

    # ------------------------------------------------------------------
    # Cash
    # ------------------------------------------------------------------

    def deposit(self, currency: str, amount: Any, date: Any = None, description: str = "") -> CashPosition:
        return self._move_cash(currency, amount, date, description, "deposit")

    def withdraw(self, currency: str, amount: Any, date: Any = None, description: str = "") -> CashPosition:
        return self._move_cash(currency, amount, date, description, "withdraw")

    def cash(self) -> dict[str, CashPosition]:
        return self._repo.get_all_cash()

    def cash_history(self, year_month: str | None = None) -> list[CashHistoryEntry]:
        return self._repo.list_cash_history(year_month)

    # ------------------------------------------------------------------
    # Memos
    # ------------------------------------------------------------------

    def add_memo(self, title: str, content: str, date: Any = None) -> Memo:
        memo = Memo(
            id=self._new_id(),
            date=self._parse_optional_date(date),
            title=parse_text(title, "title"),
            content=parse_text(content, "content", required=True),
            updated_at=dt.datetime.now(tz=dt.timezone.utc),
        )
        self._repo.put_memo(memo)
        logger.info("Added memo {}", memo.id)
        return memo

    def edit_memo(self, memo_id: int, title: str | None = None, content: str | None = None) -> Memo:
        memo = self._repo.get_memo(memo_id)
        if memo is None:
            raise MemoNotFoundError(f"Memo {memo_id} not found")

        update: dict[str, Any] = {"updated_at": dt.datetime.now(tz=dt.timezone.utc)}
        if title is not None:
            update["title"] = parse_text(title, "title")
        if content is not None:
            update["content"] = parse_text(content, "content", required=True)

        memo = memo.model_copy(update=update)
        self._repo.put_memo(memo)
        logger.info("Edited memo {}", memo_id)
        return memo

    def delete_memo(self, memo_id: int) -> None:
        if self._repo.get_memo(memo_id) is None:
            raise MemoNotFoundError(f"Memo {memo_id} not found")
        self._repo.delete_memo(memo_id)
        logger.info("Deleted memo {}", memo_id)

    def list_memos(self) -> list[Memo]:
        return self._repo.list_memos()

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def refresh_quotes(self) -> list[Holding]:
        """Fetch the latest price of every holding, then recompute and persist.

        A failed lookup keeps the holding's stored price.
        """
        usd_krw = self._get_usd_krw()
        holdings = self._repo.list_holdings()
        logger.info("Refreshing prices for {} holding(s)", len(holdings))

        refreshed: list[Holding] = []
        failed = 0
        for holding in holdings:
            try:
                price = self._get_price(holding.ticker)
            except QuoteFetchError as exc:
                logger.warning("Keeping stored price for '{}': {}", holding.ticker, exc)
                failed += 1
                refreshed.append(holding)
                continue
            refreshed.append(holding.model_copy(update={"current_price": price}))

        holdings_out = self._persist_revalued(refreshed, usd_krw)
        logger.info(
            "Prices: {} refreshed, {} kept from store",
            len(holdings) - failed,
            failed,
        )
        return holdings_out

    def recalculate_weights(self, usd_krw: float | None = None) -> list[Holding]:
        """Recompute every holding's metrics and weight plus both cash weights."""
        if usd_krw is None:
            usd_krw = self.stored_usd_krw()
        return self._persist_revalued(self._repo.list_holdings(), usd_krw)

    def summary(self, as_of: dt.date | None = None) -> PortfolioSummary:
        """Totals, allocation breakdowns and profit/loss counts for the portfolio."""
        usd_krw = self.stored_usd_krw()
        holdings, cash = revalue_portfolio(self._repo.list_holdings(), self._repo.get_all_cash(), usd_krw)
        profitable, losing = profit_loss_counts(holdings)

        return PortfolioSummary(
            totals=compute_totals(holdings, cash, usd_krw, as_of=as_of or self._today()),
            sector_weights=group_weights(holdings, cash, "sector"),
            category_weights=group_weights(holdings, cash, "category"),
            currency_weights=group_weights(holdings, cash, "currency"),
            volatility_weights=group_weights(holdings, cash, "volatility"),
            profit_count=profitable,
            loss_count=losing,
        )

    def stored_usd_krw(self) -> float:
        """Last stored USD/KRW rate, or the configured default when none is stored."""
        stored = self._repo.get_exchange_rate()
        return stored if stored is not None else self._default_usd_krw

    def chart(self, ticker: str, days: int = CHART_LOOKBACK_DAYS) -> pd.DataFrame:
        """Daily price history of a holding with indicator columns.

        Adds ``ma5/ma20/ma60``, ``macd/signal/histogram``, ``rsi`` and
        ``stoch_k/stoch_d`` to the OHLC columns. Raises
        :class:`QuoteFetchError` when no history is available.
        """
        holding = self._require_holding(ticker)
        start = self._today() - dt.timedelta(days=days)
        history = self._get_history(holding.ticker, start.isoformat())
        if history.empty:
            raise QuoteFetchError(f"No price history for {holding.ticker}", ticker=holding.ticker)
        return indicator_frame(history)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _persist_revalued(self, holdings: list[Holding], usd_krw: float) -> list[Holding]:
        holdings_out, cash_out = revalue_portfolio(holdings, self._repo.get_all_cash(), usd_krw)
        for holding in holdings_out:
            self._repo.put_holding(holding)
        for position in cash_out.values():
            self._repo.put_cash(position)
        logger.debug("Recomputed weights for {} holding(s) at USD/KRW {}", len(holdings_out), usd_krw)
        return holdings_out

    def _with_snapshots(self, holding: Holding, trades: list[Trade], refresh_id: int) -> list[Trade]:
        """Attach cost-basis snapshots to sells.

        The sell identified by *refresh_id* always gets the value from this
        pass; other sells keep theirs and are only filled in when missing.
        """
        metrics = compute_holding_metrics(trades, holding.current_price, holding.currency, 1.0, ticker=holding.ticker)
        result: list[Trade] = []
        for trade in trades:
            snapshot = metrics.sell_avg_prices.get(trade.id)
            if snapshot is not None and (trade.id == refresh_id or trade.avg_buy_price is None):
                trade = trade.model_copy(update={"avg_buy_price": snapshot})
            result.append(trade)
        return result

    def _apply_cash(self, cash: CashPosition, delta: float, trade: Trade, description: str) -> None:
        if delta == 0:
            return
        self._repo.put_cash(cash.model_copy(update={"amount": settle(cash.amount + delta)}))
        self._repo.append_cash_history(
            CashHistoryEntry(
                date=trade.date,
                amount=delta,
                currency=cash.currency,
                type="stock_buy" if trade.type == "buy" else "stock_sell",
                description=description,
            )
        )

    def _move_cash(self, currency: str, amount: Any, date: Any, description: str, kind: str) -> CashPosition:
        if currency not in CURRENCIES:
            raise ValidationError(f"currency must be one of {', '.join(CURRENCIES)}", field="currency")
        amount = parse_positive_number(amount, "amount")
        entry_date = self._parse_optional_date(date)

        cash = self._repo.get_cash(currency)
        if kind == "withdraw":
            check_withdrawal(amount, cash)
        signed = amount if kind == "deposit" else -amount

        updated = cash.model_copy(update={"amount": settle(cash.amount + signed)})
        self._repo.put_cash(updated)
        self._repo.append_cash_history(
            CashHistoryEntry(
                date=entry_date,
                amount=signed,
                currency=currency,
                type=kind,
                description=parse_text(description, "description"),
            )
        )
        logger.info("{} {} {:,.2f}", kind.capitalize(), currency, amount)

        self.recalculate_weights()
        return self._repo.get_cash(currency)

    def _parse_optional_date(self, value: Any) -> dt.date:
        if value is None or value == "":
            return self._today()
        return parse_date(value)

    @staticmethod
    def _parse_volatility(value: Any) -> str:
        volatility = parse_text(value, "volatility") or "unset"
        if volatility not in VOLATILITIES:
            raise ValidationError(f"volatility must be one of {', '.join(VOLATILITIES)}", field="volatility")
        return volatility

    def _require_holding(self, ticker: str) -> Holding:
        holding = self._repo.get_holding(ticker)
        if holding is None:
            raise HoldingNotFoundError(f"{ticker} is not in the portfolio")
        return holding

    @staticmethod
    def _require_trade(holding: Holding, trade_id: int) -> Trade:
        trade = holding.find_trade(trade_id)
        if trade is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found on {holding.ticker}")
        return trade
