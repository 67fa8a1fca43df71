"""Pydantic V2 data models for the portfolio tracker.

Records that live in the document store serialize with camelCase keys
(``avgPrice``, ``valueInKRW``, ``avgBuyPrice``) so a stored holding reads the
same way the web client writes it.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .instruments import currency_for_ticker

TradeType = Literal["buy", "sell"]
Currency = Literal["KRW", "USD"]
Volatility = Literal["unset", "volatile", "neutral", "stable"]
CashHistoryType = Literal["deposit", "withdraw", "stock_buy", "stock_sell"]

CURRENCIES: tuple[Currency, ...] = ("KRW", "USD")


class StoredRecord(BaseModel):
    """Base for records persisted in the document store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Return the JSON-compatible dict written to the store."""
        return self.model_dump(mode="json", by_alias=True)


class Trade(StoredRecord):
    """A single buy or sell of an instrument."""

    id: int = Field(..., description="Synthetic id, unique within the holding")
    date: dt.date = Field(..., description="Trade date, no time component")
    type: TradeType = Field(default="buy", description="buy or sell")
    price: float = Field(..., gt=0, description="Unit price in the instrument's native currency")
    quantity: float = Field(..., gt=0, description="Number of units traded")
    memo: str = Field(default="", description="Free-form note")
    avg_buy_price: float | None = Field(
        default=None,
        description="Cost basis at the moment of a sell; unset on buys",
    )


class Holding(StoredRecord):
    """A tracked instrument with its trade history and derived metrics."""

    ticker: str = Field(..., description="Instrument code, e.g. 005930 or AAPL")
    company_name: str = Field(default="", description="Display name from the instrument list")
    sector: str = Field(default="")
    category: str = Field(default="")
    volatility: Volatility = Field(default="unset")
    trades: list[Trade] = Field(default_factory=list)
    current_price: float = Field(default=0.0, description="Latest quote in native currency")

    current_quantity: float = Field(default=0.0)
    avg_price: float = Field(default=0.0)
    profit: float = Field(default=0.0, description="Unrealized profit in KRW")
    profit_rate: float = Field(default=0.0, description="Unrealized profit in percent")
    value_in_krw: float = Field(default=0.0, alias="valueInKRW")
    weight: float = Field(default=0.0, description="Share of total asset value in percent")

    @property
    def currency(self) -> Currency:
        return currency_for_ticker(self.ticker)

    @property
    def is_held(self) -> bool:
        """True when the holding counts towards totals and allocations."""
        return bool(self.trades) and self.current_quantity > 0

    def find_trade(self, trade_id: int) -> Trade | None:
        for trade in self.trades:
            if trade.id == trade_id:
                return trade
        return None


class CashPosition(StoredRecord):
    """Cash balance held in one currency."""

    currency: Currency
    amount: float = Field(default=0.0, description="Balance in the position's currency")
    value_in_krw: float = Field(default=0.0, alias="valueInKRW")
    weight: float = Field(default=0.0)


class CashHistoryEntry(StoredRecord):
    """One line of the append-only cash ledger."""

    date: dt.date
    amount: float = Field(..., description="Signed amount; positive is an inflow")
    currency: Currency
    type: CashHistoryType
    description: str = Field(default="")

    @property
    def year_month(self) -> str:
        return self.date.strftime("%Y-%m")


class Memo(StoredRecord):
    """A free-form note kept alongside the portfolio."""

    id: int
    date: dt.date
    title: str = Field(default="")
    content: str = Field(default="")
    updated_at: dt.datetime | None = Field(default=None)


class HoldingMetrics(BaseModel):
    """Derived figures for one holding, as produced by the valuation pass."""

    current_quantity: float
    avg_price: float
    profit: float
    profit_rate: float
    value_in_krw: float
    sell_avg_prices: dict[int, float] = Field(
        default_factory=dict,
        description="Cost basis seen by each sell during the pass, keyed by trade id",
    )


class PortfolioTotals(BaseModel):
    """Aggregate figures across all currently held instruments."""

    total_investment: float
    total_value: float
    total_profit: float
    total_profit_rate: float
    realized_profit: float = 0.0
    cash_value: float = 0.0
    total_asset_value: float = 0.0
    cagr: float | None = None


class PortfolioSummary(BaseModel):
    """Totals plus the allocation breakdowns shown on the summary page."""

    totals: PortfolioTotals
    sector_weights: dict[str, float]
    category_weights: dict[str, float]
    currency_weights: dict[str, float]
    volatility_weights: dict[str, float]
    profit_count: int = 0
    loss_count: int = 0


class QuoteRecord(BaseModel):
    """Latest price for a ticker in its native currency."""

    ticker: str = Field(..., description="Instrument code as requested")
    price: float = Field(..., description="Latest price in the instrument's native currency")


class ExchangeRateRecord(BaseModel):
    """A USD/KRW rate together with where it came from."""

    usd_krw: float = Field(..., description="KRW per one USD")
    source: Literal["live", "stored", "default"] = Field(default="live")


class TradeView(BaseModel):
    """A trade with the per-row figures shown in the trade history table."""

    trade: Trade
    return_rate: float = Field(..., description="Current price against the trade price, in percent")
    realized_profit: float = Field(default=0.0, description="Sells only, native currency")
    realized_profit_rate: float = Field(default=0.0)
