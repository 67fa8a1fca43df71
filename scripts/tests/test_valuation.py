"""Unit tests for the valuation engine."""

import datetime as dt

import pytest

from portfolio_tracker.exceptions import InsufficientHoldingsError
from portfolio_tracker.models import CashPosition, Holding, Trade
from portfolio_tracker.valuation import (
    compute_cagr,
    compute_holding_metrics,
    compute_totals,
    normalize_weights,
    realized_profit,
    realized_profit_rate,
    replay_trades,
    revalue_holding,
    revalue_portfolio,
    sort_trades,
)

USD_KRW = 1400.0


def _trade(trade_id, day, trade_type, price, quantity, **kwargs) -> Trade:
    return Trade(
        id=trade_id,
        date=dt.date(2024, 1, day),
        type=trade_type,
        price=price,
        quantity=quantity,
        **kwargs,
    )


def _example_trades() -> list[Trade]:
    return [
        _trade(1, 1, "buy", 1000, 10),
        _trade(2, 2, "buy", 1200, 10),
        _trade(3, 3, "sell", 1500, 5),
    ]


class TestSortTrades:
    def test_orders_by_date(self):
        trades = [_trade(1, 5, "buy", 1, 1), _trade(2, 1, "buy", 1, 1), _trade(3, 3, "buy", 1, 1)]
        assert [t.id for t in sort_trades(trades)] == [2, 3, 1]

    def test_same_day_uses_id_order(self):
        trades = [_trade(9, 1, "sell", 1, 1), _trade(4, 1, "buy", 1, 1)]
        assert [t.id for t in sort_trades(trades)] == [4, 9]

    def test_same_day_same_id_keeps_list_order(self):
        first = _trade(1, 1, "buy", 10, 1)
        second = _trade(1, 1, "buy", 20, 1)
        assert sort_trades([first, second]) == [first, second]


class TestHoldingMetrics:
    def test_worked_example(self):
        metrics = compute_holding_metrics(_example_trades(), 1300, "KRW", USD_KRW)

        assert metrics.current_quantity == pytest.approx(15)
        assert metrics.avg_price == pytest.approx(1100)
        assert metrics.value_in_krw == pytest.approx(19500)
        assert metrics.profit == pytest.approx(3000)
        assert metrics.profit_rate == pytest.approx(18.1818, abs=1e-3)
        assert metrics.sell_avg_prices == {3: pytest.approx(1100)}

    def test_buy_only_average_is_quantity_weighted_mean(self):
        trades = [
            _trade(1, 1, "buy", 100, 3),
            _trade(2, 2, "buy", 130, 7),
            _trade(3, 3, "buy", 90, 10),
        ]
        metrics = compute_holding_metrics(trades, 100, "KRW", USD_KRW)
        assert metrics.avg_price == pytest.approx((100 * 3 + 130 * 7 + 90 * 10) / 20)

    def test_sell_keeps_average_cost(self):
        trades = [
            _trade(1, 1, "buy", 100, 10),
            _trade(2, 2, "buy", 200, 10),
            _trade(3, 3, "sell", 300, 5),
        ]
        metrics = compute_holding_metrics(trades, 150, "KRW", USD_KRW)

        assert metrics.current_quantity == pytest.approx(15)
        assert metrics.avg_price == pytest.approx(150)
        assert metrics.sell_avg_prices[3] == pytest.approx(150)

    def test_unordered_input_gives_same_result(self):
        ordered = compute_holding_metrics(_example_trades(), 1300, "KRW", USD_KRW)
        shuffled = compute_holding_metrics(list(reversed(_example_trades())), 1300, "KRW", USD_KRW)
        assert shuffled == ordered

    def test_usd_holding_converts_value_and_profit_once(self):
        metrics = compute_holding_metrics([_trade(1, 1, "buy", 100, 10)], 120, "USD", USD_KRW)

        assert metrics.avg_price == pytest.approx(100)
        assert metrics.value_in_krw == pytest.approx(120 * 10 * USD_KRW)
        assert metrics.profit == pytest.approx(20 * 10 * USD_KRW)
        assert metrics.profit_rate == pytest.approx(20)

    def test_full_sell_resets_cost_basis(self):
        trades = [_trade(1, 1, "buy", 100, 10), _trade(2, 2, "sell", 150, 10)]
        metrics = compute_holding_metrics(trades, 180, "KRW", USD_KRW)

        assert metrics.current_quantity == 0
        assert metrics.avg_price == 0
        assert metrics.profit == 0
        assert metrics.profit_rate == 0
        assert metrics.value_in_krw == 0

    def test_buy_after_full_sell_starts_fresh(self):
        trades = [
            _trade(1, 1, "buy", 100, 10),
            _trade(2, 2, "sell", 150, 10),
            _trade(3, 3, "buy", 200, 5),
        ]
        metrics = compute_holding_metrics(trades, 200, "KRW", USD_KRW)
        assert metrics.current_quantity == pytest.approx(5)
        assert metrics.avg_price == pytest.approx(200)

    def test_no_trades(self):
        metrics = compute_holding_metrics([], 500, "KRW", USD_KRW)
        assert metrics.current_quantity == 0
        assert metrics.avg_price == 0
        assert metrics.value_in_krw == 0

    def test_oversell_raises(self):
        trades = [_trade(1, 1, "buy", 100, 5), _trade(2, 2, "sell", 100, 6)]
        with pytest.raises(InsufficientHoldingsError):
            replay_trades(trades, ticker="005930")

    def test_sell_before_any_buy_raises(self):
        trades = [_trade(1, 1, "sell", 100, 1), _trade(2, 2, "buy", 100, 5)]
        with pytest.raises(InsufficientHoldingsError):
            replay_trades(trades)

    def test_fractional_full_sell_is_not_oversell(self):
        trades = [
            _trade(1, 1, "buy", 10, 0.1),
            _trade(2, 1, "buy", 10, 0.2),
            _trade(3, 2, "sell", 10, 0.3),
        ]
        quantity, investment, _ = replay_trades(trades)
        assert quantity == 0
        assert investment == 0


class TestRealizedProfit:
    def test_sell_against_snapshot(self):
        sell = _trade(3, 3, "sell", 1500, 5, avg_buy_price=1100)
        assert realized_profit(sell) == pytest.approx(2000)
        assert realized_profit_rate(sell) == pytest.approx(400 / 1100 * 100)

    def test_buy_has_no_realized_profit(self):
        buy = _trade(1, 1, "buy", 1000, 10)
        assert realized_profit(buy) == 0
        assert realized_profit_rate(buy) == 0

    def test_zero_snapshot_rate_is_zero(self):
        sell = _trade(3, 3, "sell", 1500, 5, avg_buy_price=0)
        assert realized_profit_rate(sell) == 0


class TestWeights:
    def _portfolio(self):
        holdings = [
            Holding(ticker="005930", trades=_example_trades(), current_price=1300),
            Holding(ticker="AAPL", trades=[_trade(1, 1, "buy", 100, 10)], current_price=120),
            Holding(ticker="TSLA", current_price=250),
        ]
        cash = {
            "KRW": CashPosition(currency="KRW", amount=100_000),
            "USD": CashPosition(currency="USD", amount=100),
        }
        return holdings, cash

    def test_normalize_weights(self):
        assert normalize_weights({"a": 1.0, "b": 3.0}) == {"a": 25.0, "b": 75.0}

    def test_normalize_weights_zero_total(self):
        assert normalize_weights({"a": 0.0, "b": 0.0}) == {"a": 0.0, "b": 0.0}

    def test_weights_sum_to_100(self):
        holdings, cash = self._portfolio()
        holdings_out, cash_out = revalue_portfolio(holdings, cash, USD_KRW)

        total = sum(h.weight for h in holdings_out) + sum(c.weight for c in cash_out.values())
        assert total == pytest.approx(100, abs=0.01)

    def test_weight_values(self):
        holdings, cash = self._portfolio()
        holdings_out, cash_out = revalue_portfolio(holdings, cash, USD_KRW)
        by_ticker = {h.ticker: h for h in holdings_out}

        total = 19_500 + 120 * 10 * USD_KRW + 100_000 + 100 * USD_KRW
        assert by_ticker["005930"].weight == pytest.approx(19_500 / total * 100)
        assert by_ticker["TSLA"].weight == 0
        assert cash_out["USD"].value_in_krw == pytest.approx(100 * USD_KRW)
        assert cash_out["KRW"].weight == pytest.approx(100_000 / total * 100)

    def test_recompute_is_idempotent(self):
        holdings, cash = self._portfolio()
        first = revalue_portfolio(holdings, cash, USD_KRW)
        second = revalue_portfolio(*first, USD_KRW)
        assert second == first

    def test_empty_portfolio_has_zero_weights(self):
        holdings_out, cash_out = revalue_portfolio(
            [Holding(ticker="AAPL")], {"KRW": CashPosition(currency="KRW")}, USD_KRW
        )
        assert holdings_out[0].weight == 0
        assert cash_out["KRW"].weight == 0

    def test_oversold_holding_is_valued_at_zero(self):
        holdings, cash = self._portfolio()
        broken = Holding(
            ticker="NVDA",
            current_price=500,
            trades=[_trade(7, 1, "buy", 100, 1), _trade(8, 2, "sell", 100, 3)],
        )
        holdings_out, cash_out = revalue_portfolio([*holdings, broken], cash, USD_KRW)
        by_ticker = {h.ticker: h for h in holdings_out}

        assert by_ticker["NVDA"].current_quantity == 0
        assert by_ticker["NVDA"].value_in_krw == 0
        assert by_ticker["NVDA"].weight == 0
        assert by_ticker["005930"].weight == pytest.approx(revalue_portfolio(holdings, cash, USD_KRW)[0][0].weight)

    def test_revalue_holding_sorts_trades(self):
        holding = Holding(ticker="005930", trades=list(reversed(_example_trades())), current_price=1300)
        revalued = revalue_holding(holding, USD_KRW)
        assert [t.id for t in revalued.trades] == [1, 2, 3]
        assert revalued.avg_price == pytest.approx(1100)


class TestTotals:
    def test_totals_for_worked_example(self):
        holding = revalue_holding(
            Holding(
                ticker="005930",
                trades=[*_example_trades()[:2], _trade(3, 3, "sell", 1500, 5, avg_buy_price=1100)],
                current_price=1300,
            ),
            USD_KRW,
        )
        cash = {"KRW": CashPosition(currency="KRW", amount=5000)}
        totals = compute_totals([holding], cash, USD_KRW, as_of=dt.date(2024, 1, 1))

        assert totals.total_investment == pytest.approx(16_500)
        assert totals.total_value == pytest.approx(19_500)
        assert totals.total_profit == pytest.approx(3000)
        assert totals.total_profit_rate == pytest.approx(3000 / 16_500 * 100)
        assert totals.realized_profit == pytest.approx(2000)
        assert totals.cash_value == pytest.approx(5000)
        assert totals.total_asset_value == pytest.approx(24_500)
        # as_of equals the first buy date
        assert totals.cagr is None

    def test_usd_investment_in_krw(self):
        holding = revalue_holding(
            Holding(ticker="AAPL", trades=[_trade(1, 1, "buy", 100, 10)], current_price=120), USD_KRW
        )
        totals = compute_totals([holding], {}, USD_KRW, as_of=dt.date(2025, 1, 1))
        assert totals.total_investment == pytest.approx(100 * 10 * USD_KRW)
        assert totals.cagr is not None

    def test_no_holdings(self):
        totals = compute_totals([], {}, USD_KRW)
        assert totals.total_investment == 0
        assert totals.total_profit_rate == 0
        assert totals.cagr is None


class TestCagr:
    def test_two_years(self):
        assert compute_cagr(121, 100, 2) == pytest.approx(0.1)

    def test_guards(self):
        assert compute_cagr(121, 100, 0) is None
        assert compute_cagr(121, 0, 2) is None
        assert compute_cagr(121, -5, 2) is None
