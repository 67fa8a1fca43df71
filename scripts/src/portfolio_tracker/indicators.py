"""Technical indicators over daily price series (pandas)."""

from __future__ import annotations

import pandas as pd

MOVING_AVERAGE_WINDOWS: tuple[int, ...] = (5, 20, 60)


def moving_average(close: pd.Series, window: int) -> pd.Series:
    """Simple moving average; the first ``window - 1`` values are NaN."""
    return close.rolling(window=window, min_periods=window).mean()


def moving_averages(close: pd.Series, windows: tuple[int, ...] = MOVING_AVERAGE_WINDOWS) -> pd.DataFrame:
    return pd.DataFrame({f"ma{window}": moving_average(close, window) for window in windows})


def ema(series: pd.Series, period: int) -> pd.Series:
    """Exponential moving average seeded with the first value."""
    return series.ewm(span=period, adjust=False).mean()


def macd(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """MACD line, signal line and histogram."""
    macd_line = ema(close, fast) - ema(close, slow)
    signal_line = ema(macd_line, signal)
    return pd.DataFrame(
        {
            "macd": macd_line,
            "signal": signal_line,
            "histogram": macd_line - signal_line,
        }
    )


def rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder smoothing.

    A window with no losses yields 100.
    """
    change = close.diff()
    gains = change.clip(lower=0)
    losses = -change.clip(upper=0)

    avg_gain = gains.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = losses.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    result = 100 - 100 / (1 + rs)
    return result.where(avg_loss != 0, 100.0).where(avg_gain.notna())


def stochastic(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
    smooth_k: int = 3,
    smooth_d: int = 3,
) -> pd.DataFrame:
    """Slow stochastic oscillator: smoothed %K and its moving average %D."""
    lowest = low.rolling(window=period, min_periods=period).min()
    highest = high.rolling(window=period, min_periods=period).max()
    raw_k = (close - lowest) / (highest - lowest) * 100

    k = raw_k.rolling(window=smooth_k, min_periods=smooth_k).mean()
    d = k.rolling(window=smooth_d, min_periods=smooth_d).mean()
    return pd.DataFrame({"k": k, "d": d})


def indicator_frame(prices: pd.DataFrame) -> pd.DataFrame:
    """Add moving averages, MACD, RSI and stochastic columns to an OHLC frame.

    *prices* needs ``high``, ``low`` and ``close`` columns.
    """
    close = prices["close"]
    return pd.concat(
        [
            prices,
            moving_averages(close),
            macd(close),
            rsi(close).rename("rsi"),
            stochastic(prices["high"], prices["low"], close).add_prefix("stoch_"),
        ],
        axis=1,
    )
