"""Numeric primitives for factor scoring."""

import math
from collections.abc import Mapping, Sequence

import numpy as np
import pandas as pd


def _as_series(values: pd.Series | Sequence[float] | np.ndarray) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float)
    return pd.Series(values, dtype=float)


def round_half_up(x: float) -> int:
    """Round to the nearest integer, ties away from zero on the positive side."""
    return int(math.floor(x + 0.5))


def calculate_sma(prices: pd.Series, period: int) -> pd.Series:
    """
    Calculate Simple Moving Average.

    Args:
        prices: Price series (typically close prices)
        period: Number of periods for the average

    Returns:
        SMA series, NaN for the first period-1 entries
    """
    return _as_series(prices).rolling(window=period, min_periods=period).mean()


def calculate_ema(prices: pd.Series, period: int) -> pd.Series:
    """
    Calculate Exponential Moving Average.

    Multiplier is 2/(period+1) and the average is seeded by the first element,
    so every index carries a value.

    Args:
        prices: Price series (typically close prices)
        period: Number of periods for the average

    Returns:
        EMA series
    """
    return _as_series(prices).ewm(span=period, adjust=False).mean()


def calculate_rsi(prices: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index.

    Uses Wilder's smoothing method (exponential moving average).

    Args:
        prices: Price series (typically close prices)
        period: RSI period (default: 14)

    Returns:
        RSI series (0-100 scale), NaN where history is insufficient
    """
    delta = _as_series(prices).diff()

    gain = delta.where(delta > 0, 0.0)
    loss = (-delta).where(delta < 0, 0.0)

    # Wilder's smoothing: alpha = 1/period
    avg_gain = gain.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))

    # No losses in the window: pin to 100 (covers flat 0/0 too)
    rsi = rsi.mask(avg_loss.notna() & (avg_loss == 0), 100.0)

    return rsi


def percentile_rank(values: pd.Series | Sequence[float], value: float) -> float:
    """
    Fraction of finite values strictly below `value`, ties counted half.

    Args:
        values: Reference distribution
        value: Value to rank

    Returns:
        Rank in [0, 1], or NaN for an empty distribution or non-finite value
    """
    if value is None or not math.isfinite(value):
        return math.nan
    arr = _as_series(values).to_numpy()
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return math.nan
    lt = int(np.sum(arr < value))
    eq = int(np.sum(arr == value))
    return (lt + 0.5 * eq) / arr.size


def z_score(values: pd.Series | Sequence[float], value: float) -> float:
    """Population z-score of value against values; NaN when std is zero."""
    arr = _as_series(values).dropna()
    if arr.empty or value is None or not math.isfinite(value):
        return math.nan
    std = float(arr.std(ddof=0))
    if not math.isfinite(std) or std == 0:
        return math.nan
    return (value - float(arr.mean())) / std


def risk_from_percentile(p: float | None, invert: bool = False, k: float = 3.0) -> int | None:
    """
    Map a percentile in [0, 1] to a 0-100 risk score via a logistic curve.

    Args:
        p: Percentile rank
        invert: True when a high reading means low risk
        k: Logistic steepness

    Returns:
        Integer risk score, or None for a non-finite percentile
    """
    if p is None or not math.isfinite(p):
        return None
    z = k * (2 * p - 1)
    score = round_half_up(100 / (1 + math.exp(-z)))
    return 100 - score if invert else score


def risk_from_z(z: float | None, k: float = 1.0) -> int | None:
    """Map a z-score to a 0-100 risk score; None for non-finite input."""
    if z is None or not math.isfinite(z):
        return None
    return round_half_up(100 / (1 + math.exp(-k * z)))


def rolling_sum(values: pd.Series, window: int) -> pd.Series:
    """Trailing sum, NaN until the window is full."""
    return _as_series(values).rolling(window=window, min_periods=window).sum()


def pct_change(values: pd.Series, periods: int) -> pd.Series:
    """Fractional change over `periods` steps without forward filling gaps."""
    return _as_series(values).pct_change(periods=periods, fill_method=None)


def blend_scores(parts: Mapping[str, tuple[float | None, float]]) -> float | None:
    """
    Weighted mean of sub-scores, renormalized over the ones that are present.

    Args:
        parts: name -> (score or None, weight)

    Returns:
        Blended score, or None when no part has a score
    """
    present = [
        (score, weight)
        for score, weight in parts.values()
        if score is not None and math.isfinite(score) and weight > 0
    ]
    if not present:
        return None
    total = sum(w for _, w in present)
    return sum(s * w for s, w in present) / total
