"""OHLCV data standardization utilities."""

from collections.abc import Sequence
from typing import Any

import pandas as pd

CANONICAL_COLS = ["date", "open", "high", "low", "close", "volume"]


def standardize_candles(candles: Sequence[Sequence[Any]]) -> pd.DataFrame:
    """
    Standardize exchange candles to a consistent daily schema.

    Input rows follow the Coinbase layout [time, low, high, open, close, volume]
    with time in epoch seconds. Output columns (always, in this order):
    date, open, high, low, close, volume. Dates are UTC calendar days as
    datetime.date, ascending and unique. Rows that are not lists, or that have
    an unusable time or a non-positive or missing close, are dropped.

    Args:
        candles: Raw candle rows

    Returns:
        Standardized DataFrame with consistent schema
    """
    rows = [list(c[:6]) for c in candles or [] if isinstance(c, (list, tuple))]
    if not rows:
        return pd.DataFrame(columns=CANONICAL_COLS)

    df = pd.DataFrame(
        [r + [pd.NA] * (6 - len(r)) for r in rows],
        columns=["time", "low", "high", "open", "close", "volume"],
    )
    # Out-of-range epochs become NaT instead of raising
    times = pd.to_datetime(pd.to_numeric(df["time"], errors="coerce"), unit="s", utc=True, errors="coerce")
    df["date"] = times.dt.date
    for col in ("open", "high", "low", "close", "volume"):
        df[col] = pd.to_numeric(df[col], errors="coerce")

    df = df[df["close"].notna() & (df["close"] > 0) & df["date"].notna()]
    df = df.sort_values("date", kind="stable").drop_duplicates(subset="date", keep="last")

    return df[CANONICAL_COLS].reset_index(drop=True)


def to_close_series(df: pd.DataFrame, date_col: str = "date", value_col: str = "close") -> pd.Series:
    """Close prices indexed by a DatetimeIndex (naive, UTC days)."""
    if df.empty:
        return pd.Series(dtype=float, index=pd.DatetimeIndex([]))
    series = pd.Series(
        pd.to_numeric(df[value_col], errors="coerce").to_numpy(),
        index=pd.to_datetime(df[date_col]),
        dtype=float,
    )
    return series.sort_index()


def weekly_closes(daily: pd.Series) -> pd.Series:
    """Last close of each ISO week (weeks end on Sunday)."""
    if daily.empty:
        return daily
    return daily.resample("W-SUN").last().dropna()
