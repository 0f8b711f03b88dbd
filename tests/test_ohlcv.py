"""Tests for candle standardization."""

from datetime import date, datetime, timezone

import pandas as pd

from btc_risk.utils.ohlcv import CANONICAL_COLS, standardize_candles, to_close_series, weekly_closes


def _ts(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


class TestStandardizeCandles:
    """Tests for standardize_candles function."""

    def test_column_order_and_mapping(self) -> None:
        """Coinbase [time, low, high, open, close, volume] maps to canonical columns."""
        result = standardize_candles([[_ts(date(2024, 6, 14)), 90.0, 110.0, 95.0, 105.0, 12.5]])

        assert list(result.columns) == CANONICAL_COLS
        row = result.iloc[0]
        assert row["date"] == date(2024, 6, 14)
        assert (row["open"], row["high"], row["low"], row["close"], row["volume"]) == (
            95.0, 110.0, 90.0, 105.0, 12.5,
        )

    def test_sorted_ascending(self) -> None:
        """Coinbase returns newest first; output is ascending."""
        candles = [
            [_ts(date(2024, 6, 14)), 1, 2, 1, 2, 1],
            [_ts(date(2024, 6, 13)), 1, 2, 1, 3, 1],
            [_ts(date(2024, 6, 12)), 1, 2, 1, 4, 1],
        ]
        result = standardize_candles(candles)
        assert result["date"].tolist() == [date(2024, 6, 12), date(2024, 6, 13), date(2024, 6, 14)]

    def test_skips_rows_that_are_not_lists(self) -> None:
        """Dicts, None and scalars in the payload are dropped, not fatal."""
        candles = [
            {"time": _ts(date(2024, 6, 12)), "close": 2},
            None,
            7,
            [_ts(date(2024, 6, 14)), 1, 2, 1, 5, 1],
        ]
        result = standardize_candles(candles)
        assert result["date"].tolist() == [date(2024, 6, 14)]
        assert result["close"].tolist() == [5.0]

    def test_out_of_range_time_dropped(self) -> None:
        candles = [
            [1e20, 1, 2, 1, 3, 1],
            ["soon", 1, 2, 1, 3, 1],
            [_ts(date(2024, 6, 14)), 1, 2, 1, 4, 1],
        ]
        assert standardize_candles(candles)["date"].tolist() == [date(2024, 6, 14)]

    def test_nothing_usable_is_empty(self) -> None:
        result = standardize_candles([None, {"close": 1}])
        assert result.empty
        assert list(result.columns) == CANONICAL_COLS

    def test_drops_non_positive_close(self) -> None:
        candles = [
            [_ts(date(2024, 6, 13)), 1, 2, 1, 0, 1],
            [_ts(date(2024, 6, 14)), 1, 2, 1, 5, 1],
        ]
        result = standardize_candles(candles)
        assert len(result) == 1
        assert result["close"].iloc[0] == 5

    def test_duplicate_days_keep_last(self) -> None:
        """Two candles on one UTC day collapse to the later row."""
        candles = [
            [_ts(date(2024, 6, 14)), 1, 2, 1, 5, 1],
            [_ts(date(2024, 6, 14)) + 3600, 1, 2, 1, 6, 1],
        ]
        result = standardize_candles(candles)
        assert len(result) == 1
        assert result["close"].iloc[0] == 6

    def test_empty(self) -> None:
        result = standardize_candles([])
        assert result.empty
        assert list(result.columns) == CANONICAL_COLS


class TestSeries:
    """Tests for close series helpers."""

    def test_to_close_series(self) -> None:
        df = pd.DataFrame({"date": [date(2024, 6, 14), date(2024, 6, 13)], "close": [2.0, 1.0]})
        series = to_close_series(df)
        assert isinstance(series.index, pd.DatetimeIndex)
        assert series.tolist() == [1.0, 2.0]

    def test_weekly_closes_take_sunday_close(self) -> None:
        """Weeks end on Sunday and keep the last daily close."""
        index = pd.date_range("2024-06-03", "2024-06-16", freq="D")  # Mon..Sun, two weeks
        daily = pd.Series(range(len(index)), index=index, dtype=float)
        weekly = weekly_closes(daily)
        assert len(weekly) == 2
        assert weekly.index[0] == pd.Timestamp("2024-06-09")
        assert weekly.iloc[0] == 6.0
        assert weekly.iloc[1] == 13.0
