"""Tests for composite and factor history files."""

import math
from datetime import date
from pathlib import Path

import pandas as pd

from btc_risk.config import band_for_score
from btc_risk.history import (
    HISTORY_COLUMNS,
    append_factor_history,
    append_history,
    build_factor_deltas,
    daily_changes,
    factor_history_columns,
    load_factor_history,
    load_history,
    previous_day_row,
)
from btc_risk.models import CompositeResult, FactorStatus

from conftest import make_factor


def composite(day: date, score: int) -> CompositeResult:
    return CompositeResult(date=day, score=score, band=band_for_score(score), weighted_factors=[], total_weight=100)


class TestAppendHistory:
    """Tests for history.csv appends."""

    def test_creates_file(self, tmp_path: Path) -> None:
        path = tmp_path / "data" / "history.csv"
        assert append_history(path, composite(date(2024, 6, 15), 62), 65000.5)

        lines = path.read_text().splitlines()
        assert lines[0] == ",".join(HISTORY_COLUMNS)
        assert lines[1] == "2024-06-15,62,Hold & Wait,65000.50"

    def test_rerun_is_noop(self, tmp_path: Path) -> None:
        """A second append for the same date leaves the file untouched."""
        path = tmp_path / "history.csv"
        append_history(path, composite(date(2024, 6, 15), 62), 65000.0)
        before = path.read_bytes()

        assert not append_history(path, composite(date(2024, 6, 15), 70), 66000.0)
        assert path.read_bytes() == before

    def test_rows_kept_sorted(self, tmp_path: Path) -> None:
        path = tmp_path / "history.csv"
        append_history(path, composite(date(2024, 6, 15), 62), None)
        append_history(path, composite(date(2024, 6, 13), 40), None)

        history = load_history(path)
        assert list(history.index) == [pd.Timestamp("2024-06-13"), pd.Timestamp("2024-06-15")]
        assert math.isnan(history.loc[pd.Timestamp("2024-06-13"), "price_usd"])

    def test_malformed_rows_dropped_on_load(self, tmp_path: Path) -> None:
        path = tmp_path / "history.csv"
        path.write_text(
            "date,score,band,price_usd\n"
            "2024-06-13,40,Moderate Buying,60000\n"
            "yesterday,41,Moderate Buying,60000\n"
            "2024-06-14,n/a,Moderate Buying,61000\n"
        )
        history = load_history(path)
        assert len(history) == 2
        assert math.isnan(history.loc[pd.Timestamp("2024-06-14"), "score"])

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_history(tmp_path / "nope.csv").empty


class TestGaps:
    """Missing days are never bridged."""

    def test_daily_changes_nan_across_gap(self, tmp_path: Path) -> None:
        path = tmp_path / "history.csv"
        for day, score in ((10, 40), (11, 45), (13, 60)):
            append_history(path, composite(date(2024, 6, day), score), None)

        changes = daily_changes(load_history(path))
        assert changes.loc[pd.Timestamp("2024-06-11")] == 5
        assert math.isnan(changes.loc[pd.Timestamp("2024-06-12")])
        assert math.isnan(changes.loc[pd.Timestamp("2024-06-13")])

    def test_previous_day_row(self, tmp_path: Path) -> None:
        path = tmp_path / "history.csv"
        append_history(path, composite(date(2024, 6, 13), 40), None)
        history = load_history(path)

        assert previous_day_row(history, date(2024, 6, 14))["score"] == 40
        assert previous_day_row(history, date(2024, 6, 15)) is None


class TestFactorHistory:
    """Tests for factor_history.csv and deltas."""

    def test_columns(self) -> None:
        cols = factor_history_columns(["a", "b"])
        assert cols == ["date", "a_score", "a_status", "b_score", "b_status", "composite_score", "composite_band"]

    def test_append_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "factor_history.csv"
        factors = [
            make_factor("trend_valuation", 70),
            make_factor("stablecoins", None, FactorStatus.STALE),
        ]
        assert append_factor_history(path, factors, composite(date(2024, 6, 14), 70))
        assert not append_factor_history(path, factors, composite(date(2024, 6, 14), 70))

        history = load_factor_history(path)
        row = history.loc[pd.Timestamp("2024-06-14")]
        assert row["trend_valuation_score"] == 70
        assert row["trend_valuation_status"] == "fresh"
        assert math.isnan(row["stablecoins_score"])
        assert row["stablecoins_status"] == "stale"
        assert row["composite_band"] == "Reduce Risk"

    def test_deltas(self, tmp_path: Path) -> None:
        path = tmp_path / "factor_history.csv"
        append_factor_history(path, [make_factor("trend_valuation", 70)], composite(date(2024, 6, 14), 70))

        today = [make_factor("trend_valuation", 76), make_factor("stablecoins", 30)]
        deltas = build_factor_deltas(load_factor_history(path), today, date(2024, 6, 15))

        assert deltas["previous_date"] == "2024-06-14"
        trend, stables = deltas["factors"]
        assert (trend["previous"], trend["current"], trend["delta"]) == (70.0, 76, 6.0)
        assert stables["previous"] is None
        assert stables["delta"] is None

    def test_deltas_across_gap(self, tmp_path: Path) -> None:
        """The previous row must be exactly one day earlier."""
        path = tmp_path / "factor_history.csv"
        append_factor_history(path, [make_factor("trend_valuation", 70)], composite(date(2024, 6, 12), 70))

        deltas = build_factor_deltas(load_factor_history(path), [make_factor("trend_valuation", 76)], date(2024, 6, 15))
        assert deltas["previous_date"] is None
        assert deltas["factors"][0]["delta"] is None
