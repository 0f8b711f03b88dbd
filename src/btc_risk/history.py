"""Daily composite and per-factor history files.

Both files hold at most one row per UTC date. Appending is a whole-file
read-modify-write and skips dates already present, so rerunning a day is a
no-op. Readers tolerate gaps and malformed rows; a missing day means "no
signal", never an interpolated value.
"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import pandas as pd

from btc_risk.config import FACTOR_SPECS
from btc_risk.models import CompositeResult, FactorResult
from btc_risk.utils.files import read_csv, write_csv_atomic

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ["date", "score", "band", "price_usd"]


def factor_history_columns(keys: Sequence[str] | None = None) -> list[str]:
    keys = keys or [s.key for s in FACTOR_SPECS]
    cols = ["date"]
    for key in keys:
        cols.extend([f"{key}_score", f"{key}_status"])
    cols.extend(["composite_score", "composite_band"])
    return cols


def _append_row(path: Path, columns: list[str], row: dict[str, Any]) -> bool:
    existing = read_csv(path, columns)
    if (existing["date"] == row["date"]).any():
        logger.info(f"{path.name}: row for {row['date']} already present; skipping")
        return False
    new_row = pd.DataFrame([{c: row.get(c, "") for c in columns}], columns=columns).astype(str)
    frame = pd.concat([existing[columns], new_row], ignore_index=True)
    frame = frame.sort_values("date", kind="stable").reset_index(drop=True)
    write_csv_atomic(path, frame)
    logger.info(f"{path.name}: appended {row['date']} ({len(frame)} rows)")
    return True


def _fmt(value: float | None, digits: int = 2) -> str:
    if value is None or pd.isna(value):
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.{digits}f}"


def append_history(path: Path, composite: CompositeResult, price_usd: float | None) -> bool:
    """
    Append today's composite row unless one exists.

    Returns:
        True if a row was written
    """
    return _append_row(
        path,
        HISTORY_COLUMNS,
        {
            "date": composite.date.isoformat(),
            "score": _fmt(composite.score),
            "band": composite.band.label,
            "price_usd": _fmt(price_usd),
        },
    )


def append_factor_history(
    path: Path,
    factors: Sequence[FactorResult],
    composite: CompositeResult,
) -> bool:
    """Append today's per-factor scores and statuses unless a row exists."""
    columns = factor_history_columns()
    row: dict[str, Any] = {
        "date": composite.date.isoformat(),
        "composite_score": _fmt(composite.score),
        "composite_band": composite.band.label,
    }
    for f in factors:
        row[f"{f.key}_score"] = _fmt(f.score)
        row[f"{f.key}_status"] = f.status.value
    return _append_row(path, columns, row)


def _index_by_date(df: pd.DataFrame, numeric: Sequence[str]) -> pd.DataFrame:
    if df.empty:
        return df.set_index(pd.DatetimeIndex([], name="date"))
    df = df.copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce", format="%Y-%m-%d")
    bad = int(df["date"].isna().sum())
    if bad:
        logger.warning(f"Dropping {bad} history rows with unparseable dates")
    df = df.dropna(subset=["date"])
    for col in numeric:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.drop_duplicates(subset="date", keep="first").set_index("date").sort_index()
    return df


def load_history(path: Path) -> pd.DataFrame:
    """history.csv indexed by date; missing file gives an empty frame."""
    return _index_by_date(read_csv(path, HISTORY_COLUMNS), ["score", "price_usd"])


def load_factor_history(path: Path) -> pd.DataFrame:
    columns = factor_history_columns()
    numeric = [c for c in columns if c.endswith("_score")]
    return _index_by_date(read_csv(path, columns), numeric)


def daily_changes(history: pd.DataFrame, column: str = "score") -> pd.Series:
    """
    Day-over-day change on a full calendar index.

    Days adjacent to a gap come out NaN rather than spanning the gap.
    """
    if history.empty or column not in history.columns:
        return pd.Series(dtype=float)
    full = pd.date_range(history.index.min(), history.index.max(), freq="D")
    return history[column].reindex(full).diff()


def previous_day_row(history: pd.DataFrame, day: date) -> pd.Series | None:
    """The row for the calendar day before `day`, or None."""
    prev = pd.Timestamp(day - timedelta(days=1))
    if history.empty or prev not in history.index:
        return None
    return history.loc[prev]


def build_factor_deltas(
    factor_history: pd.DataFrame,
    factors: Sequence[FactorResult],
    as_of: date,
) -> dict[str, Any]:
    """Per-factor current vs previous-day score; delta is None across a gap."""
    prev = previous_day_row(factor_history, as_of)
    entries = []
    for f in factors:
        previous = None
        if prev is not None:
            raw = prev.get(f"{f.key}_score")
            previous = None if raw is None or pd.isna(raw) else float(raw)
        delta = f.score - previous if f.score is not None and previous is not None else None
        entries.append(
            {
                "key": f.key,
                "label": f.label,
                "current": f.score,
                "previous": previous,
                "delta": delta,
                "status": f.status.value,
            }
        )
    return {
        "as_of": as_of.isoformat(),
        "previous_date": (as_of - timedelta(days=1)).isoformat() if prev is not None else None,
        "factors": entries,
    }
