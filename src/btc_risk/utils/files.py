"""Whole-file artifact IO.

Writers replace the target in one step (temp file + os.replace), so a reader
never observes a half-written artifact. There is no locking; one batch run
writes at a time.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import pandas as pd

from btc_risk.utils.normalize import pretty_dumps

logger = logging.getLogger(__name__)


def write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, obj: Any) -> None:
    """Write JSON (NaN-safe, indented) atomically."""
    write_text_atomic(path, pretty_dumps(obj))


def write_csv_atomic(path: Path, df: pd.DataFrame) -> None:
    """Write a DataFrame as CSV (no index) atomically."""
    write_text_atomic(path, df.to_csv(index=False, lineterminator="\n"))


def read_json(path: Path, default: Any = None) -> Any:
    """
    Read a JSON artifact.

    Missing file returns `default`. A corrupt file is logged and also returns
    `default`, so the next write replaces it.
    """
    if not path.is_file():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring unreadable JSON artifact {path}: {e}")
        return default


def read_csv(path: Path, columns: list[str]) -> pd.DataFrame:
    """
    Read a CSV artifact as strings, tolerating a missing file.

    Unknown columns are kept; missing expected columns are added empty so
    callers can rely on `columns` being present.
    """
    if not path.is_file():
        return pd.DataFrame(columns=columns)
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, on_bad_lines="skip")
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=columns)
    for col in columns:
        if col not in df.columns:
            df[col] = ""
    return df
