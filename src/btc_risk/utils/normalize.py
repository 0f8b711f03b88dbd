"""Canonical JSON helpers for hashed and published artifacts.

Published JSON has to parse in a browser, so NaN/inf never reach disk:
they are replaced with null before serialization, and canonical_dumps uses
allow_nan=False to fail fast if one slips through.
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import date, datetime
from enum import Enum
from typing import Any

import numpy as np


def canonical_dumps(obj: Any) -> str:
    """Produce canonical JSON string with sorted keys and minimal separators."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def content_hash(obj: Any, length: int = 16) -> str:
    """SHA-256 over canonical JSON, truncated to `length` hex chars."""
    return hashlib.sha256(canonical_dumps(sanitize_json(obj)).encode("utf-8")).hexdigest()[:length]


def _is_nan_or_inf(x: Any) -> bool:
    """Check if value is NaN or inf, handling numpy types safely."""
    try:
        return math.isnan(x) or math.isinf(x)
    except (TypeError, ValueError):
        return False


def _is_negative_zero(x: Any) -> bool:
    """Check if value is -0.0 (which creates diff noise)."""
    try:
        return x == 0.0 and math.copysign(1.0, x) < 0
    except (TypeError, ValueError):
        return False


def sanitize_json(obj: Any) -> Any:
    """Recursively coerce to JSON-safe builtins.

    NaN/inf become None, -0.0 becomes 0.0, numpy scalars become Python
    scalars, dates become ISO strings and enums their values.
    """
    if isinstance(obj, dict):
        return {str(k): sanitize_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_json(item) for item in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if _is_nan_or_inf(obj):
        return None
    if _is_negative_zero(obj):
        return 0.0
    return obj


def pretty_dumps(obj: Any) -> str:
    """Indented JSON for files humans (and the UI) read."""
    return json.dumps(sanitize_json(obj), indent=2, ensure_ascii=False, allow_nan=False) + "\n"
