"""Startup validation for static scoring tables."""

import math
from collections.abc import Mapping, Sequence
from typing import Any, Protocol


class ConfigError(ValueError):
    """Raised at import when a static table is inconsistent."""


class _BandLike(Protocol):
    key: str
    lower: float
    upper: float


class _ThresholdLike(Protocol):
    critical: float
    high: float
    medium: float
    low: float


def validate_bands(bands: Sequence[_BandLike], lo: float = 0.0, hi: float = 100.0) -> None:
    """
    Bands must tile [lo, hi] with no gap or overlap, in ascending order.

    Raises:
        ConfigError: On the first violation found
    """
    if not bands:
        raise ConfigError("No risk bands configured")
    if bands[0].lower != lo:
        raise ConfigError(f"First band '{bands[0].key}' must start at {lo}, got {bands[0].lower}")
    if bands[-1].upper != hi:
        raise ConfigError(f"Last band '{bands[-1].key}' must end at {hi}, got {bands[-1].upper}")
    for prev, cur in zip(bands, bands[1:]):
        if prev.upper != cur.lower:
            raise ConfigError(
                f"Bands '{prev.key}' and '{cur.key}' are not contiguous "
                f"({prev.upper} != {cur.lower})"
            )
    for band in bands:
        if not band.lower < band.upper:
            raise ConfigError(f"Band '{band.key}' is empty or inverted")


def validate_weights(weights: Mapping[str, float], expected_total: float = 100.0) -> None:
    """Weights must be positive and sum to expected_total."""
    for key, weight in weights.items():
        if not (math.isfinite(weight) and weight > 0):
            raise ConfigError(f"Weight for '{key}' must be positive, got {weight}")
    total = sum(weights.values())
    if not math.isclose(total, expected_total):
        raise ConfigError(f"Factor weights sum to {total}, expected {expected_total}")


def validate_thresholds(
    table: Mapping[Any, _ThresholdLike],
    required: Sequence[Any],
) -> None:
    """Every required category present, thresholds positive and strictly descending."""
    missing = [c for c in required if c not in table]
    if missing:
        raise ConfigError(f"Severity thresholds missing for: {missing}")
    for category, t in table.items():
        levels = (t.critical, t.high, t.medium, t.low)
        if any(v <= 0 for v in levels):
            raise ConfigError(f"Thresholds for {category} must be positive: {levels}")
        if not (t.critical > t.high > t.medium > t.low):
            raise ConfigError(f"Thresholds for {category} must strictly descend: {levels}")
