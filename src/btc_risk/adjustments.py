"""Cycle and spike adjustments derived from the daily close history.

Both are bounded nudges in composite points. They are published next to the
composite as diagnostics; composite_score itself stays the weighted blend.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

GENESIS = pd.Timestamp("2009-01-03")

CYCLE_MIN_DAYS = 365
CYCLE_RESIDUAL_THRESHOLD = 0.30
CYCLE_SCALE = 3.0
CYCLE_CAP = 2.0

SPIKE_MIN_RETURNS = 20
SPIKE_EWMA_ALPHA = 0.1
SPIKE_Z_THRESHOLD = 2.0
SPIKE_SCALE = 0.3
SPIKE_CAP = 1.5


@dataclass
class Adjustment:
    """A bounded nudge in composite points plus the numbers behind it."""

    adj_pts: float
    reason: str
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"adj_pts": self.adj_pts, "reason": self.reason, **self.diagnostics}


def _positive_closes(closes: pd.Series) -> pd.Series:
    clean = closes.dropna()
    return clean[clean > 0]


def _bounded(raw: float, cap: float) -> float:
    return round(float(min(max(raw, -cap), cap)), 1)


def genesis_days(index: pd.DatetimeIndex) -> np.ndarray:
    """Days since the genesis block, plus one so the first day is log-safe."""
    idx = pd.DatetimeIndex(index)
    if idx.tz is not None:
        idx = idx.tz_convert(None)
    return ((idx - GENESIS).days + 1).to_numpy(dtype=float)


def power_law_fit(closes: pd.Series) -> tuple[float, float] | None:
    """
    Least-squares fit of log(price) = log(a) + b * log(days since genesis).

    Returns:
        (a, b), or None with fewer than CYCLE_MIN_DAYS positive closes
    """
    clean = _positive_closes(closes)
    if len(clean) < CYCLE_MIN_DAYS:
        return None
    x = np.log(genesis_days(clean.index))
    if np.ptp(x) == 0:
        return None
    b, log_a = np.polyfit(x, np.log(clean.to_numpy(dtype=float)), 1)
    return float(np.exp(log_a)), float(b)


def cycle_adjustment(closes: pd.Series) -> Adjustment:
    """
    Nudge from the latest close's deviation off the power-law trend.

    Deviations under 30% give no nudge; beyond that the residual is scaled by
    3 and capped at +/-2 points.
    """
    fit = power_law_fit(closes)
    if fit is None:
        return Adjustment(0.0, "insufficient_data", {"residual": None})

    a, b = fit
    clean = _positive_closes(closes)
    expected = a * genesis_days(clean.index[-1:])[0] ** b
    residual = (float(clean.iloc[-1]) - expected) / expected
    diagnostics = {
        "residual": round(residual, 4),
        "residual_pct": round(residual * 100, 2),
        "expected_price": round(expected, 2),
        "power_law": {"a": a, "b": round(b, 4)},
    }
    if abs(residual) < CYCLE_RESIDUAL_THRESHOLD:
        return Adjustment(0.0, "within_normal_range", diagnostics)

    adj = _bounded(residual * CYCLE_SCALE, CYCLE_CAP)
    logger.info(f"Cycle adjustment {adj:+.1f} pts ({residual * 100:+.1f}% off trend)")
    return Adjustment(adj, "significant_deviation", diagnostics)


def ewma_volatility(returns: np.ndarray, seed: int = SPIKE_MIN_RETURNS, alpha: float = SPIKE_EWMA_ALPHA) -> float | None:
    """RMS of the first `seed` returns, then exponentially smoothed squared returns."""
    if len(returns) < seed:
        return None
    variance = float(np.mean(returns[:seed] ** 2))
    for r in returns[seed:]:
        variance = alpha * r * r + (1 - alpha) * variance
    return float(np.sqrt(variance))


def spike_adjustment(closes: pd.Series) -> Adjustment:
    """
    Nudge from an outsized one-day move.

    The latest return is scored against the EWMA volatility of the returns
    before it. |z| under 2 gives no nudge; beyond that z is scaled by 0.3 and
    capped at +/-1.5 points.
    """
    clean = _positive_closes(closes)
    returns = clean.pct_change().dropna().to_numpy(dtype=float)
    if len(returns) < SPIKE_MIN_RETURNS + 1:
        return Adjustment(0.0, "insufficient_data", {"r_1d": None, "sigma": None, "z": None})

    r_1d = float(returns[-1])
    sigma = ewma_volatility(returns[:-1])
    diagnostics: dict[str, Any] = {
        "r_1d": round(r_1d, 6),
        "sigma": round(sigma, 6) if sigma else sigma,
        "z": None,
        "ref_close": float(clean.iloc[-2]),
        "spot": float(clean.iloc[-1]),
    }
    if not sigma:
        return Adjustment(0.0, "no_volatility", diagnostics)

    z = r_1d / sigma
    diagnostics["z"] = round(z, 3)
    if abs(z) < SPIKE_Z_THRESHOLD:
        return Adjustment(0.0, "within_normal_volatility", diagnostics)

    adj = _bounded(z * SPIKE_SCALE, SPIKE_CAP)
    logger.info(f"Spike adjustment {adj:+.1f} pts (1d return {r_1d:+.2%}, z={z:.1f})")
    return Adjustment(adj, "significant_volatility", diagnostics)
