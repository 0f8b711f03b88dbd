"""Alert detectors: compare the newest datapoint with the previous one.

Alert timestamps are anchored to the data date (midnight UTC), not the wall
clock, so rerunning a day reproduces the same alert ids.
"""

import logging
from collections.abc import Sequence
from datetime import date, datetime

import numpy as np
import pandas as pd

from btc_risk.adjustments import Adjustment
from btc_risk.alerts.severity import determine_severity
from btc_risk.alerts.store import parse_timestamp
from btc_risk.config import FACTOR_SPECS_BY_KEY, band_index
from btc_risk.factors.trend_valuation import SMA50W_WARN_WEEKS
from btc_risk.history import previous_day_row
from btc_risk.models import Alert, AlertCategory, CompositeResult, FactorResult, FactorStatus, Severity

logger = logging.getLogger(__name__)

ZERO_CROSS_LOOKBACK = 180
ZERO_CROSS_MIN_DEADBAND = 1000.0


def day_timestamp(day: date) -> str:
    return f"{day.isoformat()}T00:00:00Z"


def _previous_composite(history: pd.DataFrame, composite: CompositeResult) -> tuple[str, float] | None:
    prev = previous_day_row(history, composite.date)
    if prev is None or pd.isna(prev.get("score")):
        return None
    return str(prev.get("band", "")), float(prev["score"])


def detect_band_change(history: pd.DataFrame, composite: CompositeResult) -> list[Alert]:
    """
    Composite moved into a different band since the previous day.

    Every band crossing is alerted; moves under the lowest threshold are LOW.
    """
    prev = _previous_composite(history, composite)
    if prev is None:
        return []
    prev_band, prev_score = prev
    if prev_band == composite.band.label:
        return []

    change = composite.score - prev_score
    severity = determine_severity(AlertCategory.RISK_BAND_CHANGE, change) or Severity.LOW

    direction = "up" if change > 0 else "down"
    return [
        Alert(
            type=AlertCategory.RISK_BAND_CHANGE,
            severity=severity,
            timestamp=day_timestamp(composite.date),
            title=f"Risk band changed: {prev_band} → {composite.band.label}",
            message=(
                f"Composite moved {direction} {abs(change):.0f} points "
                f"({prev_score:.0f} → {composite.score:.0f})."
            ),
            data={
                "previous_band": prev_band,
                "current_band": composite.band.label,
                "current_band_key": composite.band.key,
                "previous_score": prev_score,
                "current_score": composite.score,
                "change_points": change,
                "band_index": band_index(composite.band.key),
            },
            actions=[composite.band.recommendation],
        )
    ]


def detect_score_change(history: pd.DataFrame, composite: CompositeResult) -> list[Alert]:
    """Composite moved at least 10 points without leaving its band."""
    prev = _previous_composite(history, composite)
    if prev is None:
        return []
    prev_band, prev_score = prev
    if prev_band != composite.band.label:
        return []

    change = composite.score - prev_score
    severity = determine_severity(AlertCategory.SIGNIFICANT_SCORE_CHANGE, change)
    if severity is None:
        return []

    direction = "rose" if change > 0 else "fell"
    return [
        Alert(
            type=AlertCategory.SIGNIFICANT_SCORE_CHANGE,
            severity=severity,
            timestamp=day_timestamp(composite.date),
            title=f"Composite {direction} {abs(change):.0f} points within {composite.band.label}",
            message=f"Composite moved from {prev_score:.0f} to {composite.score:.0f}; band unchanged.",
            data={
                "band": composite.band.label,
                "previous_score": prev_score,
                "current_score": composite.score,
                "change_points": change,
            },
            actions=["Watch for a follow-through into the next band"],
        )
    ]


ADJUSTMENT_LABELS = {
    AlertCategory.CYCLE_ADJUSTMENT: "Cycle",
    AlertCategory.SPIKE_ADJUSTMENT: "Spike",
}


def detect_adjustment(category: AlertCategory, adjustment: Adjustment, as_of: date) -> list[Alert]:
    """A cycle or spike adjustment large enough to reach the category's thresholds."""
    severity = determine_severity(category, adjustment.adj_pts)
    if severity is None:
        return []
    label = ADJUSTMENT_LABELS[category]
    direction = "positive" if adjustment.adj_pts > 0 else "negative"
    return [
        Alert(
            type=category,
            severity=severity,
            timestamp=day_timestamp(as_of),
            title=f"{label} adjustment of {adjustment.adj_pts:+.1f} points",
            message=f"{label} adjustment is {direction} ({adjustment.reason}).",
            data={
                "adjustment_points": adjustment.adj_pts,
                "change_points": adjustment.adj_pts,
                **adjustment.diagnostics,
            },
            actions=[
                "Review cycle analysis" if category is AlertCategory.CYCLE_ADJUSTMENT else "Review volatility analysis"
            ],
        )
    ]


def detect_sma50w_warning(status: dict | None, as_of: date) -> list[Alert]:
    """BTC has closed under its 50-week SMA for SMA50W_WARN_WEEKS weeks or more."""
    if not status or status["weeks_below"] < SMA50W_WARN_WEEKS:
        return []
    weeks = status["weeks_below"]
    severity = determine_severity(AlertCategory.SMA50W_WARNING, weeks)
    if severity is None:
        return []
    return [
        Alert(
            type=AlertCategory.SMA50W_WARNING,
            severity=severity,
            timestamp=day_timestamp(as_of),
            factor="trend_valuation",
            title="50-week SMA warning",
            message=f"BTC has closed below its 50-week SMA for {weeks} consecutive weeks.",
            data=dict(status),
            actions=[
                "Consider reducing risk exposure" if severity.rank >= Severity.HIGH.rank
                else "Monitor for a trend change"
            ],
        )
    ]


def zero_cross_deadband(sums: pd.Series) -> float:
    """Noise floor for a sign change: 2% of recent dispersion, at least $1,000."""
    recent = sums.dropna().tail(ZERO_CROSS_LOOKBACK)
    std = float(recent.std(ddof=0)) if len(recent) > 1 else 0.0
    if not np.isfinite(std):
        std = 0.0
    return max(float(round(0.02 * std)), ZERO_CROSS_MIN_DEADBAND)


def detect_etf_zero_cross(flows_21d: pd.DataFrame | None) -> list[Alert]:
    """21-day ETF net flow sum changed sign beyond the deadband."""
    if flows_21d is None or len(flows_21d) < 2:
        return []
    sums = pd.to_numeric(flows_21d["sum21_usd"], errors="coerce")
    prev, curr = float(sums.iloc[-2]), float(sums.iloc[-1])
    if not (np.isfinite(prev) and np.isfinite(curr)) or np.sign(prev) == np.sign(curr):
        return []

    eps = zero_cross_deadband(sums.iloc[:-1])
    if abs(prev) <= eps or abs(curr) <= eps:
        return []

    change_musd = (curr - prev) / 1e6
    severity = determine_severity(AlertCategory.ETF_ZERO_CROSS, change_musd)
    if severity is None:
        return []

    day = date.fromisoformat(str(flows_21d["date"].iloc[-1]))
    turned = "inflows" if curr > 0 else "outflows"
    return [
        Alert(
            type=AlertCategory.ETF_ZERO_CROSS,
            severity=severity,
            timestamp=day_timestamp(day),
            factor="etf_flows",
            title=f"ETF 21-day flows turned to net {turned}",
            message=f"21-day net flow moved from ${prev / 1e6:,.1f}M to ${curr / 1e6:,.1f}M.",
            data={
                "previous_score": prev,
                "current_score": curr,
                "change_points": round(change_musd, 2),
                "deadband_usd": eps,
            },
            actions=["Check whether the flow regime shift persists over the next sessions"],
        )
    ]


def detect_factor_staleness(factors: Sequence[FactorResult], now: datetime) -> list[Alert]:
    """Factors whose latest datapoint is older than their freshness budget."""
    alerts: list[Alert] = []
    for f in factors:
        if not f.last_utc:
            continue
        spec = FACTOR_SPECS_BY_KEY.get(f.key)
        if spec is None:
            continue
        try:
            age_hours = (now - parse_timestamp(f.last_utc)).total_seconds() / 3600
        except ValueError:
            logger.warning(f"{f.key}: unparseable last_utc {f.last_utc!r}")
            continue
        over = age_hours - spec.ttl_hours
        if over <= 0:
            continue
        severity = determine_severity(AlertCategory.FACTOR_STALENESS, over)
        if severity is None:
            continue
        alerts.append(
            Alert(
                type=AlertCategory.FACTOR_STALENESS,
                severity=severity,
                timestamp=day_timestamp(now.date()),
                factor=f.key,
                title=f"{f.label} data is stale",
                message=f"Latest datapoint is {age_hours:.0f}h old (budget {spec.ttl_hours}h).",
                data={
                    "last_utc": f.last_utc,
                    "age_hours": round(age_hours, 1),
                    "ttl_hours": spec.ttl_hours,
                    "status": f.status.value,
                },
                actions=[f"Check the {f.source or 'upstream'} feed"],
            )
        )
    return alerts


def detect_factor_changes(
    factor_history: pd.DataFrame,
    factors: Sequence[FactorResult],
    as_of: date,
) -> list[Alert]:
    """Fresh factor scores that moved materially since the previous day."""
    prev = previous_day_row(factor_history, as_of)
    if prev is None:
        return []

    alerts: list[Alert] = []
    for f in factors:
        if f.status is not FactorStatus.FRESH or f.score is None:
            continue
        raw = prev.get(f"{f.key}_score")
        if raw is None or pd.isna(raw):
            continue
        previous = float(raw)
        change = f.score - previous
        severity = determine_severity(AlertCategory.FACTOR_CHANGE, change)
        if severity is None:
            continue
        direction = "rose" if change > 0 else "fell"
        alerts.append(
            Alert(
                type=AlertCategory.FACTOR_CHANGE,
                severity=severity,
                timestamp=day_timestamp(as_of),
                factor=f.key,
                title=f"{f.label} {direction} {abs(change):.0f} points",
                message=f"{f.label} moved from {previous:.0f} to {f.score:.0f}.",
                data={
                    "previous_score": previous,
                    "current_score": f.score,
                    "change_points": change,
                    "weight": f.weight,
                },
                actions=["Review the factor details for the driver of the move"],
            )
        )
    return alerts
