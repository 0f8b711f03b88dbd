"""Per-category severity thresholds and retention windows."""

from dataclasses import dataclass

from btc_risk.models import AlertCategory, Severity
from btc_risk.utils.validators import validate_thresholds


@dataclass(frozen=True)
class SeverityThresholds:
    """Minimum magnitude for each severity; below `low` there is no alert."""

    critical: float
    high: float
    medium: float
    low: float
    unit: str

    def classify(self, magnitude: float | None) -> Severity | None:
        if magnitude is None:
            return None
        m = abs(magnitude)
        if m >= self.critical:
            return Severity.CRITICAL
        if m >= self.high:
            return Severity.HIGH
        if m >= self.medium:
            return Severity.MEDIUM
        if m >= self.low:
            return Severity.LOW
        return None


SEVERITY_THRESHOLDS: dict[AlertCategory, SeverityThresholds] = {
    AlertCategory.FACTOR_CHANGE: SeverityThresholds(30, 20, 10, 5, "points"),
    AlertCategory.RISK_BAND_CHANGE: SeverityThresholds(25, 15, 10, 5, "points"),
    AlertCategory.ETF_ZERO_CROSS: SeverityThresholds(100, 50, 25, 10, "usd_millions"),
    AlertCategory.FACTOR_STALENESS: SeverityThresholds(72, 48, 24, 12, "hours_over_ttl"),
    AlertCategory.SIGNIFICANT_SCORE_CHANGE: SeverityThresholds(30, 20, 15, 10, "points"),
    AlertCategory.CYCLE_ADJUSTMENT: SeverityThresholds(15, 10, 5, 2, "adjustment_points"),
    AlertCategory.SPIKE_ADJUSTMENT: SeverityThresholds(10, 6, 3, 1, "adjustment_points"),
    AlertCategory.SMA50W_WARNING: SeverityThresholds(6, 4, 2, 1, "weeks_below"),
}

RETENTION_DAYS: dict[AlertCategory, int] = {
    AlertCategory.FACTOR_STALENESS: 7,
}
DEFAULT_RETENTION_DAYS = 30
MAX_ALERTS = 1000


def determine_severity(category: AlertCategory, magnitude: float | None) -> Severity | None:
    """Severity for a magnitude in the category's unit, or None if too small."""
    return SEVERITY_THRESHOLDS[category].classify(magnitude)


def retention_days(category: AlertCategory) -> int:
    return RETENTION_DAYS.get(category, DEFAULT_RETENTION_DAYS)


validate_thresholds(SEVERITY_THRESHOLDS, list(AlertCategory))
