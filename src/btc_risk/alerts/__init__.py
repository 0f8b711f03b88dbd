"""Alert detection, severity and storage."""

from btc_risk.alerts.detectors import (
    detect_adjustment,
    detect_band_change,
    detect_etf_zero_cross,
    detect_factor_changes,
    detect_factor_staleness,
    detect_score_change,
    detect_sma50w_warning,
)
from btc_risk.alerts.severity import SEVERITY_THRESHOLDS, SeverityThresholds, determine_severity
from btc_risk.alerts.store import AlertStore, compute_alert_id, merge_alerts, prune

__all__ = [
    "AlertStore",
    "SEVERITY_THRESHOLDS",
    "SeverityThresholds",
    "compute_alert_id",
    "detect_adjustment",
    "detect_band_change",
    "detect_etf_zero_cross",
    "detect_factor_changes",
    "detect_factor_staleness",
    "detect_score_change",
    "detect_sma50w_warning",
    "determine_severity",
    "merge_alerts",
    "prune",
]
