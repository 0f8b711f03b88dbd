"""Deduplicated, retention-pruned alert logs on disk.

Layout under the alerts directory:
    <category>.json   one JSON array per AlertCategory, newest first
    all.json          every retained alert, newest first

Merging is idempotent: an incoming alert is dropped when an existing one has
the same content id, or the same type and factor within an hour with a
change magnitude within one point.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from btc_risk.alerts.severity import MAX_ALERTS, retention_days
from btc_risk.models import Alert, AlertCategory
from btc_risk.utils.files import read_json, write_json_atomic
from btc_risk.utils.normalize import content_hash

logger = logging.getLogger(__name__)

FUZZY_WINDOW = timedelta(hours=1)
FUZZY_CHANGE_TOLERANCE = 1.0
COMBINED_FILE = "all.json"


def compute_alert_id(alert: Alert) -> str:
    """Content hash over the fields that make two alerts the same event."""
    return content_hash(
        {
            "type": alert.type.value,
            "factor": alert.factor,
            "timestamp": alert.timestamp,
            "previous_score": alert.data.get("previous_score"),
            "current_score": alert.data.get("current_score"),
            "change_points": alert.data.get("change_points"),
        }
    )


def with_id(alert: Alert) -> Alert:
    if not alert.id:
        alert.id = compute_alert_id(alert)
    return alert


def parse_timestamp(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def is_fuzzy_duplicate(a: Alert, b: Alert) -> bool:
    if a.type is not b.type or a.factor != b.factor:
        return False
    if abs(parse_timestamp(a.timestamp) - parse_timestamp(b.timestamp)) > FUZZY_WINDOW:
        return False
    ca, cb = a.change_points, b.change_points
    if ca is None or cb is None:
        return ca is None and cb is None
    return abs(abs(ca) - abs(cb)) <= FUZZY_CHANGE_TOLERANCE


def merge_alerts(existing: Sequence[Alert], incoming: Iterable[Alert]) -> tuple[list[Alert], int]:
    """
    Add incoming alerts that are not duplicates of anything already kept.

    Returns:
        (merged list, number of alerts actually added)
    """
    merged = [with_id(a) for a in existing]
    ids = {a.id for a in merged}
    added = 0
    for alert in incoming:
        alert = with_id(alert)
        if alert.id in ids or any(is_fuzzy_duplicate(alert, kept) for kept in merged):
            logger.debug(f"Dropping duplicate alert {alert.id} ({alert.type.value}/{alert.factor})")
            continue
        merged.append(alert)
        ids.add(alert.id)
        added += 1
    return merged, added


def newest_first(alerts: Iterable[Alert]) -> list[Alert]:
    return sorted(alerts, key=lambda a: (parse_timestamp(a.timestamp), a.id), reverse=True)


def prune(alerts: Iterable[Alert], now: datetime, max_alerts: int = MAX_ALERTS) -> list[Alert]:
    """Drop alerts past their category's retention window, newest first, capped."""
    kept = [
        a for a in alerts
        if now - parse_timestamp(a.timestamp) <= timedelta(days=retention_days(a.type))
    ]
    return newest_first(kept)[:max_alerts]


class AlertStore:
    """Per-category alert files plus a combined log."""

    def __init__(self, alerts_dir: Path, max_alerts: int = MAX_ALERTS):
        self.alerts_dir = Path(alerts_dir)
        self.max_alerts = max_alerts

    def path_for(self, category: AlertCategory) -> Path:
        return self.alerts_dir / f"{category.value}.json"

    @property
    def combined_path(self) -> Path:
        return self.alerts_dir / COMBINED_FILE

    def load(self, category: AlertCategory) -> list[Alert]:
        raw = read_json(self.path_for(category), default=[])
        if not isinstance(raw, list):
            logger.warning(f"{self.path_for(category)} is not an array; starting fresh")
            return []
        alerts: list[Alert] = []
        for entry in raw:
            try:
                alerts.append(Alert.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed alert in {category.value}: {e}")
        return alerts

    def save(self, category: AlertCategory, alerts: Sequence[Alert]) -> None:
        write_json_atomic(self.path_for(category), [a.to_dict() for a in alerts])

    def load_all(self) -> list[Alert]:
        return newest_first(a for category in AlertCategory for a in self.load(category))

    def record(self, alerts: Sequence[Alert], now: datetime | None = None) -> dict[str, Any]:
        """
        Merge new alerts into every category file and rebuild the combined log.

        Returns:
            Summary with per-category added/retained counts
        """
        now = now or datetime.now(timezone.utc)
        summary: dict[str, Any] = {}
        for category in AlertCategory:
            incoming = [a for a in alerts if a.type is category]
            merged, added = merge_alerts(self.load(category), incoming)
            retained = prune(merged, now, self.max_alerts)
            self.save(category, retained)
            summary[category.value] = {"added": added, "retained": len(retained)}
            if added:
                logger.info(f"Alerts {category.value}: +{added} ({len(retained)} retained)")

        combined = self.load_all()[: self.max_alerts]
        write_json_atomic(self.combined_path, [a.to_dict() for a in combined])
        summary["total"] = len(combined)
        return summary
