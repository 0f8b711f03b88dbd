"""Core data types shared across the pipeline."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class PriceSource(str, Enum):
    """Provider of a stored daily close."""

    PRIMARY = "coinbase"
    BACKFILL = "coinbase_historical"

    @property
    def precedence(self) -> int:
        """Lower wins when two records share a date."""
        return 0 if self is PriceSource.PRIMARY else 1


class Pillar(str, Enum):
    MOMENTUM = "momentum"
    LIQUIDITY = "liquidity"
    LEVERAGE = "leverage"
    SOCIAL = "social"
    MACRO = "macro"


class FactorStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXCLUDED = "excluded"


class ErrorKind(str, Enum):
    """Closed set of failure classes for fallible operations."""

    MISSING_CONFIG = "missing_config"
    UPSTREAM = "upstream"
    INSUFFICIENT_DATA = "insufficient_data"
    STALE = "stale"
    SCHEMA_DRIFT = "schema_drift"
    PARSE = "parse"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class AlertCategory(str, Enum):
    FACTOR_CHANGE = "factor_change"
    RISK_BAND_CHANGE = "risk_band_change"
    ETF_ZERO_CROSS = "etf_zero_cross"
    FACTOR_STALENESS = "factor_staleness"
    SIGNIFICANT_SCORE_CHANGE = "significant_score_change"
    CYCLE_ADJUSTMENT = "cycle_adjustment"
    SPIKE_ADJUSTMENT = "spike_adjustment"
    SMA50W_WARNING = "sma50w_warning"


@dataclass
class Result(Generic[T]):
    """Outcome of a fallible operation that must not raise to its caller."""

    ok: bool
    value: T | None = None
    error: ErrorKind | None = None
    message: str = ""

    @classmethod
    def success(cls, value: T, message: str = "") -> "Result[T]":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Result[T]":
        return cls(ok=False, error=error, message=message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.ok}
        if not self.ok:
            out["error"] = self.error.value if self.error else None
            out["reason"] = self.message
        elif self.message:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class PricePoint:
    """One daily BTC close."""

    date: date
    close: float
    source: PriceSource
    ingested_at: datetime


@dataclass
class Detail:
    """Human-readable diagnostic line attached to a factor."""

    label: str
    value: Any
    tooltip: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"label": self.label, "value": self.value}
        if self.tooltip:
            out["tooltip"] = self.tooltip
        return out


@dataclass
class FactorOutcome:
    """
    What a single factor computation produced.

    score is None whenever reason is anything other than "success".
    extras carries in-memory artifacts (series, hashes) for the driver and is
    never serialized.
    """

    score: float | None
    reason: str = "success"
    details: list[Detail] = field(default_factory=list)
    last_utc: str | None = None
    source: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        score: float,
        details: list[Detail] | None = None,
        last_utc: str | None = None,
        source: str | None = None,
        **extras: Any,
    ) -> "FactorOutcome":
        return cls(
            score=score,
            details=details or [],
            last_utc=last_utc,
            source=source,
            extras=extras,
        )

    @classmethod
    def missing(cls, dependency: str) -> "FactorOutcome":
        return cls(score=None, reason=f"missing_{dependency}")

    @classmethod
    def error(cls, exc: BaseException | str) -> "FactorOutcome":
        return cls(score=None, reason=f"error: {exc}")

    @classmethod
    def insufficient(cls, details: list[Detail] | None = None) -> "FactorOutcome":
        return cls(score=None, reason="insufficient_data", details=details or [])

    @classmethod
    def stale(
        cls,
        last_utc: str | None,
        details: list[Detail] | None = None,
        source: str | None = None,
    ) -> "FactorOutcome":
        return cls(
            score=None,
            reason="stale_data",
            details=details or [],
            last_utc=last_utc,
            source=source,
        )


@dataclass
class FactorResult:
    """A factor outcome stamped with its static spec."""

    key: str
    label: str
    pillar: Pillar
    weight: float
    score: float | None
    status: FactorStatus
    reason: str
    details: list[Detail] = field(default_factory=list)
    last_utc: str | None = None
    source: str | None = None
    counts_toward: Pillar | None = None

    def __post_init__(self) -> None:
        if self.score is not None and (
            not math.isfinite(self.score) or self.status is not FactorStatus.FRESH
        ):
            raise ValueError(f"{self.key}: score set on a {self.status.value} factor")
        if self.status is FactorStatus.FRESH and self.score is None:
            raise ValueError(f"{self.key}: fresh factor without a score")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "pillar": self.pillar.value,
            "weight": self.weight,
            "score": self.score,
            "status": self.status.value,
            "reason": self.reason,
            "last_utc": self.last_utc,
            "source": self.source,
            "details": [d.to_dict() for d in self.details],
        }
        if self.counts_toward is not None:
            out["counts_toward"] = self.counts_toward.value
        return out


@dataclass(frozen=True)
class Band:
    """Risk band covering [lower, upper); the top band is closed at 100."""

    key: str
    label: str
    lower: float
    upper: float
    color: str
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "range": [self.lower, self.upper],
            "color": self.color,
            "recommendation": self.recommendation,
        }


@dataclass
class CompositeResult:
    date: date
    score: float
    band: Band
    weighted_factors: list[FactorResult]
    total_weight: float
    fallback: bool = False
    raw: float | None = None


@dataclass
class Alert:
    """A detector finding, identified by a content hash."""

    type: AlertCategory
    severity: Severity
    timestamp: str
    title: str
    message: str
    factor: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[str] = field(default_factory=list)
    id: str = ""

    @property
    def change_points(self) -> float | None:
        return self.data.get("change_points")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "factor": self.factor,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "actions": self.actions,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Alert":
        """
        Rebuild a stored alert.

        Raises:
            TypeError: If raw or its data block is not an object
            ValueError: If the timestamp or change_points is unusable
        """
        if not isinstance(raw, dict):
            raise TypeError(f"alert entry is {type(raw).__name__}, not an object")
        timestamp = raw["timestamp"]
        if not isinstance(timestamp, str):
            raise ValueError(f"timestamp {timestamp!r} is not a string")
        datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        data = raw.get("data") or {}
        if not isinstance(data, dict):
            raise TypeError("alert data is not an object")
        change = data.get("change_points")
        if change is not None and (isinstance(change, bool) or not isinstance(change, (int, float))):
            raise ValueError(f"change_points {change!r} is not a number")
        return cls(
            id=str(raw.get("id") or ""),
            type=AlertCategory(raw["type"]),
            severity=Severity(raw["severity"]),
            timestamp=timestamp,
            factor=raw.get("factor"),
            title=raw.get("title", ""),
            message=raw.get("message", ""),
            data=dict(data),
            actions=list(raw.get("actions") or []),
        )
