"""Shared plumbing for factor computations."""

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Protocol

import pandas as pd

from btc_risk.config import FACTOR_SPECS_BY_KEY, Settings
from btc_risk.data.cache import FactorCache
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)


class JsonTextClient(Protocol):
    """What factors need from the HTTP layer."""

    async def get_json(self, name: str, url: str, params: Any = None, headers: Any = None) -> Any: ...

    async def get_text(self, name: str, url: str, params: Any = None, headers: Any = None) -> str: ...


@dataclass
class FactorContext:
    """Everything a factor may read. Factors never touch globals or the clock."""

    settings: Settings
    http: JsonTextClient
    cache: FactorCache
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    prices: pd.Series = field(default_factory=lambda: pd.Series(dtype=float, index=pd.DatetimeIndex([])))


FactorFunc = Callable[[FactorContext], Awaitable[FactorOutcome]]


def factor_guard(key: str) -> Callable[[FactorFunc], FactorFunc]:
    """
    Convert any exception escaping a factor into an excluded outcome.

    Upstream errors and malformed payloads become reason "error: <message>";
    the run continues with the remaining factors.
    """

    def decorator(func: FactorFunc) -> FactorFunc:
        @functools.wraps(func)
        async def wrapper(ctx: FactorContext) -> FactorOutcome:
            try:
                return await func(ctx)
            except Exception as e:
                logger.warning(f"{key}: computation failed: {e}", exc_info=True)
                return FactorOutcome.error(sanitize_text(str(e), max_length=200) or type(e).__name__)

        return wrapper

    return decorator


def to_utc_date(value: date | datetime | pd.Timestamp) -> date:
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def iso_utc(value: date | datetime | pd.Timestamp) -> str:
    """ISO timestamp (UTC, Z suffix) for a data date or datetime."""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"{value.isoformat()}T00:00:00Z"


def days_old(last: date | datetime | pd.Timestamp, now: datetime) -> int:
    return (to_utc_date(now) - to_utc_date(last)).days


def is_stale(key: str, last: date | datetime | pd.Timestamp, now: datetime) -> bool:
    """True when the latest datapoint is older than the factor's limit."""
    return days_old(last, now) > FACTOR_SPECS_BY_KEY[key].stale_after_days


def stale_outcome(
    key: str,
    last: date | datetime | pd.Timestamp,
    now: datetime,
    source: str | None = None,
) -> FactorOutcome:
    age = days_old(last, now)
    logger.warning(f"{key}: latest datapoint is {age} days old; marking stale")
    return FactorOutcome.stale(
        iso_utc(last),
        details=[Detail("Data age", f"{age} days")],
        source=source,
    )


def fmt_pct(value: float | None, digits: int = 1) -> str:
    if value is None:
        return "n/a"
    return f"{value:+.{digits}f}%"


def fmt_money(value: float | None) -> str:
    """$1.23T / $4.56B / $7.89M style."""
    if value is None:
        return "n/a"
    sign = "-" if value < 0 else ""
    v = abs(value)
    for unit, scale in (("T", 1e12), ("B", 1e9), ("M", 1e6), ("K", 1e3)):
        if v >= scale:
            return f"{sign}${v / scale:.2f}{unit}"
    return f"{sign}${v:,.0f}"
