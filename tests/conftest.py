"""Pytest configuration and fixtures."""

from collections.abc import Callable, Iterator
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import pytest

from btc_risk.config import FACTOR_SPECS_BY_KEY, Settings
from btc_risk.data.cache import FactorCache
from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext
from btc_risk.models import FactorResult, FactorStatus

FIXED_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class StubHttp:
    """
    In-memory stand-in for HttpClient.

    Routes map a source name (the first argument factors pass, e.g.
    "fred:WALCL") to a payload, an exception instance, or a callable taking
    (url, params) and returning either.
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes: dict[str, Any] = dict(routes or {})
        self.calls: list[tuple[str, str, Any]] = []

    def _resolve(self, name: str, url: str, params: Any) -> Any:
        self.calls.append((name, url, params))
        if name not in self.routes:
            raise UpstreamError(url, f"HTTP 404: no stub for {name}", 404)
        value = self.routes[name]
        if callable(value) and not isinstance(value, BaseException):
            value = value(url, params)
        if isinstance(value, BaseException):
            raise value
        return value

    async def get_json(self, name: str, url: str, params: Any = None, headers: Any = None) -> Any:
        return self._resolve(name, url, params)

    async def get_text(self, name: str, url: str, params: Any = None, headers: Any = None) -> str:
        return self._resolve(name, url, params)

    def status_report(self) -> list[dict[str, Any]]:
        return [{"name": name, "ok": True, "ms": 0, "url": url} for name, url, _ in self.calls]

    def close(self) -> None:
        pass


@pytest.fixture
def now() -> datetime:
    """Fixed run clock (Saturday 2024-06-15 12:00 UTC)."""
    return FIXED_NOW


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings writing under a temp dir, with a FRED key configured."""
    return Settings(
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / "cache",
        fred_api_key="test-key",
        price_history_min_rows=500,
    )


@pytest.fixture
def cache(settings: Settings) -> Iterator[FactorCache]:
    c = FactorCache(settings.cache_dir)
    yield c
    c.close()


@pytest.fixture
def make_ctx(settings: Settings, cache: FactorCache, now: datetime) -> Callable[..., FactorContext]:
    """Build a FactorContext around a StubHttp with the given routes."""

    def _make(routes: dict[str, Any] | None = None, prices: pd.Series | None = None, **overrides: Any) -> FactorContext:
        return FactorContext(
            settings=overrides.pop("settings", settings),
            http=StubHttp(routes),
            cache=cache,
            now=overrides.pop("now", now),
            prices=prices if prices is not None else pd.Series(dtype=float, index=pd.DatetimeIndex([])),
        )

    return _make


@pytest.fixture
def sample_price_series() -> pd.Series:
    """Sample price series for indicator testing."""
    return pd.Series(
        [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5,
         107.0, 108.0, 107.5, 109.0, 110.0, 109.5, 111.0, 112.0, 111.5, 113.0,
         114.0, 113.5, 115.0, 116.0, 115.5, 117.0, 118.0, 117.5, 119.0, 120.0]
    )


def daily_index(days: int, end: datetime = FIXED_NOW) -> pd.DatetimeIndex:
    """`days` consecutive UTC days ending on end's date (naive timestamps)."""
    last = pd.Timestamp(end.date())
    return pd.date_range(end=last, periods=days, freq="D")


@pytest.fixture
def trending_prices() -> pd.Series:
    """400 daily closes: a noisy uptrend ending on the fixed run date."""
    rng = np.random.default_rng(7)
    steps = rng.normal(0.002, 0.02, size=400)
    values = 30000 * np.exp(np.cumsum(steps))
    return pd.Series(values, index=daily_index(400), dtype=float)


def fred_payload(index: pd.DatetimeIndex, values: list[float] | np.ndarray) -> dict[str, Any]:
    """FRED observations payload for the given dates and values."""
    return {
        "observations": [
            {"date": d.strftime("%Y-%m-%d"), "value": f"{v}"} for d, v in zip(index, values)
        ]
    }


def epoch_points(index: pd.DatetimeIndex, values: list[float] | np.ndarray, key_x: str = "x", key_y: str = "y") -> list[dict[str, Any]]:
    return [
        {key_x: int(d.tz_localize("UTC").timestamp()), key_y: float(v)} for d, v in zip(index, values)
    ]


def market_chart(index: pd.DatetimeIndex, supply: np.ndarray, price: float = 1.0) -> dict[str, Any]:
    """CoinGecko market_chart payload with a flat price."""
    ms = [int(d.tz_localize("UTC").timestamp() * 1000) for d in index]
    return {
        "prices": [[t, price] for t in ms],
        "market_caps": [[t, float(s) * price] for t, s in zip(ms, supply)],
    }


def price_for(day: date) -> float:
    """Deterministic sawtooth close for a UTC day."""
    return 20000.0 + (day.toordinal() % 1000) * 10.0


def candle_route(url: str, params: dict[str, Any]) -> list[list[float]]:
    """Coinbase-style daily candles (newest first) for every day in [start, end]."""
    start = datetime.strptime(params["start"], "%Y-%m-%dT%H:%M:%SZ").date()
    end = datetime.strptime(params["end"], "%Y-%m-%dT%H:%M:%SZ").date()
    out = []
    day = start
    while day <= end:
        ts = datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp()
        close = price_for(day)
        out.append([ts, close - 50, close + 50, close - 10, close, 100.0])
        day += timedelta(days=1)
    return list(reversed(out))


def make_factor(
    key: str,
    score: float | None = None,
    status: FactorStatus = FactorStatus.FRESH,
    last_utc: str | None = "2024-06-15T00:00:00Z",
) -> FactorResult:
    """FactorResult stamped from FACTOR_SPECS_BY_KEY."""
    spec = FACTOR_SPECS_BY_KEY[key]
    reasons = {
        FactorStatus.FRESH: "success",
        FactorStatus.STALE: "stale_data",
        FactorStatus.EXCLUDED: "insufficient_data",
    }
    return FactorResult(
        key=key,
        label=spec.label,
        pillar=spec.pillar,
        weight=spec.weight,
        score=score,
        status=status,
        reason=reasons[status],
        last_utc=last_utc,
        source="test",
        counts_toward=spec.counts_toward,
    )
