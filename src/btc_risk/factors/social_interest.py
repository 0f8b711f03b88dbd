"""Social Interest: Crypto Fear & Greed index."""

import pandas as pd

from btc_risk.data.cache import fingerprint
from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext, factor_guard, iso_utc, is_stale, stale_outcome
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import percentile_rank, risk_from_percentile

KEY = "social_interest"
SOURCE = "Alternative.me"

FNG_URL = "https://api.alternative.me/fng/"
WINDOW_DAYS = 730
MIN_POINTS = 30


def sentiment_label(value: float) -> str:
    if value >= 75:
        return "Extreme Greed"
    if value >= 55:
        return "Greed"
    if value >= 45:
        return "Neutral"
    if value >= 25:
        return "Fear"
    return "Extreme Fear"


def fng_series(payload: dict) -> pd.Series:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list) or not data:
        raise UpstreamError(FNG_URL, "Fear & Greed payload has no data")
    df = pd.DataFrame(data)
    index = pd.to_datetime(pd.to_numeric(df["timestamp"], errors="coerce"), unit="s", errors="coerce")
    series = pd.Series(pd.to_numeric(df["value"], errors="coerce").to_numpy(), index=index, dtype=float)
    series = series[series.index.notna()].dropna().sort_index()
    return series[~series.index.duplicated(keep="last")]


async def _score_sentiment(window: pd.Series) -> FactorOutcome:
    latest = float(window.iloc[-1])
    score = risk_from_percentile(percentile_rank(window, latest))
    details = [
        Detail("Fear & Greed", f"{latest:.0f} ({sentiment_label(latest)})"),
        Detail("2y percentile", f"{percentile_rank(window, latest) * 100:.0f}th"),
        Detail("30d average", f"{float(window.tail(30).mean()):.0f}"),
    ]
    return FactorOutcome.ok(score, details=details, last_utc=iso_utc(window.index[-1]), source=SOURCE)


@factor_guard(KEY)
async def compute_social_interest(ctx: FactorContext) -> FactorOutcome:
    """Percentile of today's Fear & Greed reading within two years; greed is risk."""
    payload = await ctx.http.get_json("alternative:fng", FNG_URL, params={"limit": 0, "format": "json"})
    series = fng_series(payload)

    cutoff = pd.Timestamp(ctx.now.replace(tzinfo=None)) - pd.Timedelta(days=WINDOW_DAYS)
    window = series[series.index >= cutoff]
    if len(window) < MIN_POINTS:
        return FactorOutcome.insufficient([Detail("Daily readings", str(len(window)))])

    last = window.index[-1]
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    fp = fingerprint(KEY, last.isoformat(), float(window.iloc[-1]), len(window))
    return await ctx.cache.get_or_compute(KEY, fp, lambda: _score_sentiment(window))
