"""Stablecoins: USDT + USDC supply growth as dry powder for BTC."""

import pandas as pd

from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import (
    FactorContext,
    factor_guard,
    fmt_money,
    fmt_pct,
    iso_utc,
    is_stale,
    stale_outcome,
)
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import pct_change, percentile_rank, risk_from_percentile

KEY = "stablecoins"
SOURCE = "CoinGecko"

COINGECKO_CHART_URL = "https://api.coingecko.com/api/v3/coins/{coin_id}/market_chart"
COINS = ("tether", "usd-coin")
LOOKBACK_DAYS = 90
MIN_POINTS = 40
CHANGE_DAYS = 30


def _pairs_to_series(pairs: list, url: str) -> pd.Series:
    if not isinstance(pairs, list) or not pairs:
        raise UpstreamError(url, "CoinGecko chart payload missing series")
    df = pd.DataFrame([p[:2] for p in pairs if isinstance(p, list) and len(p) >= 2], columns=["ts", "v"])
    index = pd.to_datetime(pd.to_numeric(df["ts"], errors="coerce"), unit="ms", utc=True)
    series = pd.Series(pd.to_numeric(df["v"], errors="coerce").to_numpy(), index=index, dtype=float)
    series = series[series.index.notna()].dropna()
    # One value per UTC day, last observation wins
    series.index = series.index.tz_convert(None).normalize()
    return series.groupby(level=0).last()


def supply_from_chart(payload: dict, url: str) -> pd.Series:
    """Circulating supply approximated as market cap / price, per UTC day."""
    if not isinstance(payload, dict):
        raise UpstreamError(url, "CoinGecko chart payload is not an object")
    caps = _pairs_to_series(payload.get("market_caps"), url)
    prices = _pairs_to_series(payload.get("prices"), url)
    aligned = pd.concat({"cap": caps, "price": prices}, axis=1, join="inner")
    aligned = aligned[aligned["price"] > 0]
    return (aligned["cap"] / aligned["price"]).astype(float)


@factor_guard(KEY)
async def compute_stablecoins(ctx: FactorContext) -> FactorOutcome:
    """Rank the 30-day change in combined supply; faster growth means lower risk."""
    headers = {"x-cg-demo-api-key": ctx.settings.coingecko_api_key} if ctx.settings.coingecko_api_key else None

    supplies: dict[str, pd.Series] = {}
    for coin_id in COINS:
        url = COINGECKO_CHART_URL.format(coin_id=coin_id)
        payload = await ctx.http.get_json(
            f"coingecko:{coin_id}",
            url,
            params={"vs_currency": "usd", "days": LOOKBACK_DAYS, "interval": "daily"},
            headers=headers,
        )
        supplies[coin_id] = supply_from_chart(payload, url)

    frame = pd.concat(supplies, axis=1, join="inner").dropna()
    if len(frame) < MIN_POINTS:
        return FactorOutcome.insufficient([Detail("Daily points", str(len(frame)))])

    last = frame.index[-1]
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    total = frame.sum(axis=1)
    change = pct_change(total, CHANGE_DAYS).dropna()
    if change.empty:
        return FactorOutcome.insufficient()
    latest_change = float(change.iloc[-1])
    score = risk_from_percentile(percentile_rank(change, latest_change), invert=True)

    dominance = frame["tether"] / total * 100
    dominance_delta = None
    if len(dominance) > CHANGE_DAYS:
        dominance_delta = float(dominance.iloc[-1] - dominance.iloc[-1 - CHANGE_DAYS])

    details = [
        Detail("Combined supply", fmt_money(float(total.iloc[-1]))),
        Detail(f"{CHANGE_DAYS}d supply change", fmt_pct(latest_change * 100, 2)),
        Detail(
            "USDT dominance Δ30d",
            f"{dominance_delta:+.2f} pts" if dominance_delta is not None else "n/a",
            "Share of combined supply held in USDT",
        ),
    ]
    return FactorOutcome.ok(score, details=details, last_utc=iso_utc(last), source=SOURCE)
