"""Term Structure & Leverage: perpetual swap funding rates."""

import pandas as pd

from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext, factor_guard, iso_utc, is_stale, stale_outcome
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    blend_scores,
    percentile_rank,
    risk_from_percentile,
    round_half_up,
)

KEY = "term_leverage"
SOURCE = "BitMEX"

BITMEX_FUNDING_URL = "https://www.bitmex.com/api/v1/funding"
SAMPLES_PER_DAY = 3  # 8-hour funding intervals
SHORT_SAMPLES = 7 * SAMPLES_PER_DAY
LONG_SAMPLES = 30 * SAMPLES_PER_DAY
WEIGHTS = {"magnitude": 0.5, "momentum": 0.5}


def funding_series(payload: list) -> pd.Series:
    """fundingRate indexed by timestamp, ascending."""
    if not isinstance(payload, list) or not payload:
        raise UpstreamError(BITMEX_FUNDING_URL, "Empty funding payload")
    df = pd.DataFrame(payload)
    if "timestamp" not in df.columns or "fundingRate" not in df.columns:
        raise UpstreamError(BITMEX_FUNDING_URL, "Funding payload missing timestamp/fundingRate")
    series = pd.Series(
        pd.to_numeric(df["fundingRate"], errors="coerce").to_numpy(),
        index=pd.to_datetime(df["timestamp"], utc=True, errors="coerce"),
        dtype=float,
    )
    return series[series.index.notna()].dropna().sort_index()


@factor_guard(KEY)
async def compute_term_leverage(ctx: FactorContext) -> FactorOutcome:
    """
    Score funding heat: the 7-day average's magnitude (50%) and its lead over
    the 30-day average (50%), each ranked against its own history. Hotter
    funding means more leverage and higher risk.
    """
    payload = await ctx.http.get_json(
        "bitmex:funding",
        BITMEX_FUNDING_URL,
        params={"symbol": "XBTUSD", "count": 500, "reverse": "true"},
    )
    funding = funding_series(payload)
    if len(funding) < LONG_SAMPLES + SHORT_SAMPLES:
        return FactorOutcome.insufficient([Detail("Funding samples", str(len(funding)))])

    last = funding.index[-1]
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    m7 = funding.rolling(SHORT_SAMPLES, min_periods=SHORT_SAMPLES).mean()
    m30 = funding.rolling(LONG_SAMPLES, min_periods=LONG_SAMPLES).mean()

    magnitude = m7.abs().dropna()
    latest_mag = float(magnitude.iloc[-1])
    magnitude_score = risk_from_percentile(percentile_rank(magnitude, latest_mag))

    momentum = (m7 - m30).dropna()
    momentum_score = None
    latest_mom = None
    if not momentum.empty:
        latest_mom = float(momentum.iloc[-1])
        momentum_score = risk_from_percentile(percentile_rank(momentum, latest_mom))

    blended = blend_scores(
        {
            "magnitude": (magnitude_score, WEIGHTS["magnitude"]),
            "momentum": (momentum_score, WEIGHTS["momentum"]),
        }
    )
    if blended is None:
        return FactorOutcome.insufficient()

    # Annualized: 3 fundings a day, 365 days
    details = [
        Detail("Funding 7d avg", f"{float(m7.iloc[-1]) * 100:.4f}% ({float(m7.iloc[-1]) * 3 * 365 * 100:.1f}% APR)"),
        Detail("Funding 30d avg", f"{float(m30.iloc[-1]) * 100:.4f}%"),
        Detail(
            "7d vs 30d",
            f"{latest_mom * 100:+.4f}%" if latest_mom is not None else "n/a",
            "Positive when funding is heating up",
        ),
    ]
    return FactorOutcome.ok(
        round_half_up(blended),
        details=details,
        last_utc=iso_utc(last),
        source=SOURCE,
    )
