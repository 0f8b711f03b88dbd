"""Macro Overlay: dollar strength, front-end rates and equity volatility."""

from datetime import timedelta

import pandas as pd

from btc_risk.factors.base import FactorContext, factor_guard, iso_utc, is_stale, stale_outcome
from btc_risk.factors.fred import fetch_fred_series
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    blend_scores,
    pct_change,
    percentile_rank,
    risk_from_percentile,
    risk_from_z,
    round_half_up,
    z_score,
)

KEY = "macro_overlay"
SOURCE = "FRED"

LOOKBACK_DAYS = 3 * 365
CHANGE_DAYS = 20
MIN_POINTS = 60
WEIGHTS = {"dxy": 1.0, "rates": 1.0, "vix": 1.0}


def change_risk(changes: pd.Series) -> tuple[int | None, float | None]:
    """Risk from the z-score of the latest change within its own history."""
    changes = changes.dropna()
    if len(changes) < MIN_POINTS:
        return None, None
    latest = float(changes.iloc[-1])
    return risk_from_z(z_score(changes, latest)), latest


@factor_guard(KEY)
async def compute_macro_overlay(ctx: FactorContext) -> FactorOutcome:
    """
    Equal-weight blend of:
      - broad dollar index 20-day % change (a rising dollar is risk),
      - 2-year Treasury 20-day change (rising yields are risk),
      - VIX level percentile (higher volatility is risk).
    """
    if not ctx.settings.fred_api_key:
        return FactorOutcome.missing("fred_api_key")

    start = (ctx.now - timedelta(days=LOOKBACK_DAYS)).date()
    dxy = await fetch_fred_series(ctx, "DTWEXBGS", start)
    dgs2 = await fetch_fred_series(ctx, "DGS2", start)
    vix = await fetch_fred_series(ctx, "VIXCLS", start)

    available = [s for s in (dxy, dgs2, vix) if not s.empty]
    if not available:
        return FactorOutcome.insufficient()
    last = max(s.index[-1] for s in available)
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    dxy_score, dxy_change = change_risk(pct_change(dxy, CHANGE_DAYS))
    rates_score, rates_change = change_risk(dgs2.diff(CHANGE_DAYS))

    vix_score = None
    vix_latest = None
    if len(vix) >= MIN_POINTS:
        vix_latest = float(vix.iloc[-1])
        vix_score = risk_from_percentile(percentile_rank(vix, vix_latest))

    blended = blend_scores(
        {
            "dxy": (dxy_score, WEIGHTS["dxy"]),
            "rates": (rates_score, WEIGHTS["rates"]),
            "vix": (vix_score, WEIGHTS["vix"]),
        }
    )
    if blended is None:
        return FactorOutcome.insufficient()

    details = [
        Detail("Dollar index 20d", f"{dxy_change * 100:+.2f}%" if dxy_change is not None else "n/a"),
        Detail("2Y yield 20d", f"{rates_change * 100:+.0f} bps" if rates_change is not None else "n/a"),
        Detail("VIX", f"{vix_latest:.1f}" if vix_latest is not None else "n/a"),
    ]
    return FactorOutcome.ok(round_half_up(blended), details=details, last_utc=iso_utc(last), source=SOURCE)
