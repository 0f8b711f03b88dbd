"""Net Liquidity: Fed balance sheet less reverse repo and the Treasury General Account."""

from datetime import timedelta

import pandas as pd

from btc_risk.factors.base import (
    FactorContext,
    factor_guard,
    fmt_money,
    iso_utc,
    is_stale,
    stale_outcome,
)
from btc_risk.factors.fred import fetch_fred_series
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    blend_scores,
    percentile_rank,
    risk_from_percentile,
    round_half_up,
)

KEY = "net_liquidity"
SOURCE = "FRED"

LOOKBACK_WEEKS = 170
MIN_WEEKS = 26
CHANGE_WEEKS = 4
WEIGHTS = {"level": 0.7, "change": 0.3}


def build_net_liquidity(walcl: pd.Series, rrp: pd.Series, tga: pd.Series) -> pd.Series:
    """
    Weekly net liquidity in USD millions.

    WALCL and WTREGEN are reported in millions, RRPONTSYD in billions. Series
    are aligned on WALCL's weekly dates with the latest prior observation of
    the others carried forward.
    """
    frame = pd.concat(
        {"walcl": walcl, "rrp": rrp * 1000.0, "tga": tga},
        axis=1,
    ).sort_index()
    frame[["rrp", "tga"]] = frame[["rrp", "tga"]].ffill()
    frame = frame.loc[walcl.index.intersection(frame.index)].dropna()
    return (frame["walcl"] - frame["rrp"] - frame["tga"]).astype(float)


@factor_guard(KEY)
async def compute_net_liquidity(ctx: FactorContext) -> FactorOutcome:
    """
    Rank the net liquidity level (70%) and its 4-week change (30%) against
    roughly three years of weekly history. More liquidity means lower risk.
    """
    if not ctx.settings.fred_api_key:
        return FactorOutcome.missing("fred_api_key")

    start = (ctx.now - timedelta(weeks=LOOKBACK_WEEKS)).date()
    walcl = await fetch_fred_series(ctx, "WALCL", start)
    rrp = await fetch_fred_series(ctx, "RRPONTSYD", start)
    tga = await fetch_fred_series(ctx, "WTREGEN", start)

    net = build_net_liquidity(walcl, rrp, tga)
    if len(net) < MIN_WEEKS:
        return FactorOutcome.insufficient([Detail("Weekly points", str(len(net)))])

    last = net.index[-1]
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    latest = float(net.iloc[-1])
    level_score = risk_from_percentile(percentile_rank(net, latest), invert=True)

    change = net.diff(CHANGE_WEEKS).dropna()
    change_score = None
    latest_change = None
    if not change.empty:
        latest_change = float(change.iloc[-1])
        change_score = risk_from_percentile(percentile_rank(change, latest_change), invert=True)

    blended = blend_scores(
        {
            "level": (level_score, WEIGHTS["level"]),
            "change": (change_score, WEIGHTS["change"]),
        }
    )
    if blended is None:
        return FactorOutcome.insufficient()

    details = [
        Detail("Net liquidity", fmt_money(latest * 1e6), "WALCL - RRPONTSYD - WTREGEN"),
        Detail(
            f"{CHANGE_WEEKS}-week change",
            fmt_money(latest_change * 1e6) if latest_change is not None else "n/a",
        ),
        Detail("Fed balance sheet", fmt_money(float(walcl.iloc[-1]) * 1e6)),
    ]
    return FactorOutcome.ok(
        round_half_up(blended),
        details=details,
        last_utc=iso_utc(last),
        source=SOURCE,
    )
