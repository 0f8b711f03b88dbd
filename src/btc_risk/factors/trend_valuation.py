"""Trend & Valuation: bull-market support band, Mayer multiple, weekly RSI."""

import logging

import pandas as pd

from btc_risk.data.cache import fingerprint
from btc_risk.factors.base import FactorContext, factor_guard, iso_utc, is_stale, stale_outcome
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    blend_scores,
    calculate_ema,
    calculate_rsi,
    calculate_sma,
    percentile_rank,
    risk_from_percentile,
    round_half_up,
)
from btc_risk.utils.ohlcv import weekly_closes

logger = logging.getLogger(__name__)

KEY = "trend_valuation"
SOURCE = "Coinbase"

MIN_DAILY_CLOSES = 200
MIN_WEEKS_BMSB = 22
SMA50W_WARN_WEEKS = 2

WEIGHTS = {"bmsb": 0.6, "mayer": 0.3, "rsi": 0.1}


def bmsb_position(weekly: pd.Series) -> dict | None:
    """
    Position of the last weekly close against the bull-market support band
    (20-week SMA and 21-week EMA).

    Returns:
        Dict with sma20, ema21, mid, distance_pct and status
        ("above" | "below" | "inside"), or None with fewer than 22 weeks
    """
    if len(weekly) < MIN_WEEKS_BMSB:
        return None
    sma20 = float(calculate_sma(weekly, 20).iloc[-1])
    ema21 = float(calculate_ema(weekly, 21).iloc[-1])
    close = float(weekly.iloc[-1])
    mid = (sma20 + ema21) / 2
    if mid <= 0:
        return None

    if close > max(sma20, ema21):
        status = "above"
    elif close < min(sma20, ema21):
        status = "below"
    else:
        status = "inside"

    return {
        "sma20": sma20,
        "ema21": ema21,
        "mid": mid,
        "distance_pct": (close - mid) / mid * 100,
        "status": status,
    }


def bmsb_percentile(distance_pct: float) -> float:
    """Map distance from the band mid to a pseudo-percentile in [0.01, 0.99]."""
    return min(max(0.5 + distance_pct * 0.02, 0.01), 0.99)


def weeks_below_sma50w(weekly: pd.Series) -> int | None:
    """Consecutive most-recent weeks closing below the 50-week SMA."""
    sma50 = calculate_sma(weekly, 50)
    valid = sma50.notna()
    if not valid.any():
        return None
    below = (weekly < sma50)[valid]
    count = 0
    for flag in reversed(below.tolist()):
        if not flag:
            break
        count += 1
    return count


def sma50w_status(closes: pd.Series) -> dict | None:
    """
    Last weekly close against the 50-week SMA.

    Returns:
        Dict with sma50, current_close, weeks_below, is_below and
        price_vs_sma_pct, or None with fewer than 50 weekly closes
    """
    weekly = weekly_closes(closes.dropna())
    weeks = weeks_below_sma50w(weekly)
    if weeks is None:
        return None
    sma50 = float(calculate_sma(weekly, 50).iloc[-1])
    close = float(weekly.iloc[-1])
    return {
        "sma50": round(sma50, 2),
        "current_close": round(close, 2),
        "weeks_below": weeks,
        "is_below": close < sma50,
        "price_vs_sma_pct": round((close - sma50) / sma50 * 100, 2),
    }


async def _score_trend(closes: pd.Series) -> FactorOutcome:
    details: list[Detail] = [Detail("BTC price", f"${closes.iloc[-1]:,.0f}")]

    sma200 = calculate_sma(closes, 200)
    mayer = (closes / sma200).dropna()
    mayer_score = None
    if not mayer.empty:
        latest_mayer = float(mayer.iloc[-1])
        mayer_score = risk_from_percentile(percentile_rank(mayer, latest_mayer))
        details.append(
            Detail(
                "Mayer multiple",
                f"{latest_mayer:.2f}",
                "Price divided by its 200-day SMA, ranked against its own history",
            )
        )

    weekly = weekly_closes(closes)
    bmsb = bmsb_position(weekly)
    bmsb_score = None
    if bmsb is not None:
        bmsb_score = risk_from_percentile(bmsb_percentile(bmsb["distance_pct"]))
        details.append(
            Detail(
                "Bull market support band",
                f"{bmsb['status']} ({bmsb['distance_pct']:+.1f}% from mid)",
                "20-week SMA / 21-week EMA band",
            )
        )
    else:
        details.append(Detail("Bull market support band", f"needs {MIN_WEEKS_BMSB} weeks"))

    rsi = calculate_rsi(weekly, 14).dropna()
    rsi_score = None
    if not rsi.empty:
        latest_rsi = float(rsi.iloc[-1])
        rsi_score = risk_from_percentile(percentile_rank(rsi, latest_rsi))
        details.append(Detail("Weekly RSI(14)", f"{latest_rsi:.1f}"))

    below = weeks_below_sma50w(weekly)
    if below is not None and below >= SMA50W_WARN_WEEKS:
        logger.info(f"{KEY}: {below} consecutive weekly closes below the 50W SMA")
        details.append(
            Detail("50-week SMA", f"below for {below} weeks", "Sustained closes under the 50W SMA")
        )
    elif below is not None:
        details.append(Detail("50-week SMA", "holding"))

    blended = blend_scores(
        {
            "bmsb": (bmsb_score, WEIGHTS["bmsb"]),
            "mayer": (mayer_score, WEIGHTS["mayer"]),
            "rsi": (rsi_score, WEIGHTS["rsi"]),
        }
    )
    if blended is None:
        return FactorOutcome.insufficient(details)

    return FactorOutcome.ok(
        round_half_up(blended),
        details=details,
        last_utc=iso_utc(closes.index[-1]),
        source=SOURCE,
    )


@factor_guard(KEY)
async def compute_trend_valuation(ctx: FactorContext) -> FactorOutcome:
    """
    Blend BMSB position (60%), Mayer multiple (30%) and weekly RSI (10%).

    Reads the daily close history from the context; results are cached
    against the latest close.
    """
    closes = ctx.prices.dropna()
    if len(closes) < MIN_DAILY_CLOSES:
        return FactorOutcome.insufficient(
            [Detail("Daily closes", f"{len(closes)} (need {MIN_DAILY_CLOSES})")]
        )

    last = closes.index[-1]
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    fp = fingerprint(KEY, last.date().isoformat(), float(closes.iloc[-1]), len(closes))
    return await ctx.cache.get_or_compute(KEY, fp, lambda: _score_trend(closes))
