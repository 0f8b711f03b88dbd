"""ETF Flows: 21-day rolling net creations/redemptions of US spot BTC ETFs."""

import logging
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytz

from btc_risk.config import FACTOR_SPECS_BY_KEY
from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext, factor_guard, fmt_money, iso_utc
from btc_risk.factors.etf_parser import (
    MIN_RECORDS,
    FlowRow,
    ParseFailure,
    ParsePartial,
    parse_flows,
)
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    percentile_rank,
    risk_from_percentile,
    rolling_sum,
    z_score,
)

logger = logging.getLogger(__name__)

KEY = "etf_flows"
SOURCE = "Farside"

WINDOW_DAYS = 21
RECENT_ROWS = 220
OUTLIER_SIGMA = 4.0
SCHEMA_HASH_KEY = "etf_flows:schema_hash"
MARKET_TZ = "America/New_York"


def business_days_old(last: date, now: datetime) -> int:
    """US trading days elapsed since `last`, measured on the New York calendar."""
    today_ny = now.astimezone(pytz.timezone(MARKET_TZ)).date()
    return int(np.busday_count(last, today_ny))


def flows_frame(rows: list[FlowRow]) -> pd.Series:
    return pd.Series(
        [r.total_usd for r in rows],
        index=pd.DatetimeIndex([pd.Timestamp(r.date) for r in rows]),
        dtype=float,
    ).sort_index()


def rolling_flow_signal(daily: pd.Series, window: int = WINDOW_DAYS, recent: int = RECENT_ROWS) -> pd.DataFrame:
    """
    Rolling-sum signal table: date, sum21_usd, z, score.

    With fewer than `window` days the window shrinks to what is available.
    z and score rank each sum against the trailing `recent` sums.
    """
    effective = min(window, len(daily))
    sums = rolling_sum(daily, effective).dropna().tail(recent)
    if sums.empty:
        return pd.DataFrame(columns=["date", "sum21_usd", "z", "score"])
    return pd.DataFrame(
        {
            "date": [d.date().isoformat() for d in sums.index],
            "sum21_usd": sums.to_numpy(),
            "z": [z_score(sums, v) for v in sums],
            "score": [risk_from_percentile(percentile_rank(sums, v), invert=True) for v in sums],
        }
    )


async def _fetch_body(ctx: FactorContext) -> str:
    try:
        return await ctx.http.get_text("farside:etf_flows", ctx.settings.etf_flows_url)
    except UpstreamError:
        if not ctx.settings.etf_flows_alt_url:
            raise
        logger.info(f"{KEY}: primary flow source failed, trying alternate")
        return await ctx.http.get_text("farside:etf_flows_alt", ctx.settings.etf_flows_alt_url)


@factor_guard(KEY)
async def compute_etf_flows(ctx: FactorContext) -> FactorOutcome:
    """
    Rank the latest 21-day net flow sum against the trailing ~220 sums.
    Inflows mean lower risk.

    A header hash differing from the previous run is logged as schema drift
    but does not block scoring.
    """
    body = await _fetch_body(ctx)
    result = parse_flows(body)
    if isinstance(result, ParseFailure):
        raise ValueError(f"ETF flow table unparseable: {'; '.join(result.errors[:3])}")

    details: list[Detail] = []
    if isinstance(result, ParsePartial):
        logger.warning(f"{KEY}: {len(result.warnings)} rows dropped while parsing ({result.warnings[0]})")
        details.append(Detail("Parse warnings", str(len(result.warnings))))

    previous_hash = ctx.cache.get_value(SCHEMA_HASH_KEY)
    if previous_hash and previous_hash != result.schema_hash:
        logger.warning(f"{KEY}: table schema changed ({previous_hash} -> {result.schema_hash})")
        details.append(Detail("Schema", "changed since last run", "Header row hash differs; verify columns"))
    ctx.cache.set_value(SCHEMA_HASH_KEY, result.schema_hash)

    rows = result.rows
    if len(rows) < MIN_RECORDS:
        return FactorOutcome.insufficient([Detail("Valid rows", f"{len(rows)} (need {MIN_RECORDS})")])

    last = rows[-1].date
    age = business_days_old(last, ctx.now)
    if age > FACTOR_SPECS_BY_KEY[KEY].stale_after_days:
        logger.warning(f"{KEY}: latest flow row is {age} business days old; marking stale")
        return FactorOutcome.stale(iso_utc(last), [Detail("Data age", f"{age} business days")], SOURCE)

    daily = flows_frame(rows)
    signal = rolling_flow_signal(daily)
    latest_sum = float(signal["sum21_usd"].iloc[-1])
    score = int(signal["score"].iloc[-1])

    latest_daily = float(daily.iloc[-1])
    daily_z = z_score(daily.iloc[:-1], latest_daily)
    if np.isfinite(daily_z) and abs(daily_z) > OUTLIER_SIGMA:
        logger.warning(f"{KEY}: latest daily flow {fmt_money(latest_daily)} is {daily_z:+.1f} sigma from mean")
        details.append(Detail("Extreme change", f"{daily_z:+.1f}σ daily flow", "Verify upstream data"))

    details[:0] = [
        Detail(f"{WINDOW_DAYS}d net flow", fmt_money(latest_sum)),
        Detail("Latest day", f"{fmt_money(latest_daily)} ({last.isoformat()})"),
    ]
    if rows[-1].by_fund:
        leader = max(rows[-1].by_fund.items(), key=lambda kv: abs(kv[1]))
        details.append(Detail("Largest mover", f"{leader[0]} {fmt_money(leader[1])}"))

    return FactorOutcome.ok(
        score,
        details=details,
        last_utc=iso_utc(last),
        source=SOURCE,
        flows_21d=signal,
        schema_hash=result.schema_hash,
    )
