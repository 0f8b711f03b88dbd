"""On-chain Activity: miner revenue cycle (Puell multiple), fees and mempool."""

import logging

import pandas as pd

from btc_risk.data.http_client import UpstreamError
from btc_risk.factors.base import FactorContext, factor_guard, fmt_money, iso_utc, is_stale, stale_outcome
from btc_risk.models import Detail, FactorOutcome
from btc_risk.utils.indicators import (
    blend_scores,
    calculate_sma,
    percentile_rank,
    risk_from_percentile,
    round_half_up,
)

logger = logging.getLogger(__name__)

KEY = "onchain"
SOURCE = "blockchain.info"

CHART_URL = "https://api.blockchain.info/charts/{chart}"
PUELL_WINDOW = 365
ACTIVITY_SMOOTHING = 7
WEIGHTS = {"puell": 0.5, "fees": 0.25, "mempool": 0.25}


def chart_series(payload: dict, chart: str) -> pd.Series:
    """Daily values of a blockchain.info chart, indexed by UTC day."""
    values = payload.get("values") if isinstance(payload, dict) else None
    if not isinstance(values, list) or not values:
        raise UpstreamError(CHART_URL.format(chart=chart), f"Chart {chart} has no values")
    df = pd.DataFrame(values)
    index = pd.to_datetime(pd.to_numeric(df["x"], errors="coerce"), unit="s", errors="coerce").dt.normalize()
    series = pd.Series(pd.to_numeric(df["y"], errors="coerce").to_numpy(), index=index, dtype=float)
    series = series[series.index.notna()].dropna()
    return series.groupby(level=0).last()


def puell_multiple(revenue: pd.Series) -> pd.Series:
    """Daily miner revenue over its 365-day moving average."""
    return (revenue / calculate_sma(revenue, PUELL_WINDOW)).dropna()


async def _fetch_chart(ctx: FactorContext, chart: str, timespan: str) -> pd.Series:
    payload = await ctx.http.get_json(
        f"blockchain:{chart}",
        CHART_URL.format(chart=chart),
        params={"timespan": timespan, "format": "json", "sampled": "false"},
    )
    return chart_series(payload, chart)


@factor_guard(KEY)
async def compute_onchain(ctx: FactorContext) -> FactorOutcome:
    """
    Puell multiple (50%, high means miners are flush and risk is elevated)
    blended with smoothed fee spend (25%) and mempool size (25%), where
    busier network activity reads as healthy demand and lower risk.

    A chart that fails to load drops out of the blend; the factor fails only
    when nothing loads.
    """
    series: dict[str, pd.Series] = {}
    errors: list[str] = []
    for name, chart, timespan in (
        ("puell", "miners-revenue", "3years"),
        ("fees", "fees-usd", "1year"),
        ("mempool", "mempool-size", "1year"),
    ):
        try:
            series[name] = await _fetch_chart(ctx, chart, timespan)
        except UpstreamError as e:
            logger.warning(f"{KEY}: {chart} unavailable: {e}")
            errors.append(f"{chart}: {e}")

    if not series:
        return FactorOutcome.error("; ".join(errors))

    last = max(s.index[-1] for s in series.values())
    if is_stale(KEY, last, ctx.now):
        return stale_outcome(KEY, last, ctx.now, SOURCE)

    scores: dict[str, tuple[float | None, float]] = {}
    details: list[Detail] = []

    if "puell" in series:
        puell = puell_multiple(series["puell"])
        if not puell.empty:
            latest = float(puell.iloc[-1])
            scores["puell"] = (risk_from_percentile(percentile_rank(puell, latest)), WEIGHTS["puell"])
            details.append(Detail("Puell multiple", f"{latest:.2f}", "Miner revenue / 365-day average"))

    if "fees" in series:
        fees = calculate_sma(series["fees"], ACTIVITY_SMOOTHING).dropna()
        if not fees.empty:
            latest = float(fees.iloc[-1])
            scores["fees"] = (risk_from_percentile(percentile_rank(fees, latest), invert=True), WEIGHTS["fees"])
            details.append(Detail("Fees (7d avg)", f"{fmt_money(latest)}/day"))

    if "mempool" in series:
        mempool = calculate_sma(series["mempool"], ACTIVITY_SMOOTHING).dropna()
        if not mempool.empty:
            latest = float(mempool.iloc[-1])
            scores["mempool"] = (
                risk_from_percentile(percentile_rank(mempool, latest), invert=True),
                WEIGHTS["mempool"],
            )
            details.append(Detail("Mempool (7d avg)", f"{latest / 1e6:.1f} MB"))

    blended = blend_scores(scores)
    if blended is None:
        return FactorOutcome.insufficient(details)

    if errors:
        details.append(Detail("Unavailable", ", ".join(e.split(":")[0] for e in errors)))

    return FactorOutcome.ok(round_half_up(blended), details=details, last_utc=iso_utc(last), source=SOURCE)
