"""Batch ETL: price history, factors, composite, history, alerts, artifacts."""

import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from btc_risk import ETL_VERSION, MODEL_VERSION
from btc_risk.adjustments import Adjustment, cycle_adjustment, spike_adjustment
from btc_risk.alerts import (
    AlertStore,
    detect_adjustment,
    detect_band_change,
    detect_etf_zero_cross,
    detect_factor_changes,
    detect_factor_staleness,
    detect_score_change,
    detect_sma50w_warning,
)
from btc_risk.composite import adjusted_score, compute_composite, pillar_scores
from btc_risk.config import Settings
from btc_risk.data.cache import FactorCache
from btc_risk.data.http_client import HttpClient, UpstreamError
from btc_risk.data.price_history import PriceHistoryStore, closes_series
from btc_risk.factors import FACTOR_COMPUTORS, FactorContext, run_factors
from btc_risk.factors.base import FactorFunc, JsonTextClient
from btc_risk.factors.trend_valuation import sma50w_status
from btc_risk.history import (
    append_factor_history,
    append_history,
    build_factor_deltas,
    load_factor_history,
    load_history,
)
from btc_risk.models import AlertCategory, CompositeResult, FactorResult, PricePoint
from btc_risk.utils.files import write_csv_atomic, write_json_atomic
from btc_risk.utils.provenance import build_meta, build_provenance, utc_now_iso

logger = logging.getLogger(__name__)

COINBASE_SPOT_URL = "https://api.coinbase.com/v2/prices/BTC-USD/spot"


async def fetch_spot(http: JsonTextClient, records: list[PricePoint], now: datetime) -> tuple[float | None, str | None]:
    """
    Current BTC spot in USD with its timestamp.

    Falls back to the latest stored daily close when the spot endpoint fails.
    """
    try:
        payload = await http.get_json("coinbase:spot", COINBASE_SPOT_URL)
        amount = float(payload["data"]["amount"])
        if amount > 0:
            return amount, utc_now_iso(now)
    except (UpstreamError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Spot price unavailable, using last close: {e}")
    if records:
        last = records[-1]
        return last.close, f"{last.date.isoformat()}T00:00:00Z"
    return None, None


def build_latest(
    composite: CompositeResult,
    factors: list[FactorResult],
    spot: float | None,
    spot_as_of: str | None,
    now: datetime,
    duration_ms: float,
    cycle: Adjustment,
    spike: Adjustment,
    sma50w: dict | None = None,
) -> dict[str, Any]:
    """
    The latest.json document.

    composite_score is the plain weighted blend; the cycle and spike blocks
    and composite.adjusted_score are published alongside it for reference.
    """
    return {
        "composite_score": composite.score,
        "composite_raw": composite.raw,
        "band": composite.band.to_dict(),
        "factors": [f.to_dict() for f in factors],
        "pillars": pillar_scores(factors),
        "as_of_utc": utc_now_iso(now),
        "btc": {"spot_usd": spot, "as_of_utc": spot_as_of},
        "model_version": MODEL_VERSION,
        "composite": {
            "total_weight": composite.total_weight,
            "fresh_factors": len(composite.weighted_factors),
            "fallback": composite.fallback,
            "adjusted_score": adjusted_score(composite.score, cycle.adj_pts, spike.adj_pts),
        },
        "cycle_adjustment": cycle.to_dict(),
        "spike_adjustment": spike.to_dict(),
        "sma50w": sma50w,
        "meta": build_meta("latest", duration_ms),
    }


async def run_etl(
    settings: Settings,
    now: datetime | None = None,
    http: JsonTextClient | None = None,
    computors: dict[str, FactorFunc] | None = None,
) -> dict[str, Any]:
    """
    Run one full pipeline pass and write every artifact under settings.data_dir.

    Args:
        settings: Run settings
        now: Clock override (UTC); defaults to the current time
        http: Client override; a fresh HttpClient is created and closed otherwise
        computors: Factor table override

    Returns:
        Summary of the run (composite, band, per-factor status, alert counts)
    """
    start = perf_counter()
    now = now or datetime.now(timezone.utc)
    own_http = http is None
    client: Any = http if http is not None else HttpClient(settings)
    cache = FactorCache(settings.cache_dir)

    try:
        store = PriceHistoryStore(
            settings.price_history_path,
            client,
            min_rows=settings.price_history_min_rows,
            target_days=settings.price_history_target_days,
            now_fn=lambda: now,
        )
        records, price_summary = await store.update()

        closes = closes_series(records)
        ctx = FactorContext(
            settings=settings,
            http=client,
            cache=cache,
            now=now,
            prices=closes,
        )
        factors, outcomes = await run_factors(ctx, computors or FACTOR_COMPUTORS)

        as_of = now.date()
        composite = compute_composite(factors, as_of)
        cycle = cycle_adjustment(closes)
        spike = spike_adjustment(closes)
        sma50w = sma50w_status(closes)
        spot, spot_as_of = await fetch_spot(client, records, now)
        logger.info(f"Composite {composite.score} ({composite.band.label}) as of {as_of.isoformat()}")

        # Detectors compare against the files as they were before today's append
        history = load_history(settings.history_path)
        factor_history = load_factor_history(settings.factor_history_path)
        etf_outcome = outcomes.get("etf_flows")
        flows_21d = etf_outcome.extras.get("flows_21d") if etf_outcome else None

        alerts = [
            *detect_band_change(history, composite),
            *detect_score_change(history, composite),
            *detect_factor_changes(factor_history, factors, as_of),
            *detect_factor_staleness(factors, now),
            *detect_etf_zero_cross(flows_21d),
            *detect_adjustment(AlertCategory.CYCLE_ADJUSTMENT, cycle, as_of),
            *detect_adjustment(AlertCategory.SPIKE_ADJUSTMENT, spike, as_of),
            *detect_sma50w_warning(sma50w, as_of),
        ]

        deltas = build_factor_deltas(factor_history, factors, as_of)
        history_written = append_history(settings.history_path, composite, spot)
        factor_history_written = append_factor_history(settings.factor_history_path, factors, composite)
        write_json_atomic(settings.factor_deltas_path, deltas)
        if flows_21d is not None and not flows_21d.empty:
            write_csv_atomic(settings.etf_flows_21d_path, flows_21d)

        alert_summary = AlertStore(settings.alerts_dir).record(alerts, now)

        duration_ms = (perf_counter() - start) * 1000
        write_json_atomic(
            settings.latest_path,
            build_latest(composite, factors, spot, spot_as_of, now, duration_ms, cycle, spike, sma50w),
        )
        status = {
            "updated_at": utc_now_iso(now),
            "sources": client.status_report(),
            "price_history": build_provenance("coinbase", as_of=price_summary.get("newest_date"), **price_summary),
            "etf_schema_hash": etf_outcome.extras.get("schema_hash") if etf_outcome else None,
            "meta": build_meta("status", duration_ms),
        }
        write_json_atomic(settings.status_path, status)

        return {
            "as_of": as_of.isoformat(),
            "composite_score": composite.score,
            "band": composite.band.key,
            "adjustments": {"cycle": cycle.adj_pts, "spike": spike.adj_pts},
            "factors": {f.key: f.status.value for f in factors},
            "history_appended": history_written,
            "factor_history_appended": factor_history_written,
            "alerts": alert_summary,
            "duration_ms": round(duration_ms, 1),
        }
    finally:
        cache.close()
        if own_http:
            client.close()


def main() -> None:
    """Run the ETL once."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    logger.info(f"Starting BTC risk ETL v{ETL_VERSION} (model {MODEL_VERSION}) -> {settings.data_dir}")
    summary = asyncio.run(run_etl(settings))
    logger.info(
        f"Done: composite {summary['composite_score']} ({summary['band']}) in {summary['duration_ms']}ms"
    )
    if not any(status == "fresh" for status in summary["factors"].values()):
        logger.error("No factor produced a fresh score")
        sys.exit(1)


if __name__ == "__main__":
    main()
