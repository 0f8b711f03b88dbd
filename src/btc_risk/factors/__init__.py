"""Per-factor computations and the concurrent runner."""

import asyncio
import logging

from btc_risk.config import FACTOR_SPECS, FactorSpec
from btc_risk.factors.base import FactorContext, FactorFunc, factor_guard
from btc_risk.factors.etf_flows import compute_etf_flows
from btc_risk.factors.macro_overlay import compute_macro_overlay
from btc_risk.factors.net_liquidity import compute_net_liquidity
from btc_risk.factors.onchain import compute_onchain
from btc_risk.factors.social_interest import compute_social_interest
from btc_risk.factors.stablecoins import compute_stablecoins
from btc_risk.factors.term_leverage import compute_term_leverage
from btc_risk.factors.trend_valuation import compute_trend_valuation
from btc_risk.models import FactorOutcome, FactorResult, FactorStatus

logger = logging.getLogger(__name__)

FACTOR_COMPUTORS: dict[str, FactorFunc] = {
    "trend_valuation": compute_trend_valuation,
    "net_liquidity": compute_net_liquidity,
    "stablecoins": compute_stablecoins,
    "etf_flows": compute_etf_flows,
    "term_leverage": compute_term_leverage,
    "onchain": compute_onchain,
    "social_interest": compute_social_interest,
    "macro_overlay": compute_macro_overlay,
}


def to_factor_result(spec: FactorSpec, outcome: FactorOutcome) -> FactorResult:
    """Stamp an outcome with its FactorSpec and derive the status from the reason."""
    if outcome.score is not None and outcome.reason == "success":
        status = FactorStatus.FRESH
    elif outcome.reason == "stale_data":
        status = FactorStatus.STALE
    else:
        status = FactorStatus.EXCLUDED

    return FactorResult(
        key=spec.key,
        label=spec.label,
        pillar=spec.pillar,
        weight=spec.weight,
        score=float(outcome.score) if status is FactorStatus.FRESH else None,
        status=status,
        reason=outcome.reason,
        details=outcome.details,
        last_utc=outcome.last_utc,
        source=outcome.source or ", ".join(spec.sources) or None,
        counts_toward=spec.counts_toward,
    )


async def run_factors(
    ctx: FactorContext,
    computors: dict[str, FactorFunc] | None = None,
    specs: tuple[FactorSpec, ...] = FACTOR_SPECS,
) -> tuple[list[FactorResult], dict[str, FactorOutcome]]:
    """
    Run every factor concurrently; one failure never affects the others.

    Returns:
        (results in FACTOR_SPECS order, raw outcomes by key for artifact writers)
    """
    computors = computors or FACTOR_COMPUTORS
    keys = [s.key for s in specs]
    settled = await asyncio.gather(*(computors[k](ctx) for k in keys), return_exceptions=True)

    outcomes: dict[str, FactorOutcome] = {}
    results: list[FactorResult] = []
    for spec, value in zip(specs, settled):
        if isinstance(value, BaseException):
            if isinstance(value, (KeyboardInterrupt, SystemExit)):
                raise value
            logger.error(f"{spec.key}: task rejected: {value!r}")
            outcome = FactorOutcome.error(f"task rejected: {value}")
        else:
            outcome = value
        outcomes[spec.key] = outcome
        result = to_factor_result(spec, outcome)
        results.append(result)
        logger.info(
            f"{spec.key}: status={result.status.value} score={result.score} reason={result.reason}"
        )
    return results, outcomes


__all__ = [
    "FACTOR_COMPUTORS",
    "FactorContext",
    "factor_guard",
    "run_factors",
    "to_factor_result",
]
