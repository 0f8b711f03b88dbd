"""Weighted blend of fresh factor scores into the composite risk score."""

import logging
from collections.abc import Sequence
from datetime import date

from btc_risk.config import FALLBACK_SCORE, RISK_BANDS, band_for_score
from btc_risk.models import Band, CompositeResult, FactorResult, FactorStatus
from btc_risk.utils.indicators import round_half_up

logger = logging.getLogger(__name__)


def compute_composite(
    factors: Sequence[FactorResult],
    as_of: date,
    bands: tuple[Band, ...] = RISK_BANDS,
) -> CompositeResult:
    """
    Blend fresh factors by weight, renormalizing over whatever survived.

    Args:
        factors: Factor results for this run (any status)
        as_of: UTC date the composite describes
        bands: Risk band table

    Returns:
        CompositeResult; score falls back to FALLBACK_SCORE when no factor
        is fresh
    """
    fresh = [f for f in factors if f.status is FactorStatus.FRESH and f.score is not None]
    total_weight = sum(f.weight for f in fresh)

    raw: float | None = None
    if total_weight > 0:
        weighted_sum = sum(f.weight * f.score for f in fresh)
        raw = round(weighted_sum / total_weight, 2)
        score = round_half_up(weighted_sum / total_weight)
        fallback = False
    else:
        logger.warning(f"No fresh factors; composite falls back to {FALLBACK_SCORE}")
        score = FALLBACK_SCORE
        fallback = True

    score = min(max(score, 0), 100)
    band = band_for_score(score, bands)

    excluded = [f.key for f in factors if f.status is not FactorStatus.FRESH]
    if excluded:
        logger.info(f"Composite excludes {len(excluded)} factors: {', '.join(excluded)}")

    return CompositeResult(
        date=as_of,
        score=score,
        band=band,
        weighted_factors=list(fresh),
        total_weight=total_weight,
        fallback=fallback,
        raw=raw,
    )


def adjusted_score(score: float, *adjustments: float) -> float:
    """Composite plus adjustment points, clamped to [0, 100] at one decimal."""
    return min(max(round(score + sum(adjustments), 1), 0.0), 100.0)


def pillar_scores(factors: Sequence[FactorResult]) -> dict[str, float | None]:
    """Weight-averaged score per pillar, honoring counts_toward."""
    sums: dict[str, float] = {}
    weights: dict[str, float] = {}
    for f in factors:
        pillar = (f.counts_toward or f.pillar).value
        weights.setdefault(pillar, 0.0)
        sums.setdefault(pillar, 0.0)
        if f.status is FactorStatus.FRESH and f.score is not None:
            sums[pillar] += f.weight * f.score
            weights[pillar] += f.weight
    return {
        p: (round(sums[p] / weights[p], 1) if weights[p] > 0 else None)
        for p in sorted(weights)
    }
