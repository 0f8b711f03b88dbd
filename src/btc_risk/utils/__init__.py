"""Utility modules."""

from btc_risk.utils.indicators import (
    blend_scores,
    calculate_ema,
    calculate_rsi,
    calculate_sma,
    percentile_rank,
    risk_from_percentile,
    risk_from_z,
    round_half_up,
    z_score,
)
from btc_risk.utils.normalize import canonical_dumps, content_hash, sanitize_json
from btc_risk.utils.ohlcv import standardize_candles, weekly_closes
from btc_risk.utils.parsing import parse_date, parse_number
from btc_risk.utils.provenance import SourceStatus, build_meta, build_provenance
from btc_risk.utils.sanitize import sanitize_text
from btc_risk.utils.validators import ConfigError

__all__ = [
    "blend_scores",
    "calculate_ema",
    "calculate_rsi",
    "calculate_sma",
    "percentile_rank",
    "risk_from_percentile",
    "risk_from_z",
    "round_half_up",
    "z_score",
    "canonical_dumps",
    "content_hash",
    "sanitize_json",
    "standardize_candles",
    "weekly_closes",
    "parse_date",
    "parse_number",
    "SourceStatus",
    "build_meta",
    "build_provenance",
    "sanitize_text",
    "ConfigError",
]
