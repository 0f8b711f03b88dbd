"""Data layer for fetching, caching and storing market data."""

from btc_risk.data.cache import FactorCache, fingerprint
from btc_risk.data.http_client import (
    HttpClient,
    HttpRetryError,
    RetryResult,
    UpstreamError,
)
from btc_risk.data.price_history import (
    PRICE_HISTORY_COLUMNS,
    PriceHistoryStore,
    closes_series,
    merge_records,
)

__all__ = [
    # Cache
    "FactorCache",
    "fingerprint",
    # HTTP
    "HttpClient",
    "HttpRetryError",
    "RetryResult",
    "UpstreamError",
    # Price history
    "PRICE_HISTORY_COLUMNS",
    "PriceHistoryStore",
    "closes_series",
    "merge_records",
]
