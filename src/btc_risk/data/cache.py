"""Factor result cache keyed by an input fingerprint."""

import hashlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import diskcache

from btc_risk.models import FactorOutcome
from btc_risk.utils.normalize import canonical_dumps, sanitize_json

logger = logging.getLogger(__name__)


def fingerprint(*parts: Any) -> str:
    """
    Stable hash over the inputs that determine a factor's output.

    Pass the latest datapoint (date, value) plus anything else that would
    change the result, such as the series length.
    """
    payload = canonical_dumps(sanitize_json(list(parts)))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class FactorCache:
    """
    Explicit cache object handed to factors through their context.

    Entries store the fingerprint they were computed from; a lookup with a
    different fingerprint is a miss and the entry is overwritten. Besides
    outcomes it keeps small named values (e.g. the last seen ETF schema hash).
    """

    def __init__(self, cache_dir: str | Path):
        self.cache: diskcache.Cache = diskcache.Cache(str(cache_dir))

    def get(self, key: str, fp: str) -> FactorOutcome | None:
        entry = self.cache.get(f"factor:{key}")
        if not entry or entry.get("fingerprint") != fp:
            return None
        return entry["outcome"]

    def put(self, key: str, fp: str, outcome: FactorOutcome) -> None:
        # Only successful outcomes are worth replaying
        if outcome.score is None:
            return
        self.cache.set(
            f"factor:{key}",
            {
                "fingerprint": fp,
                "outcome": outcome,
                "stored_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def get_or_compute(
        self,
        key: str,
        fp: str,
        compute: Callable[[], Awaitable[FactorOutcome]],
    ) -> FactorOutcome:
        """Return the cached outcome for fp, computing and storing it on a miss."""
        cached = self.get(key, fp)
        if cached is not None:
            logger.info(f"{key}: cache hit ({fp})")
            return cached
        outcome = await compute()
        self.put(key, fp, outcome)
        return outcome

    def get_value(self, name: str) -> Any:
        return self.cache.get(f"value:{name}")

    def set_value(self, name: str, value: Any) -> None:
        self.cache.set(f"value:{name}", value)

    def clear(self) -> None:
        """Clear all cached data."""
        self.cache.clear()

    def close(self) -> None:
        self.cache.close()
