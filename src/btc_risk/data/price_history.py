"""Unified BTC daily close history backed by a CSV file.

Schema of btc_price_history.csv:
    date_utc,close_usd,source,ingested_at_utc

Coinbase daily candles are the primary source; chunked historical backfill
rows are tagged separately and lose to primary rows on the same date.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from btc_risk.data.http_client import HttpClient, UpstreamError
from btc_risk.models import ErrorKind, PricePoint, PriceSource, Result
from btc_risk.utils.files import read_csv, write_csv_atomic
from btc_risk.utils.ohlcv import standardize_candles
from btc_risk.utils.provenance import utc_now_iso

logger = logging.getLogger(__name__)

PRICE_HISTORY_COLUMNS = ["date_utc", "close_usd", "source", "ingested_at_utc"]

COINBASE_CANDLES_URL = "https://api.exchange.coinbase.com/products/BTC-USD/candles"
CHUNK_DAYS = 299  # Coinbase returns at most 300 candles per request
MAX_BACKFILL_REQUESTS = 10
CHUNK_DELAY_S = 0.1
BACKFILL_BUFFER_DAYS = 30


class CandleSchemaError(ValueError):
    """Candle payload does not have the expected [time, low, high, open, close, volume] rows."""


def merge_records(records: Iterable[PricePoint]) -> list[PricePoint]:
    """
    One record per date, ascending.

    Primary beats backfill; between records of equal precedence the later one
    in `records` wins, so a fresh fetch refreshes a partial candle.
    """
    best: dict[date, PricePoint] = {}
    for record in records:
        existing = best.get(record.date)
        if existing is None or record.source.precedence <= existing.source.precedence:
            best[record.date] = record
    return [best[d] for d in sorted(best)]


def closes_series(records: Iterable[PricePoint]) -> pd.Series:
    """Close prices indexed by a DatetimeIndex of UTC days."""
    records = list(records)
    if not records:
        return pd.Series(dtype=float, index=pd.DatetimeIndex([]))
    return pd.Series(
        [r.close for r in records],
        index=pd.DatetimeIndex([pd.Timestamp(r.date) for r in records]),
        dtype=float,
    ).sort_index()


class PriceHistoryStore:
    """Load, merge, backfill and persist the BTC close history."""

    def __init__(
        self,
        path: Path,
        http: HttpClient,
        min_rows: int = 500,
        target_days: int = 730,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self.path = Path(path)
        self.http = http
        self.min_rows = min_rows
        self.target_days = target_days
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    def load(self) -> list[PricePoint]:
        """
        Load stored history, ascending by date.

        A missing file yields []. Malformed rows are skipped with a warning.
        """
        df = read_csv(self.path, PRICE_HISTORY_COLUMNS)
        records: list[PricePoint] = []
        skipped = 0
        for row in df.itertuples(index=False):
            try:
                day = date.fromisoformat(str(row.date_utc).strip())
                close = float(row.close_usd)
                source = PriceSource(str(row.source).strip())
            except ValueError:
                skipped += 1
                continue
            if not close > 0:
                skipped += 1
                continue
            ingested_raw = str(row.ingested_at_utc).strip().replace("Z", "+00:00")
            try:
                ingested = datetime.fromisoformat(ingested_raw)
            except ValueError:
                ingested = datetime.combine(day, datetime.min.time(), tzinfo=timezone.utc)
            if ingested.tzinfo is None:
                ingested = ingested.replace(tzinfo=timezone.utc)
            records.append(PricePoint(date=day, close=close, source=source, ingested_at=ingested))

        if skipped:
            logger.warning(f"Skipped {skipped} malformed rows in {self.path}")
        return sorted(records, key=lambda r: r.date)

    def closes(self) -> pd.Series:
        return closes_series(self.load())

    def save(self, records: Iterable[PricePoint]) -> dict[str, Any]:
        """
        Dedup, sort and overwrite the CSV atomically.

        Returns:
            Stats dict with total_rows, oldest_date, newest_date
        """
        merged = merge_records(records)
        df = pd.DataFrame(
            [
                {
                    "date_utc": r.date.isoformat(),
                    "close_usd": r.close,
                    "source": r.source.value,
                    "ingested_at_utc": utc_now_iso(r.ingested_at),
                }
                for r in merged
            ],
            columns=PRICE_HISTORY_COLUMNS,
        )
        write_csv_atomic(self.path, df)
        logger.info(f"Price history saved: {len(merged)} records ({self.path})")
        return self.stats(merged)

    @staticmethod
    def stats(records: list[PricePoint]) -> dict[str, Any]:
        return {
            "total_rows": len(records),
            "oldest_date": records[0].date.isoformat() if records else None,
            "newest_date": records[-1].date.isoformat() if records else None,
        }

    async def _fetch_candles(
        self,
        start: datetime,
        end: datetime,
        source: PriceSource,
    ) -> list[PricePoint]:
        candles = await self.http.get_json(
            "coinbase:candles",
            COINBASE_CANDLES_URL,
            params={
                "granularity": 86400,
                "start": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "end": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
        )
        if not isinstance(candles, list):
            raise CandleSchemaError(f"Unexpected candle payload: {type(candles).__name__}")
        df = standardize_candles(candles)
        if candles and df.empty:
            raise CandleSchemaError(f"No usable rows in {len(candles)} candles")
        if len(df) < len(candles):
            logger.warning(f"Dropped {len(candles) - len(df)} malformed or duplicate candles")
        ingested = self._now()
        return [
            PricePoint(date=row.date, close=float(row.close), source=source, ingested_at=ingested)
            for row in df.itertuples(index=False)
        ]

    async def backfill(self, target_days: int | None = None) -> Result[list[PricePoint]]:
        """
        Fetch roughly target_days of daily closes in sequential chunks.

        Returns:
            Result with backfill-tagged records, or a failure; never raises
        """
        target_days = target_days or self.target_days
        end = self._now()
        current = end - timedelta(days=target_days + BACKFILL_BUFFER_DAYS)
        cutoff = (end - timedelta(days=target_days)).date()

        collected: list[PricePoint] = []
        requests_made = 0
        try:
            while current < end and requests_made < MAX_BACKFILL_REQUESTS:
                chunk_end = min(current + timedelta(days=CHUNK_DAYS), end)
                logger.info(
                    f"Backfill chunk {requests_made + 1}: "
                    f"{current.date().isoformat()} to {chunk_end.date().isoformat()}"
                )
                collected.extend(await self._fetch_candles(current, chunk_end, PriceSource.BACKFILL))
                current = chunk_end + timedelta(days=1)
                requests_made += 1
                if current < end:
                    await asyncio.sleep(CHUNK_DELAY_S)
        except UpstreamError as e:
            logger.warning(f"Price backfill failed after {requests_made} chunks: {e}")
            return Result.failure(ErrorKind.UPSTREAM, str(e))
        except CandleSchemaError as e:
            logger.warning(f"Price backfill stopped after {requests_made} chunks: {e}")
            return Result.failure(ErrorKind.SCHEMA_DRIFT, str(e))

        records = [r for r in merge_records(collected) if r.date >= cutoff]
        logger.info(f"Backfill fetched {len(records)} rows in {requests_made} requests")
        return Result.success(records, message=f"{requests_made} requests")

    async def fetch_recent(self, days: int = 14) -> Result[list[PricePoint]]:
        """Trailing window of primary-source closes; never raises."""
        end = self._now()
        start = end - timedelta(days=days)
        try:
            records = await self._fetch_candles(start, end, PriceSource.PRIMARY)
        except UpstreamError as e:
            logger.warning(f"Recent price fetch failed: {e}")
            return Result.failure(ErrorKind.UPSTREAM, str(e))
        except CandleSchemaError as e:
            logger.warning(f"Recent price payload rejected: {e}")
            return Result.failure(ErrorKind.SCHEMA_DRIFT, str(e))
        return Result.success(records)

    async def update(self) -> tuple[list[PricePoint], dict[str, Any]]:
        """
        Load, backfill when short, merge recent closes and persist.

        Returns:
            (merged records, summary for status.json)
        """
        records = self.load()
        summary: dict[str, Any] = {"rows_before": len(records)}
        fetched: list[PricePoint] = []

        if len(records) < self.min_rows:
            logger.info(f"Price history has {len(records)} rows (< {self.min_rows}); backfilling")
            backfill = await self.backfill()
            summary["backfill"] = backfill.to_dict()
            if backfill.ok and backfill.value:
                fetched.extend(backfill.value)

        recent = await self.fetch_recent()
        summary["recent"] = recent.to_dict()
        if recent.ok and recent.value:
            fetched.extend(recent.value)

        if fetched:
            merged = merge_records([*records, *fetched])
            summary.update(self.save(merged))
        else:
            merged = records
            summary.update(self.stats(merged))
        return merged, summary
