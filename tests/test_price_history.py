"""Tests for the BTC close history store."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from btc_risk.data.http_client import UpstreamError
from btc_risk.data.price_history import (
    PRICE_HISTORY_COLUMNS,
    PriceHistoryStore,
    closes_series,
    merge_records,
)
from btc_risk.models import ErrorKind, PricePoint, PriceSource

from conftest import FIXED_NOW, StubHttp, candle_route


def point(day: date, close: float, source: PriceSource = PriceSource.PRIMARY) -> PricePoint:
    return PricePoint(date=day, close=close, source=source, ingested_at=FIXED_NOW)


def make_store(path: Path, http: StubHttp, min_rows: int = 500) -> PriceHistoryStore:
    return PriceHistoryStore(path, http, min_rows=min_rows, target_days=730, now_fn=lambda: FIXED_NOW)


class TestMergeRecords:
    """Tests for merge_records precedence."""

    def test_primary_beats_backfill(self) -> None:
        d = date(2024, 6, 1)
        merged = merge_records([point(d, 100.0, PriceSource.BACKFILL), point(d, 200.0)])
        assert len(merged) == 1
        assert merged[0].close == 200.0

        merged = merge_records([point(d, 200.0), point(d, 100.0, PriceSource.BACKFILL)])
        assert merged[0].source is PriceSource.PRIMARY

    def test_later_primary_refreshes(self) -> None:
        """A re-fetched partial candle replaces the stored one."""
        d = date(2024, 6, 15)
        merged = merge_records([point(d, 100.0), point(d, 105.0)])
        assert merged[0].close == 105.0

    def test_sorted_unique(self) -> None:
        records = [point(date(2024, 6, 3), 3.0), point(date(2024, 6, 1), 1.0), point(date(2024, 6, 2), 2.0)]
        merged = merge_records(records)
        assert [r.date.day for r in merged] == [1, 2, 3]

    def test_closes_series(self) -> None:
        series = closes_series([point(date(2024, 6, 2), 2.0), point(date(2024, 6, 1), 1.0)])
        assert series.tolist() == [1.0, 2.0]
        assert closes_series([]).empty


class TestLoadSave:
    """Tests for CSV persistence."""

    def test_missing_file_loads_empty(self, tmp_path: Path) -> None:
        store = make_store(tmp_path / "prices.csv", StubHttp())
        assert store.load() == []

    def test_save_then_load(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        store = make_store(path, StubHttp())
        stats = store.save([point(date(2024, 6, 2), 2.5), point(date(2024, 6, 1), 1.5, PriceSource.BACKFILL)])

        assert stats == {"total_rows": 2, "oldest_date": "2024-06-01", "newest_date": "2024-06-02"}
        assert path.read_text().splitlines()[0] == ",".join(PRICE_HISTORY_COLUMNS)

        loaded = store.load()
        assert [(r.date, r.close, r.source) for r in loaded] == [
            (date(2024, 6, 1), 1.5, PriceSource.BACKFILL),
            (date(2024, 6, 2), 2.5, PriceSource.PRIMARY),
        ]
        assert loaded[0].ingested_at == FIXED_NOW
        assert store.closes().tolist() == [1.5, 2.5]

    def test_save_is_idempotent(self, tmp_path: Path) -> None:
        """Saving what was loaded reproduces the file byte for byte."""
        path = tmp_path / "prices.csv"
        store = make_store(path, StubHttp())
        store.save([point(date(2024, 6, d), 100.0 + d) for d in range(1, 10)])
        first = path.read_bytes()
        store.save(store.load())
        assert path.read_bytes() == first

    def test_malformed_rows_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        path.write_text(
            "date_utc,close_usd,source,ingested_at_utc\n"
            "2024-06-01,100.5,coinbase,2024-06-01T01:00:00Z\n"
            "not-a-date,100,coinbase,2024-06-01T01:00:00Z\n"
            "2024-06-02,abc,coinbase,2024-06-02T01:00:00Z\n"
            "2024-06-03,-5,coinbase,2024-06-03T01:00:00Z\n"
            "2024-06-04,101,binance,2024-06-04T01:00:00Z\n"
            "2024-06-05,102,coinbase_historical,garbage\n"
        )
        loaded = make_store(path, StubHttp()).load()
        assert [r.date for r in loaded] == [date(2024, 6, 1), date(2024, 6, 5)]
        # Unparseable ingest time falls back to midnight of the data date
        assert loaded[1].ingested_at == datetime(2024, 6, 5, tzinfo=timezone.utc)


class TestBackfill:
    """Tests for chunked backfill and update."""

    def test_backfill_chunks(self, tmp_path: Path) -> None:
        """~760 days at 299 days per request takes three sequential requests."""
        http = StubHttp({"coinbase:candles": candle_route})
        store = make_store(tmp_path / "prices.csv", http)

        with patch("btc_risk.data.price_history.CHUNK_DELAY_S", 0):
            result = asyncio.run(store.backfill())

        assert result.ok
        assert len(http.calls) == 3
        records = result.value
        assert all(r.source is PriceSource.BACKFILL for r in records)
        assert records[0].date == (FIXED_NOW - timedelta(days=730)).date()
        assert records[-1].date == FIXED_NOW.date()
        assert len(records) == 731

    def test_backfill_failure_is_a_result(self, tmp_path: Path) -> None:
        http = StubHttp({"coinbase:candles": UpstreamError("u", "HTTP 503: down", 503)})
        result = asyncio.run(make_store(tmp_path / "prices.csv", http).backfill())
        assert not result.ok
        assert result.error is ErrorKind.UPSTREAM
        assert result.to_dict()["success"] is False

    def test_unexpected_payload_fails(self, tmp_path: Path) -> None:
        http = StubHttp({"coinbase:candles": {"message": "rate limited"}})
        result = asyncio.run(make_store(tmp_path / "prices.csv", http).fetch_recent())
        assert not result.ok

    @pytest.mark.parametrize(
        "payload",
        [
            [{"time": 1718409600, "close": 2.0}],
            [None],
            {"message": "maintenance"},
        ],
    )
    def test_malformed_candles_are_a_result(self, tmp_path: Path, payload) -> None:
        """A payload without usable candle rows fails as schema drift instead of raising."""
        http = StubHttp({"coinbase:candles": payload})
        store = make_store(tmp_path / "prices.csv", http)

        recent = asyncio.run(store.fetch_recent())
        backfill = asyncio.run(store.backfill())

        assert not recent.ok
        assert recent.error is ErrorKind.SCHEMA_DRIFT
        assert not backfill.ok
        assert backfill.error is ErrorKind.SCHEMA_DRIFT

    def test_stray_entries_skipped(self, tmp_path: Path) -> None:
        """Usable candles survive alongside junk entries."""
        good = candle_route("u", {"start": "2024-06-14T00:00:00Z", "end": "2024-06-15T00:00:00Z"})
        http = StubHttp({"coinbase:candles": [*good, 7, None]})

        result = asyncio.run(make_store(tmp_path / "prices.csv", http).fetch_recent())

        assert result.ok
        assert [r.date for r in result.value] == [date(2024, 6, 14), date(2024, 6, 15)]

    def test_update_survives_malformed_payload(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        store = make_store(path, StubHttp({"coinbase:candles": [None, "x"]}))
        store.save([point(date(2024, 6, 1), 100.0)])

        records, summary = asyncio.run(store.update())

        assert len(records) == 1
        assert summary["recent"]["error"] == "schema_drift"

    def test_update_backfills_short_history(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        http = StubHttp({"coinbase:candles": candle_route})
        store = make_store(path, http)

        with patch("btc_risk.data.price_history.CHUNK_DELAY_S", 0):
            records, summary = asyncio.run(store.update())

        assert len(records) == 731
        assert summary["rows_before"] == 0
        assert summary["backfill"]["success"] is True
        assert summary["newest_date"] == "2024-06-15"
        # The trailing window is re-fetched as primary
        assert records[-1].source is PriceSource.PRIMARY
        assert records[-20].source is PriceSource.BACKFILL
        assert len(store.load()) == 731

    def test_update_skips_backfill_when_long_enough(self, tmp_path: Path) -> None:
        path = tmp_path / "prices.csv"
        http = StubHttp({"coinbase:candles": candle_route})
        store = make_store(path, http, min_rows=5)
        store.save([point(date(2024, 5, d), 100.0) for d in range(1, 11)])

        records, summary = asyncio.run(store.update())

        assert "backfill" not in summary
        assert len(http.calls) == 1
        assert records[0].date == date(2024, 5, 1)
        assert records[-1].date == date(2024, 6, 15)

    def test_update_survives_total_outage(self, tmp_path: Path) -> None:
        """Stored history is returned untouched when every fetch fails."""
        path = tmp_path / "prices.csv"
        http = StubHttp({"coinbase:candles": UpstreamError("u", "HTTP 500", 500)})
        store = make_store(path, http, min_rows=500)
        store.save([point(date(2024, 6, 1), 100.0)])

        records, summary = asyncio.run(store.update())

        assert len(records) == 1
        assert summary["backfill"]["success"] is False
        assert summary["recent"]["success"] is False
        assert summary["total_rows"] == 1


@pytest.mark.parametrize("days", [1, 14])
def test_fetch_recent_tags_primary(tmp_path: Path, days: int) -> None:
    http = StubHttp({"coinbase:candles": candle_route})
    result = asyncio.run(make_store(tmp_path / "p.csv", http).fetch_recent(days))
    assert result.ok
    assert len(result.value) == days + 1
    assert {r.source for r in result.value} == {PriceSource.PRIMARY}
