"""Tests for artifact metadata and provenance blocks."""

from datetime import date, datetime, timezone

from btc_risk import ETL_VERSION, MODEL_VERSION
from btc_risk.utils.provenance import (
    SourceStatus,
    build_meta,
    build_provenance,
    redact_url,
    utc_now_iso,
)


class TestBuildMeta:
    """Tests for build_meta function."""

    def test_versions_present(self) -> None:
        meta = build_meta("latest", 1234.56)
        assert meta["etl_version"] == ETL_VERSION
        assert meta["model_version"] == MODEL_VERSION
        assert meta["artifact"] == "latest"
        assert meta["duration_ms"] == 1234.6

    def test_duration_optional(self) -> None:
        assert "duration_ms" not in build_meta("status")


class TestBuildProvenance:
    """Tests for build_provenance function."""

    def test_as_of_date(self) -> None:
        prov = build_provenance("coinbase", as_of=date(2024, 6, 15), total_rows=10)
        assert prov == {"source": "coinbase", "as_of": "2024-06-15", "total_rows": 10, "warnings": []}

    def test_failed_results_become_warnings(self) -> None:
        prov = build_provenance(
            "coinbase",
            backfill={"success": False, "error": "upstream", "reason": "HTTP 503: down"},
            recent={"success": True},
        )
        assert prov["as_of"] is None
        assert prov["warnings"] == ["backfill: HTTP 503: down"]


def test_utc_now_iso_normalizes_offset() -> None:
    aware = datetime(2024, 6, 15, 14, 30, 5, 999, tzinfo=timezone.utc)
    assert utc_now_iso(aware) == "2024-06-15T14:30:05Z"


def test_source_status_redacts_keys() -> None:
    status = SourceStatus(
        name="fred:WALCL",
        ok=False,
        ms=12,
        url="https://api.stlouisfed.org/fred/series/observations?series_id=WALCL&api_key=secret",
        status_code=500,
        error="HTTP 500",
    )
    out = status.to_dict()
    assert "secret" not in out["url"]
    assert out["url"].endswith("api_key=***")
    assert out["status"] == 500
    assert redact_url("https://x.test/?token=abc&a=1") == "https://x.test/?token=***&a=1"
