"""Tests for the ETF flow table parser."""

from datetime import date

import pytest

from btc_risk.factors.etf_parser import (
    ParseFailure,
    ParsePartial,
    ParseSuccess,
    detect_scale,
    parse_csv_body,
    parse_flow_rows,
    parse_flows,
    parse_html_body,
    parse_json_body,
    schema_hash,
)

HTML_PAGE = """
<html><body>
<h2>Bitcoin ETF Flow (US$m)</h2>
<table class="etf">
  <tr><th>Date</th><th>IBIT</th><th>FBTC</th><th>GBTC</th><th>Total</th></tr>
  <tr><td>11 Jan 2024</td><td>111.7</td><td>227.0</td><td>(95.1)</td><td>243.6</td></tr>
  <tr><td>12 Jan 2024</td><td>386.0</td><td>195.0</td><td>(484.1)</td><td>96.9</td></tr>
  <tr><td>16&nbsp;Jan 2024</td><td>-</td><td>79.0</td><td>(594.3)</td><td>(515.3)</td></tr>
  <tr><td>Total</td><td>497.7</td><td>501.0</td><td>(1,173.5)</td><td>(174.8)</td></tr>
  <tr><td>Average</td><td>165.9</td><td>167.0</td><td>(391.2)</td><td>(58.3)</td></tr>
</table>
<table class="other">
  <tr><th>Date</th><th>Total</th></tr>
  <tr><td>11 Jan 2024</td><td>1.0</td></tr>
</table>
</body></html>
"""

CSV_BODY = """Date,IBIT,FBTC,Total
2024-06-10,10.5,-,10.5
2024-06-11,20.0,5.0,25.0
2024-06-12,"(1,200.0)",0.0,"(1,200.0)"
Total,,,
"""


class TestHtmlStrategy:
    """Tests for HTML table parsing."""

    def test_parses_largest_table(self) -> None:
        result = parse_html_body(HTML_PAGE)

        assert isinstance(result, ParseSuccess)
        assert result.strategy == "html[0]"
        assert [r.date for r in result.rows] == [date(2024, 1, 11), date(2024, 1, 12), date(2024, 1, 16)]

    def test_values_scaled_to_usd(self) -> None:
        rows = parse_html_body(HTML_PAGE).rows
        assert rows[0].total_usd == pytest.approx(243.6e6)
        assert rows[1].by_fund["GBTC"] == pytest.approx(-484.1e6)
        assert rows[2].total_usd == pytest.approx(-515.3e6)

    def test_scale_from_heading_not_nearby_text(self) -> None:
        """Unrelated text between the heading and the table does not set the unit."""
        page = """
        <h3>Daily net flows (US$bn)</h3>
        <p>Over a million readers a month</p>
        <table>
          <tr><th>Date</th><th>Total</th></tr>
          <tr><td>2024-06-10</td><td>1.5</td></tr>
        </table>
        """
        rows = parse_html_body(page).rows
        assert rows[0].total_usd == pytest.approx(1.5e9)

    def test_caption_wins_over_heading(self) -> None:
        page = """
        <h3>Flows (US$bn)</h3>
        <table>
          <caption>Figures in US$m</caption>
          <tr><th>Date</th><th>Total</th></tr>
          <tr><td>2024-06-10</td><td>1.5</td></tr>
        </table>
        """
        assert parse_html_body(page).rows[0].total_usd == pytest.approx(1.5e6)

    def test_dash_fund_cell_is_zero(self) -> None:
        """A "-" fund cell means no flow that day."""
        rows = parse_html_body(HTML_PAGE).rows
        assert rows[2].by_fund["IBIT"] == 0.0

    def test_summary_rows_skipped(self) -> None:
        """Total/Average rows are not dates and are dropped silently."""
        result = parse_html_body(HTML_PAGE)
        assert isinstance(result, ParseSuccess)
        assert len(result.rows) == 3

    def test_not_html(self) -> None:
        assert parse_html_body("Date,Total\n") is None

    def test_table_without_dates(self) -> None:
        result = parse_html_body("<table><tr><th>Fund</th></tr><tr><td>IBIT</td></tr></table>")
        assert isinstance(result, ParseFailure)


class TestCsvStrategy:
    """Tests for CSV parsing."""

    def test_csv(self) -> None:
        result = parse_csv_body(CSV_BODY)

        assert isinstance(result, ParseSuccess)
        assert [r.total_usd for r in result.rows] == pytest.approx([10.5e6, 25.0e6, -1200.0e6])
        assert result.rows[0].by_fund == {"IBIT": 10.5e6, "FBTC": 0.0}

    def test_rejects_html(self) -> None:
        assert parse_csv_body("<html>a,b</html>") is None


class TestJsonStrategy:
    """Tests for JSON parsing."""

    def test_record_array(self) -> None:
        body = '[{"date": "2024-06-10", "IBIT": "1.5", "total": "2.0"}, {"date": "2024-06-11", "IBIT": "-", "total": "-3"}]'
        result = parse_json_body(body)

        assert isinstance(result, ParseSuccess)
        assert [r.total_usd for r in result.rows] == [2.0e6, -3.0e6]

    def test_data_envelope(self) -> None:
        body = '{"data": [{"date": "2024-06-10", "total": "4"}]}'
        result = parse_json_body(body)
        assert isinstance(result, ParseSuccess)
        assert result.rows[0].total_usd == 4.0e6

    def test_invalid_json(self) -> None:
        assert isinstance(parse_json_body("{not json"), ParseFailure)

    def test_not_json(self) -> None:
        assert parse_json_body("Date,Total") is None


class TestParseFlowRows:
    """Tests for row-level parsing."""

    def test_partial_when_total_missing(self) -> None:
        header = ["Date", "IBIT", "Total"]
        rows = [
            ["2024-06-10", "1.0", "1.0"],
            ["2024-06-11", "2.0", "-"],
            ["2024-06-12", "3.0", "pending"],
        ]
        result = parse_flow_rows(header, rows, "test")

        assert isinstance(result, ParsePartial)
        assert [r.date for r in result.rows] == [date(2024, 6, 10)]
        assert len(result.warnings) == 2
        assert "missing total" in result.warnings[0]
        assert "unparseable total" in result.warnings[1]

    def test_duplicate_dates_keep_last(self) -> None:
        header = ["Date", "Total"]
        rows = [["2024-06-10", "1.0"], ["2024-06-10", "5.0"]]
        result = parse_flow_rows(header, rows, "test")
        assert [r.total_usd for r in result.rows] == [5.0e6]

    def test_no_header(self) -> None:
        assert isinstance(parse_flow_rows([], [["2024-06-10", "1"]], "test"), ParseFailure)

    def test_no_valid_rows(self) -> None:
        result = parse_flow_rows(["Date", "Total"], [["2024-06-10", "-"]], "test")
        assert isinstance(result, ParseFailure)

    def test_suffixed_cells_not_rescaled(self) -> None:
        """A cell with its own K/M/B suffix is already in dollars."""
        header = ["Date", "IBIT", "Total"]
        rows = [["2024-06-10", "1.5K", "2.1B"], ["2024-06-11", "3.0", "(250M)"]]
        result = parse_flow_rows(header, rows, "test")

        assert result.rows[0].total_usd == pytest.approx(2.1e9)
        assert result.rows[0].by_fund["IBIT"] == pytest.approx(1500.0)
        assert result.rows[1].by_fund["IBIT"] == pytest.approx(3.0e6)
        assert result.rows[1].total_usd == pytest.approx(-250e6)

    def test_rows_sorted(self) -> None:
        rows = [["2024-06-12", "1"], ["2024-06-10", "2"]]
        result = parse_flow_rows(["Date", "Total"], rows, "test")
        assert [r.date.day for r in result.rows] == [10, 12]


class TestSchemaAndScale:
    """Tests for header hashing and unit detection."""

    def test_hash_normalizes_case_and_whitespace(self) -> None:
        assert schema_hash(["Date", "IBIT", "Total"]) == schema_hash(["date ", "ibit", "TOTAL"])

    def test_hash_changes_with_columns(self) -> None:
        assert schema_hash(["Date", "IBIT", "Total"]) != schema_hash(["Date", "IBIT", "FBTC", "Total"])

    def test_detect_scale(self) -> None:
        assert detect_scale(["Date", "Total (US$bn)"]) == 1e9
        assert detect_scale(["Date", "Total"], context="Flows in US$m") == 1e6
        assert detect_scale(["Date", "Total"]) == 1e6


class TestParseFlows:
    """Tests for the strategy chain."""

    def test_picks_first_usable_strategy(self) -> None:
        assert parse_flows(CSV_BODY).strategy == "csv"
        assert parse_flows(HTML_PAGE).strategy.startswith("html")

    def test_failure_collects_errors(self) -> None:
        result = parse_flows("nothing to see here")
        assert isinstance(result, ParseFailure)
        assert result.errors

    def test_hash_travels_with_result(self) -> None:
        result = parse_flows(CSV_BODY)
        assert result.schema_hash == schema_hash(["Date", "IBIT", "FBTC", "Total"])
