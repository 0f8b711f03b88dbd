"""Spot BTC ETF daily flow table parser.

The upstream page changes layout without notice, so parsing is a list of
body strategies (JSON, CSV, HTML tables) tried in order. Each returns a
tagged result:

    ParseSuccess  - rows parsed cleanly
    ParsePartial  - rows parsed, some cells were dropped (warnings say which)
    ParseFailure  - nothing usable (errors say why)

A hash of the header row travels with every result so callers can detect
schema drift between runs.
"""

import hashlib
import io
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date

import pandas as pd
from bs4 import BeautifulSoup, Tag

from btc_risk.utils.parsing import (
    DATE_PARSERS,
    NUMBER_PARSERS,
    DateParser,
    NumberParser,
    has_magnitude_suffix,
    is_placeholder,
    parse_date,
    parse_number,
)
from btc_risk.utils.sanitize import normalize_cell

logger = logging.getLogger(__name__)

ETF_SYMBOLS = ("IBIT", "FBTC", "BITB", "ARKB", "BTCO", "EZBC", "BRRR", "HODL", "BTCW", "GBTC", "BTC")
MIN_RECORDS = 5
DEFAULT_SCALE = 1e6  # tables quote US$ millions unless the header says otherwise


@dataclass(frozen=True)
class FlowRow:
    """One trading day of net flows in USD."""

    date: date
    total_usd: float
    by_fund: dict[str, float] = field(default_factory=dict)


@dataclass
class ParseSuccess:
    rows: list[FlowRow]
    schema_hash: str
    strategy: str


@dataclass
class ParsePartial:
    rows: list[FlowRow]
    warnings: list[str]
    schema_hash: str
    strategy: str


@dataclass
class ParseFailure:
    errors: list[str]


ParseResult = ParseSuccess | ParsePartial | ParseFailure


def schema_hash(header: Sequence[str]) -> str:
    """Short hash of the normalized header row."""
    normalized = "|".join(normalize_cell(h).lower() for h in header)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]


def detect_scale(header: Sequence[str], context: str = "") -> float:
    """USD multiplier implied by the header text ($m -> 1e6, $bn -> 1e9)."""
    text = " ".join(header).lower() + " " + context.lower()
    if "$bn" in text or "us$bn" in text or "(bn)" in text or "billion" in text:
        return 1e9
    if "$m" in text or "us$m" in text or "(m)" in text or "million" in text:
        return 1e6
    return DEFAULT_SCALE


def _find_column(header: Sequence[str], needle: str) -> int | None:
    for i, cell in enumerate(header):
        if needle in normalize_cell(cell).lower():
            return i
    return None


def _fund_columns(header: Sequence[str]) -> dict[str, int]:
    cols: dict[str, int] = {}
    for i, cell in enumerate(header):
        symbol = normalize_cell(cell).upper()
        if symbol in ETF_SYMBOLS and symbol not in cols:
            cols[symbol] = i
    return cols


def _split_header(rows: list[list[str]], date_parsers: Sequence[DateParser]) -> tuple[list[str], list[list[str]]]:
    """
    Pick the header row: the last row carrying a "total" cell or a fund
    symbol before the first dated row. Falls back to the row just above the
    first dated row.
    """
    first_data = next(
        (i for i, r in enumerate(rows) if r and parse_date(normalize_cell(r[0]), date_parsers)),
        None,
    )
    if first_data is None:
        return [], []

    header: list[str] = []
    for r in rows[:first_data]:
        labels = [normalize_cell(c) for c in r]
        if any(c.lower() == "total" or c.upper() in ETF_SYMBOLS for c in labels):
            header = labels
    if not header and first_data > 0:
        header = [normalize_cell(c) for c in rows[first_data - 1]]
    return header, rows[first_data:]


def _to_usd(cell: str, value: float, scale: float) -> float:
    """Apply the table scale unless the cell carries its own K/M/B suffix."""
    return value if has_magnitude_suffix(cell) else value * scale


def parse_flow_rows(
    header: Sequence[str],
    rows: Sequence[Sequence[str]],
    strategy: str,
    context: str = "",
    date_parsers: Sequence[DateParser] = DATE_PARSERS,
    number_parsers: Sequence[NumberParser] = NUMBER_PARSERS,
) -> ParseResult:
    """
    Turn a header plus raw cell rows into FlowRows.

    Rows whose first cell is not a date (totals, averages, notes) are skipped
    silently. Dated rows without a usable total are dropped with a warning.
    """
    if not header:
        return ParseFailure([f"{strategy}: no header row"])

    date_col = _find_column(header, "date")
    date_col = 0 if date_col is None else date_col
    total_col = _find_column(header, "total")
    total_col = len(header) - 1 if total_col is None else total_col
    fund_cols = _fund_columns(header)
    scale = detect_scale(header, context)

    parsed: dict[date, FlowRow] = {}
    warnings: list[str] = []
    for raw in rows:
        cells = [normalize_cell(c) for c in raw]
        if len(cells) <= date_col:
            continue
        day = parse_date(cells[date_col], date_parsers)
        if day is None:
            continue
        if total_col >= len(cells) or is_placeholder(cells[total_col]):
            warnings.append(f"{day.isoformat()}: missing total")
            continue
        total = parse_number(cells[total_col], number_parsers)
        if total is None:
            warnings.append(f"{day.isoformat()}: unparseable total '{cells[total_col]}'")
            continue

        by_fund: dict[str, float] = {}
        for symbol, col in fund_cols.items():
            if col < len(cells):
                # "-" means no flow that day
                value = 0.0 if is_placeholder(cells[col]) else parse_number(cells[col], number_parsers)
                if value is not None:
                    by_fund[symbol] = _to_usd(cells[col], value, scale)
        parsed[day] = FlowRow(date=day, total_usd=_to_usd(cells[total_col], total, scale), by_fund=by_fund)

    if not parsed:
        return ParseFailure([f"{strategy}: no dated rows with totals", *warnings[:5]])

    flow_rows = [parsed[d] for d in sorted(parsed)]
    h = schema_hash(header)
    if warnings:
        return ParsePartial(rows=flow_rows, warnings=warnings, schema_hash=h, strategy=strategy)
    return ParseSuccess(rows=flow_rows, schema_hash=h, strategy=strategy)


def parse_json_body(body: str) -> ParseResult | None:
    """JSON array of objects, or an object with a "data" array."""
    stripped = body.lstrip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError as e:
        return ParseFailure([f"json: {e}"])
    records = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(records, list) or not records or not isinstance(records[0], dict):
        return ParseFailure(["json: no record array"])
    header = [str(k) for k in records[0]]
    rows = [[str(rec.get(k, "")) for k in header] for rec in records if isinstance(rec, dict)]
    return parse_flow_rows(header, rows, "json")


def parse_csv_body(body: str) -> ParseResult | None:
    head = body.lstrip()[:200]
    if not head or "<" in head or "," not in head:
        return None
    try:
        df = pd.read_csv(io.StringIO(body), header=None, dtype=str, keep_default_na=False, on_bad_lines="skip")
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        return ParseFailure([f"csv: {e}"])
    raw_rows = df.values.tolist()
    header, rows = _split_header(raw_rows, DATE_PARSERS)
    return parse_flow_rows(header, rows, "csv")


HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def table_context(table: Tag) -> str:
    """The table's <caption>, else the nearest heading above it."""
    caption = table.find("caption")
    if caption is None:
        caption = table.find_previous(HEADING_TAGS)
    return caption.get_text(" ", strip=True) if caption is not None else ""


def parse_html_body(body: str) -> ParseResult | None:
    """Every <table> on the page; the one yielding the most rows wins."""
    if "<table" not in body.lower():
        return None
    soup = BeautifulSoup(body, "lxml")

    best: ParseResult | None = None
    errors: list[str] = []
    for i, table in enumerate(soup.find_all("table")):
        raw_rows = [
            [cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"])]
            for tr in table.find_all("tr")
        ]
        header, rows = _split_header(raw_rows, DATE_PARSERS)
        result = parse_flow_rows(header, rows, f"html[{i}]", context=table_context(table))
        if isinstance(result, ParseFailure):
            errors.extend(result.errors)
            continue
        if best is None or len(result.rows) > len(best.rows):
            best = result

    return best if best is not None else ParseFailure(errors or ["html: no tables parsed"])


BodyStrategy = Callable[[str], ParseResult | None]

BODY_STRATEGIES: tuple[BodyStrategy, ...] = (
    parse_json_body,
    parse_csv_body,
    parse_html_body,
)


def parse_flows(body: str, strategies: Sequence[BodyStrategy] = BODY_STRATEGIES) -> ParseResult:
    """
    Try each body strategy in order and return the first usable result.

    Returns:
        ParseSuccess / ParsePartial from the first strategy that produced rows,
        otherwise a ParseFailure collecting every strategy's errors
    """
    errors: list[str] = []
    for strategy in strategies:
        result = strategy(body)
        if result is None:
            continue
        if isinstance(result, ParseFailure):
            errors.extend(result.errors)
            continue
        logger.debug(f"ETF flows parsed by {result.strategy}: {len(result.rows)} rows")
        return result
    return ParseFailure(errors or ["no parser accepted the response body"])
