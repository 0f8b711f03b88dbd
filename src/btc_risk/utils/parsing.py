"""Pluggable date and number parsers for scraped tables.

Each parser takes a cell string and returns a value or None. The public
parse_date / parse_number helpers walk an ordered strategy tuple and return
the first hit, so callers can swap in their own list.
"""

import math
import re
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone

DateParser = Callable[[str], date | None]
NumberParser = Callable[[str], float | None]

MIN_VALID_YEAR = 2009

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ISO_RE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})")
_DMY_RE = re.compile(r"^\s*(\d{1,2})[\s\-]+([A-Za-z]{3,9})[\s\-,]+(\d{4})\s*$")
_SLASH_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})\s*$")
_NUMERIC_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")
_SUFFIXED_RE = re.compile(r"^(?P<open>\()?(?P<num>[-+]?\d+(?:\.\d+)?)(?P<suffix>[kmb])(?(open)\))$", re.IGNORECASE)
MAGNITUDE_SUFFIXES = {"k": 1e3, "m": 1e6, "b": 1e9}

PLACEHOLDERS = frozenset({"", "-", "–", "—", "n/a", "na", "nan", "null", "none"})
_MINUS_CHARS = str.maketrans({"−": "-", "–": "-", "—": "-"})


def _valid_year(year: int) -> bool:
    return MIN_VALID_YEAR <= year <= datetime.now(timezone.utc).year + 1


def _safe_date(year: int, month: int, day: int) -> date | None:
    if not _valid_year(year):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_iso_date(text: str) -> date | None:
    """2024-01-11 or 2024-01-11T00:00:00Z."""
    m = _ISO_RE.match(text)
    if not m:
        return None
    return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def parse_day_month_year(text: str) -> date | None:
    """11 Jan 2024, 11-Jan-2024, 11 January 2024."""
    m = _DMY_RE.match(text)
    if not m:
        return None
    month = _MONTHS.get(m.group(2)[:3].lower())
    if month is None:
        return None
    return _safe_date(int(m.group(3)), month, int(m.group(1)))


def parse_slash_date(text: str) -> date | None:
    """
    Slash dates, US order (MM/DD/YYYY) unless the first part cannot be a month.

    Two-digit years are read as 20YY.
    """
    m = _SLASH_RE.match(text)
    if not m:
        return None
    a, b, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if year < 100:
        year += 2000
    month, day = (b, a) if a > 12 else (a, b)
    return _safe_date(year, month, day)


DATE_PARSERS: tuple[DateParser, ...] = (
    parse_iso_date,
    parse_day_month_year,
    parse_slash_date,
)


def parse_date(text: str | None, parsers: Sequence[DateParser] = DATE_PARSERS) -> date | None:
    """First successful parse across `parsers`, or None."""
    if not text:
        return None
    for parser in parsers:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None


def _finite(value: float) -> float | None:
    return value if math.isfinite(value) else None


def parse_plain_number(text: str) -> float | None:
    try:
        return _finite(float(text))
    except ValueError:
        return None


def parse_clean_number(text: str) -> float | None:
    """Strip currency, thousands separators and unicode minus signs."""
    cleaned = text.translate(_MINUS_CHARS)
    cleaned = re.sub(r"[$,\s]", "", cleaned)
    return parse_plain_number(cleaned) if cleaned else None


def parse_accounting_number(text: str) -> float | None:
    """(123.4) -> -123.4."""
    stripped = text.strip()
    if not (stripped.startswith("(") and stripped.endswith(")")):
        return None
    inner = parse_clean_number(stripped[1:-1])
    return -abs(inner) if inner is not None else None


def _magnitude_match(text: str) -> re.Match[str] | None:
    cleaned = re.sub(r"[$,\s]", "", text.translate(_MINUS_CHARS))
    return _SUFFIXED_RE.match(cleaned)


def has_magnitude_suffix(text: str | None) -> bool:
    """True when the cell states its own K/M/B magnitude."""
    return text is not None and _magnitude_match(text) is not None


def parse_suffixed_number(text: str) -> float | None:
    """1.5K -> 1500, (2.1B) -> -2.1e9, −3m -> -3e6."""
    m = _magnitude_match(text)
    if not m:
        return None
    value = parse_plain_number(m.group("num"))
    if value is None:
        return None
    value *= MAGNITUDE_SUFFIXES[m.group("suffix").lower()]
    return -abs(value) if m.group("open") else value


def parse_embedded_number(text: str) -> float | None:
    """Last resort: first numeric token in the cell."""
    m = _NUMERIC_RE.search(text.translate(_MINUS_CHARS).replace(",", ""))
    if not m:
        return None
    return parse_plain_number(m.group(0))


NUMBER_PARSERS: tuple[NumberParser, ...] = (
    parse_plain_number,
    parse_clean_number,
    parse_accounting_number,
    parse_suffixed_number,
    parse_embedded_number,
)


def is_placeholder(text: str | None) -> bool:
    return text is None or text.strip().lower() in PLACEHOLDERS


def parse_number(
    text: str | None,
    parsers: Sequence[NumberParser] = NUMBER_PARSERS,
) -> float | None:
    """First successful parse across `parsers`; placeholders yield None."""
    if is_placeholder(text):
        return None
    for parser in parsers:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None
