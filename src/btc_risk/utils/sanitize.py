"""Cleaning for text that ends up in published artifacts."""

import re

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_TAG_RE = re.compile(r"<[^>]{0,200}>")
_WHITESPACE_RE = re.compile(r"\s+")
ELLIPSIS = "..."


def sanitize_text(text: str | None, max_length: int = 500) -> str | None:
    """
    Sanitize untrusted text: upstream error bodies, exception messages, scraped cells.

    Drops control characters and markup tags, then truncates to max_length
    (plus an ellipsis).

    Args:
        text: Text to sanitize (may be None)
        max_length: Maximum length before truncation

    Returns:
        Sanitized text or None if input was None
    """
    if text is None:
        return None

    cleaned = _TAG_RE.sub("", _CONTROL_RE.sub("", text))
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + ELLIPSIS
    return cleaned.strip()


def normalize_cell(text: str | None) -> str:
    """Collapse whitespace (including nbsp) in a scraped table cell."""
    if text is None:
        return ""
    collapsed = _WHITESPACE_RE.sub(" ", text.replace("\xa0", " "))
    return sanitize_text(collapsed, max_length=200) or ""
