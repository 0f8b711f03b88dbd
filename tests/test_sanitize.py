"""Tests for text sanitization."""

from btc_risk.utils.sanitize import normalize_cell, sanitize_text


class TestSanitizeText:
    """Tests for sanitize_text function."""

    def test_sanitize_none(self) -> None:
        """Test sanitize returns None for None input."""
        assert sanitize_text(None) is None

    def test_sanitize_strips_whitespace(self) -> None:
        """Test whitespace is stripped."""
        assert sanitize_text("  HTTP 503  ") == "HTTP 503"

    def test_sanitize_removes_control_chars(self) -> None:
        """Test control characters are removed."""
        assert sanitize_text("Bad\x00Gateway\x1f!") == "BadGateway!"

    def test_sanitize_removes_high_control_chars(self) -> None:
        """Test high control characters (0x7f-0x9f) are removed."""
        assert sanitize_text("Hello\x7fWorld\x9f!") == "HelloWorld!"

    def test_sanitize_drops_markup(self) -> None:
        """Error pages from upstreams are reduced to their text."""
        assert sanitize_text("<html><body><h1>502 Bad Gateway</h1></body></html>") == "502 Bad Gateway"

    def test_sanitize_truncates_long_text(self) -> None:
        """Test long upstream error bodies are truncated."""
        result = sanitize_text("<html>" + "A" * 600, max_length=200)
        assert len(result) == 203  # 200 + "..."
        assert result.endswith("...")


class TestNormalizeCell:
    """Tests for normalize_cell function."""

    def test_collapses_whitespace_and_nbsp(self) -> None:
        """Table cells often carry nbsp and line breaks."""
        assert normalize_cell("11\xa0Jan\n 2024 ") == "11 Jan 2024"

    def test_none_is_empty(self) -> None:
        assert normalize_cell(None) == ""

    def test_truncates(self) -> None:
        assert len(normalize_cell("x" * 500)) == 203
