"""Tests for the HTML receipt heuristic and email body cleaning."""

from decimal import Decimal

from receipt_finder.extractors.html_receipt import (
    analyze_html_receipt,
    clean_email_html,
    html_to_text,
)


class TestAnalyzeHtmlReceipt:
    """Tests for standalone receipt classification."""

    def test_receipt_body(self, uber_request, sample_receipt_html) -> None:
        """Test amount, date, total keyword, table and vocabulary add up."""
        analysis = analyze_html_receipt(sample_receipt_html, uber_request)

        assert analysis.is_receipt is True
        assert analysis.confidence == 85
        assert analysis.extracted_amount == Decimal("25.50")
        assert analysis.date_found is True

    def test_comma_decimal_amount(self, uber_request) -> None:
        """Test the European rendering of the amount counts as exact."""
        html = "<html><body><p>Kvitto</p><p>Totalt 25,50 kr</p><p>Tack!</p></body></html>"
        analysis = analyze_html_receipt(html, uber_request)

        assert analysis.extracted_amount == Decimal("25.50")
        assert analysis.confidence == 40 + 10 + 10

    def test_fuzzy_amount(self, uber_request) -> None:
        """Test an amount within 5% earns the fuzzy score."""
        html = "<html><body><p>Your receipt</p><p>Total charged: 26.00</p></body></html>"
        analysis = analyze_html_receipt(html, uber_request)

        assert analysis.extracted_amount == Decimal("26.00")
        assert analysis.confidence == 30 + 10 + 10
        assert analysis.is_receipt is True

    def test_newsletter_is_not_a_receipt(self, uber_request) -> None:
        """Test marketing mail without amount or date stays below threshold."""
        html = "<html><body><h1>New in March</h1><p>Check out our latest offers.</p></body></html>"
        analysis = analyze_html_receipt(html, uber_request)

        assert analysis.is_receipt is False

    def test_short_or_missing_body(self, uber_request) -> None:
        """Test empty and tiny bodies are rejected outright."""
        assert analyze_html_receipt(None, uber_request).confidence == 0
        assert analyze_html_receipt("<p>25.50</p>", uber_request).is_receipt is False


class TestCleaning:
    """Tests for HTML cleaning helpers."""

    def test_html_to_text(self) -> None:
        """Test markup, styles and entities are stripped."""
        html = "<style>p {color: red}</style><p>Total&nbsp;&euro;25.50</p>"
        assert html_to_text(html) == "Total €25.50"

    def test_clean_removes_scripts_and_trackers(self) -> None:
        """Test scripts, handlers and tracking pixels are dropped, content kept."""
        html = (
            '<div onclick="steal()">Receipt</div>'
            "<script>alert(1)</script>"
            '<img src="https://t.example.com/pixel.gif" width="1" height="1">'
            '<img src="https://mailtrack.io/open?id=1">'
            '<img src="https://cdn.example.com/logo.png">'
        )
        cleaned = clean_email_html(html)

        assert "script" not in cleaned
        assert "onclick" not in cleaned
        assert "pixel.gif" not in cleaned
        assert "mailtrack" not in cleaned
        assert "logo.png" in cleaned
        assert "Receipt" in cleaned

    def test_html_to_text_parses_real_markup(self) -> None:
        """Test attribute values containing '>' and head content do not leak into text."""
        html = (
            "<HTML><HEAD><TITLE>Your receipt</TITLE><STYLE>td {padding: 0}</STYLE></HEAD>"
            '<BODY><a title="fare > fee" href="https://uber.com">Total 25.50 EUR</a></BODY></HTML>'
        )
        assert html_to_text(html) == "Total 25.50 EUR"

    def test_clean_removes_handlers_in_any_case(self) -> None:
        """Test event handler attributes are dropped regardless of case or quoting."""
        html = "<body ONLOAD=track()><p OnMouseOver='x()' class=\"total\">Total 25.50</p></body>"
        cleaned = clean_email_html(html).lower()

        assert "onload" not in cleaned
        assert "onmouseover" not in cleaned
        assert 'class="total"' in cleaned
        assert "total 25.50" in cleaned
