"""
PDF rendering for evidence that does not arrive as a document.

Two sources are rendered:
- Receipt-like email bodies (HTML) that carry no attachment
- Billing records from ad platforms that expose no downloadable invoice
"""

import logging
import re
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from receipt_finder.extractors.html_receipt import clean_email_html, parse_html
from receipt_finder.schemas.scan_models import BillingRecord, Candidate

logger = logging.getLogger(__name__)

BLOCK_TAGS = ["p", "div", "tr", "li", "table", "h1", "h2", "h3", "h4", "h5", "h6"]


def html_to_lines(html: str) -> list[str]:
    """Flatten an HTML body into non-empty text lines, keeping row structure."""
    soup = parse_html(html)
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for cell in soup.find_all(["td", "th"]):
        cell.append("  ")
    for block in soup.find_all(BLOCK_TAGS):
        block.append("\n")
    text = soup.get_text().replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return [line for line in lines if line]


def _styles() -> dict[str, ParagraphStyle]:
    styles = getSampleStyleSheet()
    return {
        "header": ParagraphStyle(
            "Header",
            parent=styles["Heading1"],
            fontSize=20,
            spaceAfter=6,
            textColor=colors.HexColor("#1c1e21"),
        ),
        "subheader": ParagraphStyle(
            "SubHeader",
            parent=styles["Normal"],
            fontSize=10,
            textColor=colors.grey,
            spaceAfter=14,
        ),
        "body": ParagraphStyle(
            "Body",
            parent=styles["Normal"],
            fontSize=9,
            leading=12,
        ),
        "footer": ParagraphStyle(
            "Footer",
            parent=styles["Normal"],
            fontSize=8,
            textColor=colors.grey,
            alignment=1,  # Center
        ),
    }


def _new_document(buffer: BytesIO, title: str) -> SimpleDocTemplate:
    return SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=20 * mm,
        leftMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=title,
    )


def _info_table(rows: list[list[str]]) -> Table:
    table = Table(rows, colWidths=[110, 330])
    table.setStyle(
        TableStyle(
            [
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.grey),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return table


def render_html_receipt(html: str, candidate: Candidate, merchant: str) -> bytes:
    """
    Render a receipt email body into a PDF document.

    Args:
        html: Email HTML body
        candidate: The message the body belongs to
        merchant: Merchant name of the request the body was matched to

    Returns:
        PDF bytes
    """
    styles = _styles()
    buffer = BytesIO()
    doc = _new_document(buffer, f"Receipt from {merchant}")

    story = [
        Paragraph(escape(f"Receipt from {merchant}"), styles["header"]),
        Paragraph("Extracted from email", styles["subheader"]),
        _info_table(
            [
                ["From:", candidate.sender],
                ["Subject:", candidate.subject[:80]],
                ["Received:", candidate.timestamp.strftime("%Y-%m-%d %H:%M")],
            ]
        ),
        Spacer(1, 14),
    ]

    for line in html_to_lines(clean_email_html(html)):
        story.append(Paragraph(escape(line), styles["body"]))

    doc.build(story)
    logger.debug("Rendered email %s to PDF (%d bytes)", candidate.id, buffer.tell())
    return buffer.getvalue()


def render_billing_receipt(record: BillingRecord) -> bytes:
    """
    Render a billing record (ad platform charge) into a receipt PDF.

    Args:
        record: Billing record without a downloadable document

    Returns:
        PDF bytes
    """
    styles = _styles()
    buffer = BytesIO()
    title = f"Invoice for {record.account_name or record.account_id or 'account'}"
    doc = _new_document(buffer, title)

    story = [
        Paragraph(escape(title), styles["header"]),
        Paragraph(escape(f"Account ID: {record.account_id}"), styles["subheader"]),
        _info_table(
            [
                ["Payment date:", record.issued.strftime("%d %B %Y")],
                ["Transaction ID:", record.id],
                ["Description:", record.label or record.source.value],
            ]
        ),
        Spacer(1, 20),
    ]

    totals = Table(
        [["Amount billed:", f"{record.amount:.2f} {record.currency}"]],
        colWidths=[120, 120],
    )
    totals.setStyle(
        TableStyle(
            [
                ("FONTSIZE", (0, 0), (-1, -1), 12),
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica-Bold"),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEABOVE", (0, 0), (-1, 0), 1, colors.black),
                ("TOPPADDING", (0, 0), (-1, -1), 8),
            ]
        )
    )
    story.append(totals)
    story.append(Spacer(1, 40))
    story.append(
        Paragraph(
            "Generated from billing data; the platform did not provide a downloadable invoice.",
            styles["footer"],
        )
    )

    doc.build(story)
    return buffer.getvalue()
