"""
HTML receipt heuristics.

Decides whether an email body IS a receipt (not just a notification about
one), and cleans such bodies before they are rendered to PDF.

Signals:
- Expected amount in the text (exact +40, within 5% +30)
- Expected date in a common rendering (+15)
- Total/sum vocabulary (+10)
- Line-item table structure (+10)
- Receipt/invoice classification vocabulary (+10)
"""

import re
from dataclasses import dataclass
from decimal import Decimal

from bs4 import BeautifulSoup

from receipt_finder.matching.amounts import find_amounts, relative_difference
from receipt_finder.schemas.scan_models import ReceiptRequest

RECEIPT_THRESHOLD = 50
FUZZY_AMOUNT_TOLERANCE = Decimal("0.05")

TOTAL_KEYWORDS = (
    "total",
    "amount",
    "sum",
    "subtotal",
    "grand total",
    "amount due",
    "amount paid",
    # Finnish
    "yhteensä",
    "summa",
    "loppusumma",
    # Swedish
    "totalt",
    "belopp",
    # Danish / Norwegian
    "i alt",
    "beløp",
)

CLASSIFICATION_KEYWORDS = (
    "receipt",
    "invoice",
    "order confirmation",
    "payment confirmation",
    "kuitti",
    "lasku",
    "tilausvahvistus",
    "maksuvahvistus",
    "kvitto",
    "faktura",
    "orderbekräftelse",
    "betalningsbekräftelse",
    "kvittering",
    "betalingsbekreftelse",
)

TRACKING_MARKERS = (
    "tracking",
    "pixel",
    "beacon",
    "analytics",
    "mailtrack",
    "sendgrid",
    "mailchimp",
    "campaign-archive",
)

NON_CONTENT_TAGS = ["script", "style", "head", "meta", "noscript"]


@dataclass
class HtmlReceiptAnalysis:
    """Outcome of the HTML receipt heuristic."""

    is_receipt: bool
    confidence: int
    extracted_amount: Decimal | None = None
    date_found: bool = False


def _drop(soup: BeautifulSoup, names: list[str]) -> None:
    for element in soup(names):
        # Nested matches go with their ancestor
        if not element.decomposed:
            element.decompose()


def parse_html(html: str) -> BeautifulSoup:
    """Parse an email body without the elements that carry no visible text."""
    soup = BeautifulSoup(html, "html.parser")
    _drop(soup, NON_CONTENT_TAGS)
    return soup


def _visible_text(soup: BeautifulSoup) -> str:
    text = soup.get_text(separator=" ").replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def html_to_text(html: str) -> str:
    """Strip markup and entities, collapse whitespace."""
    if not html:
        return ""
    return _visible_text(parse_html(html))


def _date_renderings(request: ReceiptRequest) -> list[str]:
    d = request.date
    return [
        f"{d.year}-{d.month:02d}-{d.day:02d}",
        f"{d.day}.{d.month}.{d.year}",
        f"{d.day:02d}.{d.month:02d}.{d.year}",
        f"{d.day}/{d.month}/{d.year}",
        f"{d.day:02d}/{d.month:02d}/{d.year}",
        f"{d.month}/{d.day}/{d.year}",
    ]


def analyze_html_receipt(html: str | None, request: ReceiptRequest) -> HtmlReceiptAnalysis:
    """
    Score an email body as a standalone receipt for a request.

    Args:
        html: Email HTML body
        request: The expected transaction

    Returns:
        HtmlReceiptAnalysis; is_receipt is True at 50 points or more
    """
    if not html or len(html) < 50:
        return HtmlReceiptAnalysis(is_receipt=False, confidence=0)

    soup = parse_html(html)
    text = _visible_text(soup)
    text_lower = text.lower()
    score = 0
    extracted_amount: Decimal | None = None

    amount_str = f"{request.amount:.2f}"
    if amount_str in text or amount_str.replace(".", ",") in text:
        score += 40
        extracted_amount = request.amount
    else:
        for amount in find_amounts(text):
            if relative_difference(amount, request.amount) <= FUZZY_AMOUNT_TOLERANCE:
                score += 30
                extracted_amount = amount
                break

    date_found = any(rendering in text for rendering in _date_renderings(request))
    if date_found:
        score += 15

    if any(keyword in text_lower for keyword in TOTAL_KEYWORDS):
        score += 10

    has_table = soup.find("table") is not None
    row_count = len(soup.find_all("tr"))
    if has_table and row_count >= 2:
        score += 10

    if any(keyword in text_lower for keyword in CLASSIFICATION_KEYWORDS):
        score += 10

    return HtmlReceiptAnalysis(
        is_receipt=score >= RECEIPT_THRESHOLD,
        confidence=score,
        extracted_amount=extracted_amount,
        date_found=date_found,
    )


def _is_tracking_image(img) -> bool:
    if img.get("width") == "1" and img.get("height") == "1":
        return True
    src = (img.get("src") or "").lower()
    return any(marker in src for marker in TRACKING_MARKERS)


def clean_email_html(html: str) -> str:
    """Remove scripts, styles, event handlers and tracking images from an email body."""
    soup = BeautifulSoup(html, "html.parser")
    _drop(soup, ["script", "style"])
    for img in soup.find_all("img"):
        if _is_tracking_image(img):
            img.decompose()
    for tag in soup.find_all(True):
        for attr in [name for name in tag.attrs if name.lower().startswith("on")]:
            del tag[attr]
    return str(soup)
