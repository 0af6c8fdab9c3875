"""Test fixtures and utilities."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from io import BytesIO

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from receipt_finder.config import Config, OCRConfig
from receipt_finder.providers.base import BillingAdapter, MailAdapter, ProviderAuthError
from receipt_finder.schemas.scan_events import BillingRecordFound, CandidateFound, SearchProgress
from receipt_finder.schemas.scan_models import (
    Attachment,
    BillingRecord,
    BillingSource,
    Candidate,
    ProviderKind,
    ReceiptRequest,
)

# Sample text of a Finnish rail ticket
SAMPLE_VR_TICKET_TEXT = """
VR Biljett
Bokning 4F7KQ2
Resenär 1 vuxen
Helsinki - Turku 3.6.2025 08:12
Pris 25.50 EUR
Moms 10% 2,32
"""

SAMPLE_RECEIPT_HTML = """
<html><body>
<h1>Thanks for riding with Uber</h1>
<p>Here is your receipt for your trip on 2024-02-15.</p>
<table>
  <tr><td>Trip fare</td><td>€22.10</td></tr>
  <tr><td>Booking fee</td><td>€3.40</td></tr>
  <tr><td><b>Total</b></td><td><b>€25.50</b></td></tr>
</table>
<p>Payment method: Visa ****4242</p>
</body></html>
"""


def build_pdf(lines: Sequence[str]) -> bytes:
    """Build a one-page PDF with a real text layer."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    styles = getSampleStyleSheet()
    story = []
    for line in lines:
        story.append(Paragraph(line, styles["Normal"]))
        story.append(Spacer(1, 4))
    doc.build(story)
    return buffer.getvalue()


@pytest.fixture
def make_pdf():
    """Factory building text-layer PDFs from lines."""
    return build_pdf


@pytest.fixture
def sample_vr_text() -> str:
    """Finnish rail ticket text."""
    return SAMPLE_VR_TICKET_TEXT


@pytest.fixture
def sample_receipt_html() -> str:
    """Uber style HTML receipt."""
    return SAMPLE_RECEIPT_HTML


@pytest.fixture
def uber_request() -> ReceiptRequest:
    """Expected Uber ride."""
    return ReceiptRequest(
        id="req-uber",
        date=date(2024, 2, 15),
        merchant="Uber",
        amount=Decimal("25.50"),
    )


@pytest.fixture
def pdf_attachment() -> Attachment:
    return Attachment(name="receipt.pdf", mime_type="application/pdf", size=20480, id="att-1")


@pytest.fixture
def uber_candidate(pdf_attachment) -> Candidate:
    """Uber receipt mail with a PDF attachment."""
    return Candidate(
        id="msg-uber",
        subject="Your Trip",
        sender="receipts@uber.com",
        timestamp=datetime(2024, 2, 15, 9, 30, tzinfo=timezone.utc),
        origin=ProviderKind.GMAIL,
        snippet="Total: €25.50",
        attachments=(pdf_attachment,),
        access_token="token-123",
    )


@pytest.fixture
def offline_config() -> Config:
    """Default config without OCR (no tesseract needed)."""
    return Config(ocr=OCRConfig(enabled=False))


@pytest.fixture
def meta_record() -> BillingRecord:
    return BillingRecord(
        id="tx-991",
        source=BillingSource.META,
        amount=Decimal("49.99"),
        currency="EUR",
        issued=date(2024, 3, 2),
        merchant_aliases=("facebook", "meta", "facebk", "fbme"),
        amount_tolerance=Decimal("0.10"),
        require_merchant=True,
        label="Ad account charge",
        account_name="Acme Ads",
    )


class FakeMailAdapter(MailAdapter):
    """Mail adapter replaying scripted (request_id, candidate) pairs."""

    name = "gmail"

    def __init__(
        self,
        found: Sequence[tuple[str, Candidate]] = (),
        files: dict[str, bytes] | None = None,
        auth_error: bool = False,
    ) -> None:
        super().__init__("fake-token")
        self.found = list(found)
        self.files = files or {}
        self.auth_error = auth_error
        self.fetched: list[str] = []

    async def search(self, requests, emit):
        if self.auth_error:
            raise ProviderAuthError(401, "Unauthorized")
        by_id = {r.id: r for r in requests}
        results = []
        for index, (request_id, candidate) in enumerate(self.found):
            await emit(CandidateFound(request=by_id[request_id], candidate=candidate))
            await emit(
                SearchProgress(adapter=self.name, completed=index + 1, total=len(self.found))
            )
            results.append(candidate)
        return results

    async def fetch_attachment(self, candidate_id, attachment_id):
        self.fetched.append(candidate_id)
        return self.files[candidate_id]


class FakeBillingAdapter(BillingAdapter):
    """Billing adapter replaying scripted records."""

    name = "meta_ads"

    def __init__(self, records: Sequence[BillingRecord] = (), document: bytes | None = None):
        super().__init__("fake-token")
        self.records = list(records)
        self.document = document

    async def list_records(self, requests, emit):
        for record in self.records:
            await emit(BillingRecordFound(record=record))
        return self.records

    async def fetch_document(self, record):
        return self.document


@pytest.fixture
def fake_mail_adapter():
    """Factory for FakeMailAdapter."""
    return FakeMailAdapter


@pytest.fixture
def fake_billing_adapter():
    """Factory for FakeBillingAdapter."""
    return FakeBillingAdapter
