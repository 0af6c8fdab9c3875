"""
Scan data model.

All provider-specific shapes are normalized into these records at the
adapter boundary, so the matching engine never sees provider quirks.

Key invariants:
- A ReceiptRequest is only mutated through apply_match()
- Candidates and sessions are read-only
- Confidence is an integer within 0-100
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class RequestStatus(str, Enum):
    """Lifecycle status of a receipt request."""

    PENDING = "pending"
    FOUND = "found"
    POSSIBLE = "possible"
    NOT_FOUND = "not_found"
    MISSING = "missing"


class MatchStatus(str, Enum):
    """Outcome of scoring a candidate against a request."""

    FOUND = "FOUND"
    POSSIBLE = "POSSIBLE"
    NOT_FOUND = "NOT_FOUND"
    MISSING = "MISSING"

    @property
    def is_match(self) -> bool:
        """True for outcomes that are worth materializing evidence for."""
        return self in (MatchStatus.FOUND, MatchStatus.POSSIBLE)


class ProviderKind(str, Enum):
    """Origin of a mail candidate."""

    GMAIL = "gmail"
    OUTLOOK = "outlook"


class BillingSource(str, Enum):
    """Origin of a billing record."""

    AZURE = "azure"
    GOOGLE_ADS = "google_ads"
    META = "meta"


SESSION_PROVIDERS = ("google", "azure-ad", "facebook")


@dataclass
class ReceiptRequest:
    """One expected transaction that needs documentary evidence."""

    id: str
    date: date
    merchant: str
    amount: Decimal
    currency: str = "EUR"
    status: RequestStatus = RequestStatus.PENDING

    def apply_match(self, result: MatchResult) -> None:
        """Move the request to the lifecycle status implied by a match result."""
        self.status = {
            MatchStatus.FOUND: RequestStatus.FOUND,
            MatchStatus.POSSIBLE: RequestStatus.POSSIBLE,
            MatchStatus.NOT_FOUND: RequestStatus.NOT_FOUND,
            MatchStatus.MISSING: RequestStatus.MISSING,
        }[result.status]


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata as listed by a mail provider."""

    name: str
    mime_type: str
    size: int
    id: str

    @property
    def is_pdf(self) -> bool:
        return "pdf" in self.mime_type.lower() or self.name.lower().endswith(".pdf")

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


@dataclass(frozen=True)
class Candidate:
    """A mail message proposed as possible evidence for a request."""

    id: str
    subject: str
    sender: str
    timestamp: datetime
    origin: ProviderKind
    snippet: str = ""
    body_html: str | None = None
    attachments: tuple[Attachment, ...] = ()
    # Credential used to fetch attachments later; never printed
    access_token: str | None = field(default=None, repr=False)

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0

    def preferred_attachment(self) -> Attachment | None:
        """Return the first PDF attachment, else the first image, else None."""
        for attachment in self.attachments:
            if attachment.is_pdf:
                return attachment
        for attachment in self.attachments:
            if attachment.is_image:
                return attachment
        return None


@dataclass
class MatchResult:
    """Binds a request to at most one candidate."""

    request_id: str
    candidate_id: str | None
    confidence: int
    status: MatchStatus
    trace: list[str] = field(default_factory=list)
    body_html: str | None = None
    file_name: str | None = None
    storage_ref: str | None = None

    @property
    def details(self) -> str:
        """Human-readable rule trace."""
        return ", ".join(self.trace)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "request_id": self.request_id,
            "candidate_id": self.candidate_id,
            "confidence": self.confidence,
            "status": self.status.value,
            "details": self.details,
            "file_name": self.file_name,
            "storage_ref": self.storage_ref,
        }


@dataclass(frozen=True)
class ScanSession:
    """One authenticated provider connection supplied by the caller."""

    provider: str
    identity: str | None
    access_token: str | None = field(default=None, repr=False)

    @property
    def is_valid(self) -> bool:
        return bool(self.identity) and bool(self.access_token)


@dataclass
class BillingRecord:
    """A line item from a billing API (invoice, transaction or activity)."""

    id: str
    source: BillingSource
    amount: Decimal
    currency: str
    issued: date
    merchant_aliases: tuple[str, ...] = ()
    amount_tolerance: Decimal = Decimal("0.05")
    # Strict records need merchant AND amount AND same month
    require_merchant: bool = False
    document_url: str | None = None
    label: str = ""
    account_name: str = ""
    account_id: str = ""

    @property
    def file_name(self) -> str:
        return f"{self.source.value}_{self.id}.pdf".replace("/", "_")
