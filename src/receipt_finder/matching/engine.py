"""Matching engine for scoring receipt candidates against expected transactions.

Two scorers live here:
- Metadata scoring looks at sender, subject, date and attachment presence
  of a mail candidate. Signals are noisy, so FOUND needs 75 points.
- Content scoring inspects the text of a retrieved document. The document
  is authoritative, so an exact amount alone crosses the 50 point bar.

Billing records from billing APIs are matched separately on amount,
billing period and merchant aliases.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from receipt_finder.matching.amounts import date_literals, find_amounts, relative_difference
from receipt_finder.matching.fuzzy import is_fuzzy_match
from receipt_finder.matching.merchant_rules import get_merchant_rule
from receipt_finder.schemas.scan_models import MatchResult, MatchStatus, RequestStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from receipt_finder.schemas.scan_models import BillingRecord, Candidate, ReceiptRequest

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {
        "oy",
        "ab",
        "ltd",
        "inc",
        "corp",
        "pllc",
        "gmbh",
        "the",
        "and",
        "for",
        "receipt",
        "payment",
        "invoice",
        "no-reply",
        "support",
        "hello",
        "team",
        "to",
        "at",
        "on",
        "in",
        "of",
        "by",
        "is",
        "it",
        "no",
    }
)

# Microsoft style invoice id embedded in the merchant string ("Microsoft-G092604318")
INVOICE_ID_PATTERN = re.compile(r"G\d{10,12}")


def merchant_tokens(merchant: str) -> list[str]:
    """Lowercase merchant tokens without stop words, at least two chars long."""
    return [
        token
        for token in re.split(r"[^a-z0-9]+", merchant.lower())
        if len(token) >= 2 and token not in STOP_WORDS
    ]


def token_in_text(token: str, *texts: str) -> bool:
    """Substring match, or word-boundary match for tokens shorter than four chars.

    Short tokens like "vr" would otherwise hit inside words like "over".
    """
    if len(token) < 4:
        pattern = re.compile(rf"\b{re.escape(token)}\b", re.IGNORECASE)
        return any(pattern.search(text) for text in texts)
    return any(token in text for text in texts)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass
class ContentScore:
    """Result of scoring extracted document text against a request."""

    score: int
    trace: list[str] = field(default_factory=list)
    found_amount: Decimal | None = None
    amounts_found: list[Decimal] = field(default_factory=list)
    amount_matched: bool = False
    merchant_matched: bool = False
    date_matched: bool = False

    @property
    def hard_amount_mismatch(self) -> bool:
        """True when the text carries amounts but none of them is the expected one."""
        return bool(self.amounts_found) and not self.amount_matched


class MatchingEngine:
    """Scores candidates and billing records against receipt requests.

    Metadata signals:
    - Date: +25 within 24h, +15 within 3 days, +5 within 7 days
    - Merchant: capped at 40 (name, sender domain, registry keyword)
    - Invoice id: +100 outside the cap
    - Attachment: +20, or hard veto when there is none
    """

    SCORE_DATE_EXACT = 25
    SCORE_DATE_CLOSE = 15
    SCORE_DATE_WEEK = 5

    SCORE_MERCHANT_DIRECT = 35
    SCORE_MERCHANT_FUZZY = 15
    SCORE_MERCHANT_DOMAIN = 20
    SCORE_MERCHANT_KEYWORD = 15
    MERCHANT_CAP = 40

    SCORE_INVOICE_ID = 100
    SCORE_ATTACHMENT = 20

    THRESHOLD_FOUND = 75
    THRESHOLD_POSSIBLE = 45

    FUZZY_TOKEN_THRESHOLD = 0.85

    # Content scoring
    CONTENT_AMOUNT_EXACT = 70
    CONTENT_AMOUNT_FUZZY = 40
    CONTENT_MERCHANT_DIRECT = 20
    CONTENT_MERCHANT_KEYWORD = 25
    CONTENT_DATE = 10
    EXACT_AMOUNT_TOLERANCE = Decimal("0.01")
    FUZZY_AMOUNT_TOLERANCE = Decimal("0.20")

    def score_metadata(self, request: ReceiptRequest, candidate: Candidate) -> MatchResult:
        """Score a mail candidate from its metadata only.

        Args:
            request: The expected transaction.
            candidate: Mail message found by a provider adapter.

        Returns:
            MatchResult with confidence, status and the trace of fired rules.
        """
        if not candidate.has_attachments:
            return MatchResult(
                request_id=request.id,
                candidate_id=candidate.id,
                confidence=0,
                status=MatchStatus.NOT_FOUND,
                trace=["Skipped: no attachments"],
            )

        trace: list[str] = []
        score = self._score_date(request, candidate, trace)
        score += self._score_merchant(request, candidate, trace)
        score += self._score_invoice_id(request, candidate, trace)

        score += self.SCORE_ATTACHMENT
        trace.append(f"Attachment present ({len(candidate.attachments)})")

        confidence = min(score, 100)
        return MatchResult(
            request_id=request.id,
            candidate_id=candidate.id,
            confidence=confidence,
            status=self.status_for(confidence),
            trace=trace,
            body_html=candidate.body_html,
        )

    def status_for(self, confidence: int) -> MatchStatus:
        if confidence >= self.THRESHOLD_FOUND:
            return MatchStatus.FOUND
        if confidence >= self.THRESHOLD_POSSIBLE:
            return MatchStatus.POSSIBLE
        return MatchStatus.NOT_FOUND

    def _score_date(self, request: ReceiptRequest, candidate: Candidate, trace: list[str]) -> int:
        expected = datetime.combine(request.date, time.min)
        delta = abs(_as_naive_utc(candidate.timestamp) - expected)
        seconds = delta.total_seconds()

        if seconds <= 86400:
            trace.append("Date: exact (24h)")
            return self.SCORE_DATE_EXACT

        days = math.ceil(seconds / 86400)
        if days <= 3:
            trace.append(f"Date: close ({days}d)")
            return self.SCORE_DATE_CLOSE
        if days <= 7:
            trace.append(f"Date: week ({days}d)")
            return self.SCORE_DATE_WEEK
        return 0

    def _score_merchant(
        self, request: ReceiptRequest, candidate: Candidate, trace: list[str]
    ) -> int:
        sender_lower = candidate.sender.lower()
        sender_name = sender_lower.split("<")[0].strip()
        subject_lower = candidate.subject.lower()
        tokens = merchant_tokens(request.merchant)

        score = 0
        if any(token_in_text(token, sender_name, subject_lower) for token in tokens):
            score += self.SCORE_MERCHANT_DIRECT
            trace.append("Merchant: direct name match")
        else:
            sender_parts = [p for p in re.split(r"[^a-z0-9]+", sender_name) if p]
            fuzzy = any(
                is_fuzzy_match(part, token, self.FUZZY_TOKEN_THRESHOLD)
                for token in tokens
                if len(token) > 4
                for part in sender_parts
            )
            if fuzzy:
                score += self.SCORE_MERCHANT_FUZZY
                trace.append("Merchant: fuzzy name match")

        rule = get_merchant_rule(request.merchant)
        if rule is not None:
            domain = rule.find_domain(sender_lower)
            if domain:
                score += self.SCORE_MERCHANT_DOMAIN
                trace.append(f"Domain match ({domain})")

            keyword = rule.find_keyword(candidate.subject, candidate.snippet)
            if keyword:
                score += self.SCORE_MERCHANT_KEYWORD
                trace.append(f"Keyword match ({keyword})")

        return min(score, self.MERCHANT_CAP)

    def _score_invoice_id(
        self, request: ReceiptRequest, candidate: Candidate, trace: list[str]
    ) -> int:
        match = INVOICE_ID_PATTERN.search(request.merchant)
        if not match:
            return 0

        invoice_id = match.group(0)
        in_subject = invoice_id in candidate.subject
        in_filename = any(invoice_id in a.name for a in candidate.attachments)
        if in_subject or in_filename:
            trace.append(f"Invoice ID match ({invoice_id})")
            return self.SCORE_INVOICE_ID
        return 0

    def score_content(self, text: str, request: ReceiptRequest) -> ContentScore:
        """Score extracted document text against a request.

        Args:
            text: Raw text from the text layer or OCR.
            request: The expected transaction.

        Returns:
            ContentScore with score, trace and amount diagnostics.
        """
        norm_text = re.sub(r"\s+", " ", text.lower())
        result = ContentScore(score=0)

        self._score_content_amount(norm_text, request, result)
        self._score_content_merchant(norm_text, request, result)

        if any(literal in norm_text for literal in date_literals(request.date)):
            result.score += self.CONTENT_DATE
            result.date_matched = True
            result.trace.append("Date found")

        return result

    def _score_content_amount(
        self, norm_text: str, request: ReceiptRequest, result: ContentScore
    ) -> None:
        result.amounts_found = find_amounts(norm_text)

        best: Decimal | None = None
        best_diff: Decimal | None = None
        for amount in result.amounts_found:
            diff = relative_difference(amount, request.amount)
            if diff <= self.EXACT_AMOUNT_TOLERANCE:
                result.score += self.CONTENT_AMOUNT_EXACT
                result.found_amount = amount
                result.amount_matched = True
                result.trace.append(f"Amount exact match ({amount})")
                return
            if diff <= self.FUZZY_AMOUNT_TOLERANCE and (best_diff is None or diff < best_diff):
                best, best_diff = amount, diff

        if best is not None:
            result.score += self.CONTENT_AMOUNT_FUZZY
            result.found_amount = best
            result.amount_matched = True
            result.trace.append(f"Amount fuzzy match ({best})")
        elif result.amounts_found:
            result.trace.append(f"Amount not found ({request.amount})")

    def _score_content_merchant(
        self, norm_text: str, request: ReceiptRequest, result: ContentScore
    ) -> None:
        if any(token_in_text(token, norm_text) for token in merchant_tokens(request.merchant)):
            result.score += self.CONTENT_MERCHANT_DIRECT
            result.merchant_matched = True
            result.trace.append("Merchant name found")
            return

        rule = get_merchant_rule(request.merchant)
        if rule is not None:
            keyword = rule.find_keyword(norm_text)
            if keyword:
                result.score += self.CONTENT_MERCHANT_KEYWORD
                result.merchant_matched = True
                result.trace.append(f"Merchant keyword found ({keyword})")

    def match_billing_record(
        self,
        record: BillingRecord,
        open_requests: Iterable[ReceiptRequest],
    ) -> ReceiptRequest | None:
        """Find the first open request a billing record satisfies.

        A record matches when the amount is within its absolute tolerance
        and either the billing month or a merchant alias agrees. Strict
        records need both, plus the amount.

        Args:
            record: Line item from a billing API.
            open_requests: Requests that are still unassigned.

        Returns:
            The first qualifying request, or None.
        """
        for request in open_requests:
            if request.status in (RequestStatus.FOUND, RequestStatus.POSSIBLE):
                continue
            if abs(abs(record.amount) - request.amount) >= record.amount_tolerance:
                continue

            same_month = (
                record.issued.year == request.date.year
                and record.issued.month == request.date.month
            )
            # "Face Book Ads" and "facebook.com" both count as facebook
            merchant_compact = re.sub(r"[.\s]", "", request.merchant.lower())
            merchant_ok = any(alias in merchant_compact for alias in record.merchant_aliases)

            if record.require_merchant:
                qualifies = merchant_ok and same_month
            else:
                qualifies = same_month or merchant_ok

            if qualifies:
                logger.debug(
                    "Billing record %s (%s %s) matches request %s",
                    record.id,
                    record.amount,
                    record.currency,
                    request.id,
                )
                return request
        return None


_default_engine = MatchingEngine()


def score_metadata(request: ReceiptRequest, candidate: Candidate) -> MatchResult:
    """Score a candidate with the default engine."""
    return _default_engine.score_metadata(request, candidate)


def score_content(text: str, request: ReceiptRequest) -> ContentScore:
    """Score document text with the default engine."""
    return _default_engine.score_content(text, request)


def match_billing_record(
    record: BillingRecord, open_requests: Iterable[ReceiptRequest]
) -> ReceiptRequest | None:
    """Match a billing record with the default engine."""
    return _default_engine.match_billing_record(record, open_requests)
