"""
Gmail search adapter.

One keyword query per request (merchant name within +/- N days), message
details fetched concurrently, then a client-side receipt vocabulary filter.
Requests are processed in small concurrent batches.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from receipt_finder.providers.base import (
    MailAdapter,
    ProviderAuthError,
    ProviderError,
    chunked,
    dedupe_by_id,
    gather_batch,
)
from receipt_finder.schemas.scan_events import CandidateFound, SearchProgress
from receipt_finder.schemas.scan_models import Attachment, Candidate, ProviderKind

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
MAX_RESULTS = 50

# Receipt vocabulary in English, Finnish, Swedish, Norwegian/Danish
RECEIPT_KEYWORDS = (
    "receipt",
    "invoice",
    "order",
    "payment",
    "transaction",
    "billing",
    "charge",
    "subscription",
    "purchase",
    "confirmation",
    "statement",
    "kuitti",
    "lasku",
    "tilaus",
    "maksu",
    "tilausvahvistus",
    "kvitto",
    "faktura",
    "beställning",
    "betalning",
    "kvittering",
    "betaling",
    "bestilling",
)


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


def get_header(headers: list[dict[str, str]], name: str) -> str:
    """Case-insensitive header lookup; "" when absent."""
    wanted = name.lower()
    for header in headers:
        if header.get("name", "").lower() == wanted:
            return header.get("value", "")
    return ""


def extract_attachments(part: dict[str, Any]) -> list[Attachment]:
    """Walk a MIME tree and collect every part carrying an attachment id."""
    attachments: list[Attachment] = []
    body = part.get("body") or {}
    if part.get("filename") and body.get("attachmentId"):
        attachments.append(
            Attachment(
                name=part["filename"],
                mime_type=part.get("mimeType", ""),
                size=int(body.get("size", 0)),
                id=body["attachmentId"],
            )
        )
    for child in part.get("parts") or []:
        attachments.extend(extract_attachments(child))
    return attachments


def extract_html_body(part: dict[str, Any]) -> str:
    """Return the first text/html body in a MIME tree, decoded."""
    body = part.get("body") or {}
    if part.get("mimeType") == "text/html" and body.get("data"):
        try:
            return decode_base64url(body["data"]).decode("utf-8", errors="replace")
        except ValueError:
            return ""
    for child in part.get("parts") or []:
        found = extract_html_body(child)
        if found:
            return found
    return ""


def build_query(request: ReceiptRequest, window_days: int) -> str:
    """Gmail search query for one request: merchant phrase within a date window."""
    after = request.date - timedelta(days=window_days)
    before = request.date + timedelta(days=window_days)
    return f'after:{after:%Y/%m/%d} before:{before:%Y/%m/%d} "{request.merchant}"'


def passes_receipt_filter(candidate: Candidate) -> bool:
    """Receipt vocabulary in subject/snippet/body, or any PDF attachment."""
    if any(a.is_pdf for a in candidate.attachments):
        return True
    text = f"{candidate.subject} {candidate.snippet} {candidate.body_html or ''}".lower()
    return any(keyword in text for keyword in RECEIPT_KEYWORDS)


class GmailAdapter(MailAdapter):
    """Gmail REST API adapter."""

    name = "gmail"

    def _parse_message(self, message: dict[str, Any]) -> Candidate:
        payload = message.get("payload") or {}
        headers = payload.get("headers") or []
        internal_ms = int(message.get("internalDate", "0"))

        return Candidate(
            id=message["id"],
            subject=get_header(headers, "Subject"),
            sender=get_header(headers, "From"),
            timestamp=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
            origin=ProviderKind.GMAIL,
            snippet=message.get("snippet", ""),
            body_html=extract_html_body(payload) or None,
            attachments=tuple(extract_attachments(payload)),
            access_token=self.access_token,
        )

    async def _fetch_message(self, message_id: str) -> Candidate | None:
        try:
            data = await self._get_json(
                f"{GMAIL_API_BASE}/messages/{message_id}", params={"format": "full"}
            )
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.debug("Gmail detail fetch failed for %s: %s", message_id, e)
            return None
        return self._parse_message(data)

    async def _search_request(self, request: ReceiptRequest, emit: Emit) -> list[Candidate]:
        query = build_query(request, self.config.search_window_days)
        logger.debug("Gmail search: %s", query)

        try:
            listing = await self._get_json(
                f"{GMAIL_API_BASE}/messages",
                params={"q": query, "maxResults": MAX_RESULTS},
                timeout=self.config.list_timeout_seconds,
            )
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.warning("Gmail search failed for %s: %s", request.merchant, e)
            return []

        message_ids = [m["id"] for m in listing.get("messages") or []]
        if not message_ids:
            return []

        details = await asyncio.gather(*(self._fetch_message(mid) for mid in message_ids))

        found: list[Candidate] = []
        for candidate in details:
            if candidate is None or not passes_receipt_filter(candidate):
                continue
            found.append(candidate)
            await emit(CandidateFound(request=request, candidate=candidate))
        return found

    async def search(self, requests: Sequence[ReceiptRequest], emit: Emit) -> list[Candidate]:
        """Search Gmail for every request, batch by batch."""
        results: list[Candidate] = []
        total = len(requests)
        batch_size = self.config.batch_size

        for index, batch in enumerate(chunked(requests, batch_size)):
            start = index * batch_size
            await emit(
                SearchProgress(
                    adapter=self.name,
                    completed=start,
                    total=total,
                    message=f"Check {start + 1}-{start + len(batch)}/{total}: {batch[0].merchant}...",
                )
            )
            for found in await gather_batch(self._search_request(r, emit) for r in batch):
                results.extend(found)

        await emit(SearchProgress(adapter=self.name, completed=total, total=total))
        unique = dedupe_by_id(results)
        logger.info("Gmail search complete: %d unique candidates", len(unique))
        return unique

    async def fetch_attachment(self, candidate_id: str, attachment_id: str) -> bytes:
        data = await self._get_json(
            f"{GMAIL_API_BASE}/messages/{candidate_id}/attachments/{attachment_id}"
        )
        encoded = data.get("data")
        if not encoded:
            raise ProviderError(f"Gmail attachment {attachment_id} has no data")
        return decode_base64url(encoded)
