"""
Outlook (Microsoft Graph) search adapter.

Graph has no useful full-text search over receipts, so requests are sorted
by date and merged into overlapping +/- N day windows. Each window is listed
once with a receivedDateTime filter and every message is matched client-side
against all merchants of that window.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any

from receipt_finder.providers.base import (
    MailAdapter,
    ProviderAuthError,
    ProviderError,
    chunked,
    dedupe_by_id,
    gather_batch,
)
from receipt_finder.providers.gmail import RECEIPT_KEYWORDS
from receipt_finder.schemas.scan_events import CandidateFound, SearchProgress
from receipt_finder.schemas.scan_models import Attachment, Candidate, ProviderKind

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0/me"
PAGE_SIZE = 200
MESSAGE_FIELDS = "id,subject,from,receivedDateTime,bodyPreview,hasAttachments,body"

BANNED_TOKENS = frozenset(
    {
        "inc",
        "ltd",
        "gmbh",
        "usd",
        "eur",
        "the",
        "and",
        "for",
        "receipt",
        "payment",
        "subscription",
        "labs",
        "com",
        "www",
    }
)


@dataclass
class DateGroup:
    """Requests whose search windows overlap, listed with one query."""

    start: date
    end: date
    requests: list[ReceiptRequest] = field(default_factory=list)


def group_requests(requests: Sequence[ReceiptRequest], window_days: int) -> list[DateGroup]:
    """Sort requests by date and merge overlapping +/- window_days windows."""
    groups: list[DateGroup] = []
    window = timedelta(days=window_days)

    for request in sorted(requests, key=lambda r: r.date):
        start, end = request.date - window, request.date + window
        if groups and start <= groups[-1].end:
            groups[-1].end = max(groups[-1].end, end)
            groups[-1].requests.append(request)
        else:
            groups.append(DateGroup(start=start, end=end, requests=[request]))
    return groups


def search_tokens(merchant: str) -> list[str]:
    """Merchant tokens longer than two chars, without generic words."""
    return [
        token
        for token in re.split(r"[^a-z0-9]+", merchant.lower())
        if len(token) > 2 and token not in BANNED_TOKENS
    ]


def _iso(value: date) -> str:
    return datetime.combine(value, time.min, tzinfo=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_graph_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class OutlookAdapter(MailAdapter):
    """Microsoft Graph mail adapter."""

    name = "outlook"

    async def _list_messages(self, group: DateGroup) -> list[dict[str, Any]]:
        """List all messages of a window, following @odata.nextLink (bounded)."""
        filter_expr = f"receivedDateTime ge {_iso(group.start)} and receivedDateTime le {_iso(group.end)}"
        url: str | None = f"{GRAPH_API_BASE}/messages"
        params: dict[str, Any] | None = {
            "$filter": filter_expr,
            "$top": PAGE_SIZE,
            "$select": MESSAGE_FIELDS,
        }
        messages: list[dict[str, Any]] = []
        pages = 0

        while url and pages < self.config.max_pages:
            data = await self._get_json(
                url, params=params, timeout=self.config.paged_timeout_seconds
            )
            messages.extend(data.get("value") or [])
            url = data.get("@odata.nextLink")
            # nextLink already carries the query
            params = None
            pages += 1

        if url:
            logger.info("Outlook window %s..%s truncated after %d pages", group.start, group.end, pages)
        return messages

    async def _list_attachments(self, message_id: str) -> list[Attachment]:
        try:
            data = await self._get_json(
                f"{GRAPH_API_BASE}/messages/{message_id}/attachments",
                params={"$select": "id,name,contentType,size"},
            )
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.debug("Outlook attachment list failed for %s: %s", message_id, e)
            return []
        return [
            Attachment(
                name=a.get("name", ""),
                mime_type=a.get("contentType", ""),
                size=int(a.get("size", 0)),
                id=a["id"],
            )
            for a in data.get("value") or []
        ]

    def _to_candidate(self, message: dict[str, Any], attachments: list[Attachment]) -> Candidate:
        sender = ((message.get("from") or {}).get("emailAddress") or {}).get("address", "")
        body = message.get("body") or {}
        return Candidate(
            id=message["id"],
            subject=message.get("subject") or "",
            sender=sender,
            timestamp=_parse_graph_datetime(message["receivedDateTime"]),
            origin=ProviderKind.OUTLOOK,
            snippet=message.get("bodyPreview") or "",
            body_html=body.get("content") or None,
            attachments=tuple(attachments),
            access_token=self.access_token,
        )

    async def _process_group(self, group: DateGroup, emit: Emit) -> list[Candidate]:
        try:
            messages = await self._list_messages(group)
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.warning("Outlook window %s..%s failed: %s", group.start, group.end, e)
            return []

        logger.debug(
            "Outlook window %s..%s: %d messages, %d requests",
            group.start,
            group.end,
            len(messages),
            len(group.requests),
        )

        tokens_by_request = {r.id: search_tokens(r.merchant) for r in group.requests}
        attachment_cache: dict[str, list[Attachment]] = {}
        found: list[Candidate] = []

        for message in messages:
            subject = (message.get("subject") or "").lower()
            email = (message.get("from") or {}).get("emailAddress") or {}
            sender = (email.get("address") or "").lower()
            sender_name = (email.get("name") or "").lower()
            preview = (message.get("bodyPreview") or "").lower()
            has_attachments = bool(message.get("hasAttachments"))

            for request in group.requests:
                tokens = tokens_by_request[request.id]
                if not any(t in subject or t in sender or t in sender_name for t in tokens):
                    continue
                has_keyword = any(k in subject or k in preview for k in RECEIPT_KEYWORDS)
                if not has_keyword and not has_attachments:
                    continue

                if has_attachments and message["id"] not in attachment_cache:
                    attachment_cache[message["id"]] = await self._list_attachments(message["id"])
                candidate = self._to_candidate(message, attachment_cache.get(message["id"], []))

                found.append(candidate)
                await emit(CandidateFound(request=request, candidate=candidate))

        return found

    async def search(self, requests: Sequence[ReceiptRequest], emit: Emit) -> list[Candidate]:
        """Search Outlook window by window, in concurrent batches of groups."""
        groups = group_requests(requests, self.config.search_window_days)
        logger.info(
            "Outlook: grouped %d requests into %d date-range queries", len(requests), len(groups)
        )

        results: list[Candidate] = []
        total = len(requests)
        completed = 0
        batch_size = self.config.group_batch_size

        for index, batch in enumerate(chunked(groups, batch_size)):
            done_groups = min((index + 1) * batch_size, len(groups))
            await emit(
                SearchProgress(
                    adapter=self.name,
                    completed=completed,
                    total=total,
                    message=f"Check {done_groups}/{len(groups)} date ranges...",
                )
            )
            for found in await gather_batch(self._process_group(g, emit) for g in batch):
                results.extend(found)
            completed += sum(len(g.requests) for g in batch)

        await emit(SearchProgress(adapter=self.name, completed=total, total=total))
        unique = dedupe_by_id(results)
        logger.info("Outlook search complete: %d unique candidates", len(unique))
        return unique

    async def fetch_attachment(self, candidate_id: str, attachment_id: str) -> bytes:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/messages/{candidate_id}/attachments/{attachment_id}"
        )
        content = data.get("contentBytes")
        if not content:
            raise ProviderError(f"Outlook attachment {attachment_id} has no content")
        try:
            return base64.b64decode(content)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(f"Outlook attachment {attachment_id} is not valid base64") from e
