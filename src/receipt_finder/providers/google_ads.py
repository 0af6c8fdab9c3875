"""
Google Ads billing adapter.

Requires a developer token; without one the adapter is never scheduled.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import httpx

from receipt_finder.config import ProviderConfig
from receipt_finder.providers.base import BillingAdapter, ProviderAuthError, ProviderError
from receipt_finder.schemas.scan_events import BillingRecordFound, SearchProgress
from receipt_finder.schemas.scan_models import BillingRecord, BillingSource

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)

GOOGLE_ADS_API_VERSION = "v17"
GOOGLE_ADS_API_BASE = f"https://googleads.googleapis.com/{GOOGLE_ADS_API_VERSION}"

AMOUNT_TOLERANCE = Decimal("0.05")
MERCHANT_ALIASES = ("google",)

INVOICE_QUERY = """
    SELECT
        invoice.id,
        invoice.issue_date,
        invoice.due_date,
        invoice.total_amount_micros,
        invoice.currency_code,
        invoice.pdf_url
    FROM invoice
    WHERE invoice.issue_date >= '{since}'
"""


def parse_invoice_row(row: dict[str, Any], customer_id: str) -> BillingRecord | None:
    """Build a BillingRecord from one googleAds:search row; None without a PDF."""
    invoice = row.get("invoice") or {}
    if not invoice.get("pdfUrl"):
        return None
    try:
        amount = Decimal(str(invoice.get("totalAmountMicros", "0"))) / Decimal(1_000_000)
        issued = date.fromisoformat(invoice["issueDate"])
    except (InvalidOperation, KeyError, ValueError):
        logger.debug("Skipping Google Ads invoice row: %s", invoice.get("id"))
        return None

    return BillingRecord(
        id=str(invoice.get("id") or invoice.get("resourceName")),
        source=BillingSource.GOOGLE_ADS,
        amount=amount,
        currency=invoice.get("currencyCode") or "USD",
        issued=issued,
        merchant_aliases=MERCHANT_ALIASES,
        amount_tolerance=AMOUNT_TOLERANCE,
        document_url=invoice["pdfUrl"],
        label="Google Ads invoice",
        account_id=customer_id,
    )


class GoogleAdsAdapter(BillingAdapter):
    """Google Ads API billing adapter."""

    name = "google_ads"

    def __init__(
        self,
        access_token: str,
        developer_token: str,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(access_token, config=config, transport=transport)
        self.developer_token = developer_token

    def _headers(self, customer_id: str | None = None) -> dict[str, str]:
        headers = {"developer-token": self.developer_token}
        if customer_id:
            headers["login-customer-id"] = customer_id
        return headers

    async def _list_customers(self) -> list[str]:
        data = await self._get_json(
            f"{GOOGLE_ADS_API_BASE}/customers:listAccessibleCustomers", headers=self._headers()
        )
        # ["customers/1234567890", ...]
        return data.get("resourceNames") or []

    async def _list_invoices(self, customer_id: str, since: date) -> list[dict[str, Any]]:
        data = await self._post_json(
            f"{GOOGLE_ADS_API_BASE}/customers/{customer_id}/googleAds:search",
            json_data={"query": INVOICE_QUERY.format(since=since.isoformat())},
            headers=self._headers(customer_id),
        )
        return data.get("results") or []

    async def list_records(
        self, requests: Sequence[ReceiptRequest], emit: Emit
    ) -> list[BillingRecord]:
        """List invoices of all accessible customers."""
        try:
            customers = await self._list_customers()
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.warning("Google Ads customer listing failed: %s", e)
            return []

        logger.info("Google Ads: found %d accessible customers", len(customers))
        since = min((r.date for r in requests), default=date.today()) - timedelta(days=31)
        records: list[BillingRecord] = []

        for index, resource_name in enumerate(customers):
            await emit(
                SearchProgress(
                    adapter=self.name,
                    completed=index,
                    total=len(customers),
                    message=f"Checking Google Ads ({index + 1}/{len(customers)})...",
                )
            )
            customer_id = resource_name.split("/")[-1]
            try:
                rows = await self._list_invoices(customer_id, since)
            except ProviderAuthError as e:
                if e.status_code == 401:
                    raise
                logger.warning("Google Ads permission denied for customer %s", customer_id)
                continue
            except ProviderError as e:
                # NOT_ADS_USER and permission errors are common for plain Google accounts
                logger.warning("Google Ads search failed for %s: %s", customer_id, e)
                continue

            for row in rows:
                record = parse_invoice_row(row, customer_id)
                if record is None:
                    continue
                records.append(record)
                await emit(BillingRecordFound(record=record))

        return records

    async def fetch_document(self, record: BillingRecord) -> bytes | None:
        if not record.document_url:
            return None
        return await self.download(record.document_url)
