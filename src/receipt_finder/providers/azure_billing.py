"""
Azure Billing adapter.

Lists invoices of every enabled subscription the token can see. Invoice
listings often need an "Invoice Reader" role; 403/404 on a subscription
just means no invoices from it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from receipt_finder.providers.base import (
    BillingAdapter,
    ProviderAPIError,
    ProviderAuthError,
    ProviderError,
)
from receipt_finder.schemas.scan_events import BillingRecordFound, SearchProgress
from receipt_finder.schemas.scan_models import BillingRecord, BillingSource

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)

MANAGEMENT_API_BASE = "https://management.azure.com"
SUBSCRIPTIONS_API_VERSION = "2020-01-01"
BILLING_API_VERSION = "2020-05-01"

AMOUNT_TOLERANCE = Decimal("0.05")
MERCHANT_ALIASES = ("microsoft", "azure")


def parse_invoice(item: dict[str, Any]) -> BillingRecord | None:
    """Build a BillingRecord from one Microsoft.Billing invoice; None if it has no total."""
    properties = item.get("properties") or {}
    total = (
        properties.get("amountDue")
        or properties.get("totalAmount")
        or (properties.get("billingProfile") or {}).get("amountDue")
    )
    period_end = properties.get("invoicePeriodEndDate")
    if not total or not period_end:
        return None

    try:
        amount = Decimal(str(total.get("value", 0)))
        issued = date.fromisoformat(period_end[:10])
    except (InvalidOperation, ValueError):
        logger.debug("Skipping Azure invoice with unparseable data: %s", item.get("name"))
        return None

    download = properties.get("downloadUrl") or {}
    return BillingRecord(
        id=item.get("name") or item["id"],
        source=BillingSource.AZURE,
        amount=amount,
        currency=total.get("currencyCode") or "USD",
        issued=issued,
        merchant_aliases=MERCHANT_ALIASES,
        amount_tolerance=AMOUNT_TOLERANCE,
        document_url=download.get("url"),
        label="Azure invoice",
        account_id=item["id"],
    )


class AzureBillingAdapter(BillingAdapter):
    """Azure Resource Manager billing adapter."""

    name = "azure_billing"

    async def _list_subscriptions(self) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{MANAGEMENT_API_BASE}/subscriptions",
            params={"api-version": SUBSCRIPTIONS_API_VERSION},
        )
        return data.get("value") or []

    async def _list_invoices(self, subscription_id: str) -> list[dict[str, Any]]:
        try:
            data = await self._get_json(
                f"{MANAGEMENT_API_BASE}/subscriptions/{subscription_id}"
                "/providers/Microsoft.Billing/invoices",
                params={"api-version": BILLING_API_VERSION},
            )
        except ProviderAPIError as e:
            if e.status_code in (403, 404):
                logger.warning(
                    "No invoice access for subscription %s (%d)", subscription_id, e.status_code
                )
                return []
            raise
        return data.get("value") or []

    async def list_records(
        self, requests: Sequence[ReceiptRequest], emit: Emit
    ) -> list[BillingRecord]:
        """List invoices of all enabled subscriptions."""
        try:
            subscriptions = await self._list_subscriptions()
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.warning("Azure subscription listing failed: %s", e)
            return []

        logger.info("Azure: found %d subscriptions", len(subscriptions))
        records: list[BillingRecord] = []

        for index, subscription in enumerate(subscriptions):
            await emit(
                SearchProgress(
                    adapter=self.name,
                    completed=index,
                    total=len(subscriptions),
                    message=f"Checking Azure Billing ({index + 1}/{len(subscriptions)})...",
                )
            )
            if subscription.get("state") != "Enabled":
                continue

            try:
                invoices = await self._list_invoices(subscription["subscriptionId"])
            except ProviderAuthError:
                raise
            except ProviderError as e:
                logger.warning(
                    "Azure invoices failed for %s: %s", subscription.get("displayName"), e
                )
                continue

            for item in invoices:
                record = parse_invoice(item)
                if record is None:
                    continue
                record.account_name = subscription.get("displayName", "")
                records.append(record)
                await emit(BillingRecordFound(record=record))

        return records

    async def _download_url(self, record: BillingRecord) -> str | None:
        if record.document_url:
            return record.document_url
        try:
            data = await self._post_json(
                f"{MANAGEMENT_API_BASE}/{record.account_id.lstrip('/')}/download",
                params={"api-version": BILLING_API_VERSION},
            )
        except ProviderError as e:
            logger.warning("Azure download action failed for %s: %s", record.id, e)
            return None
        return data.get("url") or (data.get("downloadUrl") or {}).get("url")

    async def fetch_document(self, record: BillingRecord) -> bytes | None:
        url = await self._download_url(record)
        if not url:
            return None
        # Download URLs are pre-signed blob links
        return await self.download(url, authenticated=False)
