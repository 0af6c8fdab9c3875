"""
Meta (Facebook) Ads billing adapter.

Sources, per ad account, tried in order until one yields records:
1. Ad account transactions since (earliest request - 30 days)
2. Business invoices of the account's business (each business once)
3. Billing activities (credit card charges), amounts in cents

Matching is strict: a Meta record only satisfies a request whose merchant
names Meta/Facebook, in the same month, within 0.10.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from receipt_finder.providers.base import BillingAdapter, ProviderAuthError, ProviderError
from receipt_finder.rendering.receipt_pdf import render_billing_receipt
from receipt_finder.schemas.scan_events import BillingRecordFound, SearchProgress
from receipt_finder.schemas.scan_models import BillingRecord, BillingSource

if TYPE_CHECKING:
    from receipt_finder.schemas.scan_events import Emit
    from receipt_finder.schemas.scan_models import ReceiptRequest

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "v21.0"
GRAPH_API_BASE = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

AMOUNT_TOLERANCE = Decimal("0.10")
MERCHANT_ALIASES = ("facebook", "meta", "facebk", "fbme")
LOOKBACK_DAYS = 30


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, dict):
        value = value.get("amount")
    if value is None:
        return None
    try:
        return abs(Decimal(str(value)))
    except InvalidOperation:
        return None


def _from_timestamp(value: Any) -> date | None:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).date()
    except (TypeError, ValueError, OverflowError):
        return None


def _from_iso(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00").replace("+0000", "+00:00")).date()
    except ValueError:
        return None


class MetaAdsAdapter(BillingAdapter):
    """Facebook Graph API billing adapter."""

    name = "meta_ads"

    def _record(
        self,
        record_id: str,
        amount: Decimal,
        currency: str,
        issued: date,
        account: dict[str, Any],
        label: str,
        document_url: str | None = None,
    ) -> BillingRecord:
        return BillingRecord(
            id=record_id,
            source=BillingSource.META,
            amount=amount,
            currency=currency,
            issued=issued,
            merchant_aliases=MERCHANT_ALIASES,
            amount_tolerance=AMOUNT_TOLERANCE,
            require_merchant=True,
            document_url=document_url,
            label=label,
            account_name=account.get("name", ""),
            account_id=account.get("account_id") or account.get("id", ""),
        )

    async def _list_ad_accounts(self) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/me/adaccounts",
            params={"fields": "id,account_id,name,currency,business", "limit": 1000},
        )
        return data.get("data") or []

    async def _transactions(
        self, account: dict[str, Any], since: int
    ) -> list[BillingRecord]:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/{account['id']}/transactions",
            params={
                "fields": "id,time,amount,billing_reason,invoice_id",
                "limit": 500,
                "since": since,
            },
        )
        records = []
        for tx in data.get("data") or []:
            amount = _to_decimal(tx.get("amount"))
            issued = _from_timestamp(tx.get("time"))
            if amount is None or issued is None:
                continue
            currency = (tx.get("amount") or {}).get("currency") if isinstance(tx.get("amount"), dict) else None
            records.append(
                self._record(
                    record_id=str(tx["id"]),
                    amount=amount,
                    currency=currency or account.get("currency") or "USD",
                    issued=issued,
                    account=account,
                    label=tx.get("billing_reason") or "Meta Ads charge",
                )
            )
        return records

    async def _business_invoices(
        self, account: dict[str, Any], business_id: str, from_date: date
    ) -> list[BillingRecord]:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/{business_id}/business_invoices",
            params={
                "fields": "id,invoice_id,issue_date,total_amount,download_uri,status",
                "from_date": from_date.isoformat(),
            },
        )
        records = []
        for invoice in data.get("data") or []:
            total = invoice.get("total_amount") or {}
            amount = _to_decimal(total.get("amount", "0"))
            issued = _from_iso(invoice.get("issue_date"))
            if amount is None or issued is None:
                continue
            records.append(
                self._record(
                    record_id=str(invoice["id"]),
                    amount=amount,
                    currency=total.get("currency") or "USD",
                    issued=issued,
                    account=account,
                    label="Meta Ads invoice",
                    document_url=invoice.get("download_uri"),
                )
            )
        return records

    async def _billing_activities(self, account: dict[str, Any], since: int) -> list[BillingRecord]:
        data = await self._get_json(
            f"{GRAPH_API_BASE}/{account['id']}/activities",
            params={
                "fields": "event_time,event_type,extra_data,translated_event_type",
                "event_type": "ad_account_billing_charge",
                "limit": 500,
                "since": since,
            },
        )
        records = []
        for activity in data.get("data") or []:
            extra = activity.get("extra_data") or {}
            if isinstance(extra, str):
                try:
                    extra = json.loads(extra)
                except json.JSONDecodeError:
                    continue
            cents = extra.get("new_value")
            # Non-numeric new_value is a status change, not a charge
            if not isinstance(cents, (int, float)) or isinstance(cents, bool) or cents == 0:
                continue
            issued = _from_iso(activity.get("event_time"))
            if issued is None:
                continue
            records.append(
                self._record(
                    record_id=str(activity.get("id") or f"activity-{activity.get('event_time')}"),
                    amount=abs(Decimal(str(cents)) / 100),
                    currency=extra.get("currency") or account.get("currency") or "USD",
                    issued=issued,
                    account=account,
                    label=activity.get("translated_event_type") or "Billing charge",
                )
            )
        return records

    async def _account_records(
        self,
        account: dict[str, Any],
        since: datetime,
        scanned_businesses: set[str],
    ) -> list[BillingRecord]:
        since_ts = int(since.timestamp())
        records = await self._transactions(account, since_ts)

        business_id = (account.get("business") or {}).get("id")
        if not records and business_id and business_id not in scanned_businesses:
            scanned_businesses.add(business_id)
            logger.info("Meta: no transactions, scanning business %s", business_id)
            records = await self._business_invoices(account, business_id, since.date())

        if not records:
            logger.info("Meta: trying billing activities for %s", account.get("name"))
            records = await self._billing_activities(account, since_ts)
        return records

    async def list_records(
        self, requests: Sequence[ReceiptRequest], emit: Emit
    ) -> list[BillingRecord]:
        """List charges of all ad accounts since the earliest request minus 30 days."""
        try:
            accounts = await self._list_ad_accounts()
        except ProviderAuthError:
            raise
        except ProviderError as e:
            logger.warning("Meta ad account listing failed: %s", e)
            return []

        logger.info("Meta: found %d ad accounts", len(accounts))
        earliest = min((r.date for r in requests), default=date.today())
        since = datetime.combine(earliest - timedelta(days=LOOKBACK_DAYS), time.min, tzinfo=timezone.utc)
        scanned_businesses: set[str] = set()
        records: list[BillingRecord] = []

        for index, account in enumerate(accounts):
            await emit(
                SearchProgress(
                    adapter=self.name,
                    completed=index,
                    total=len(accounts),
                    message=f"Checking Meta Ads ({index + 1}/{len(accounts)})...",
                )
            )
            try:
                account_records = await self._account_records(account, since, scanned_businesses)
            except ProviderAuthError:
                raise
            except ProviderError as e:
                logger.warning("Meta scan failed for ad account %s: %s", account.get("name"), e)
                continue

            for record in account_records:
                records.append(record)
                await emit(BillingRecordFound(record=record))

        return records

    async def fetch_document(self, record: BillingRecord) -> bytes | None:
        """Download the invoice when Meta provides one, otherwise generate a receipt."""
        if record.document_url:
            try:
                return await self.download(record.document_url)
            except ProviderError as e:
                logger.warning("Meta invoice download failed for %s: %s", record.id, e)
        return await asyncio.to_thread(render_billing_receipt, record)
