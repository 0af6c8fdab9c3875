"""Tests for the billing adapters (Azure, Google Ads, Meta Ads)."""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import date
from decimal import Decimal

import httpx
import pytest

from receipt_finder.config import ProviderConfig
from receipt_finder.providers.azure_billing import AzureBillingAdapter, parse_invoice
from receipt_finder.providers.base import ProviderAuthError
from receipt_finder.providers.google_ads import GoogleAdsAdapter, parse_invoice_row
from receipt_finder.providers.meta_ads import MetaAdsAdapter
from receipt_finder.schemas.scan_events import BillingRecordFound
from receipt_finder.schemas.scan_models import BillingSource, ReceiptRequest

FAST = ProviderConfig(max_retry_after_seconds=0)

AZURE_INVOICE = {
    "id": "/providers/Microsoft.Billing/billingAccounts/1/billingProfiles/2/invoices/G012345678901",
    "name": "G012345678901",
    "properties": {
        "amountDue": {"currencyCode": "EUR", "value": 120.0},
        "invoicePeriodEndDate": "2024-03-31T00:00:00Z",
        "downloadUrl": {"url": "https://blob.example.com/inv.pdf?sig=abc"},
    },
}


async def _collect(adapter, requests):
    events = []

    async def emit(event):
        events.append(event)

    async with adapter:
        records = await adapter.list_records(requests, emit)
    return records, events


@pytest.fixture
def march_request() -> ReceiptRequest:
    return ReceiptRequest(id="r1", date=date(2024, 3, 15), merchant="Meta Ads", amount=Decimal("49.99"))


class TestAzureBilling:
    """Tests for AzureBillingAdapter."""

    def test_parse_invoice(self) -> None:
        """Test an invoice listing item becomes a BillingRecord."""
        record = parse_invoice(AZURE_INVOICE)

        assert record is not None
        assert record.source == BillingSource.AZURE
        assert record.amount == Decimal("120.0")
        assert record.currency == "EUR"
        assert record.issued == date(2024, 3, 31)
        assert record.document_url.startswith("https://blob.example.com/")
        assert record.merchant_aliases == ("microsoft", "azure")

    def test_parse_invoice_fallback_total(self) -> None:
        """Test totalAmount is used when amountDue is missing."""
        item = {
            "id": "x",
            "name": "INV-2",
            "properties": {
                "totalAmount": {"currencyCode": "USD", "value": "15.5"},
                "invoicePeriodEndDate": "2024-01-31",
            },
        }
        record = parse_invoice(item)
        assert record.amount == Decimal("15.5")
        assert record.currency == "USD"
        assert record.document_url is None

    def test_parse_invoice_without_total(self) -> None:
        """Test invoices without any total are skipped."""
        assert parse_invoice({"id": "x", "properties": {"invoicePeriodEndDate": "2024-01-31"}}) is None

    def test_list_records_enabled_subscriptions_only(self, march_request) -> None:
        """Test disabled subscriptions are skipped and 403 means no invoices."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            calls.append(path)
            if path == "/subscriptions":
                return httpx.Response(
                    200,
                    json={
                        "value": [
                            {"subscriptionId": "s1", "displayName": "Prod", "state": "Enabled"},
                            {"subscriptionId": "s2", "displayName": "Old", "state": "Disabled"},
                            {"subscriptionId": "s3", "displayName": "Dev", "state": "Enabled"},
                        ]
                    },
                )
            if path == "/subscriptions/s1/providers/Microsoft.Billing/invoices":
                return httpx.Response(200, json={"value": [AZURE_INVOICE]})
            if path == "/subscriptions/s3/providers/Microsoft.Billing/invoices":
                return httpx.Response(403)
            return httpx.Response(404)

        adapter = AzureBillingAdapter("tok", FAST, httpx.MockTransport(handler))
        records, events = asyncio.run(_collect(adapter, [march_request]))

        assert [r.id for r in records] == ["G012345678901"]
        assert records[0].account_name == "Prod"
        assert not any("/s2/" in path for path in calls)
        assert [e.record for e in events if isinstance(e, BillingRecordFound)] == records

    def test_list_records_auth_error(self, march_request) -> None:
        """Test a rejected token on the subscription list propagates."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401)

        adapter = AzureBillingAdapter("tok", FAST, httpx.MockTransport(handler))
        with pytest.raises(ProviderAuthError):
            asyncio.run(_collect(adapter, [march_request]))

    def test_fetch_document_presigned(self) -> None:
        """Test the invoice blob is downloaded without the bearer token."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.host, request.headers.get("Authorization")))
            return httpx.Response(200, content=b"%PDF-azure")

        async def run():
            async with AzureBillingAdapter("tok", FAST, httpx.MockTransport(handler)) as adapter:
                return await adapter.fetch_document(parse_invoice(AZURE_INVOICE))

        assert asyncio.run(run()) == b"%PDF-azure"
        assert seen == [("blob.example.com", None)]

    def test_fetch_document_download_action(self) -> None:
        """Test invoices without a URL ask the download action for one."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                assert request.url.path.endswith("/invoices/INV-3/download")
                return httpx.Response(200, json={"url": "https://blob.example.com/inv3.pdf"})
            return httpx.Response(200, content=b"%PDF-inv3")

        item = {
            "id": "/providers/Microsoft.Billing/billingAccounts/1/invoices/INV-3",
            "name": "INV-3",
            "properties": {
                "amountDue": {"currencyCode": "EUR", "value": 10},
                "invoicePeriodEndDate": "2024-02-29",
            },
        }

        async def run():
            async with AzureBillingAdapter("tok", FAST, httpx.MockTransport(handler)) as adapter:
                return await adapter.fetch_document(parse_invoice(item))

        assert asyncio.run(run()) == b"%PDF-inv3"


class TestGoogleAds:
    """Tests for GoogleAdsAdapter."""

    def test_parse_invoice_row(self) -> None:
        """Test micros are converted to currency units."""
        row = {
            "invoice": {
                "id": "5555",
                "issueDate": "2024-03-01",
                "totalAmountMicros": "12340000",
                "currencyCode": "EUR",
                "pdfUrl": "https://ads.example.com/5555.pdf",
            }
        }
        record = parse_invoice_row(row, "123")

        assert record.amount == Decimal("12.34")
        assert record.issued == date(2024, 3, 1)
        assert record.account_id == "123"
        assert record.file_name == "google_ads_5555.pdf"

    def test_parse_invoice_row_without_pdf(self) -> None:
        """Test rows without a PDF are skipped."""
        assert parse_invoice_row({"invoice": {"id": "1", "issueDate": "2024-03-01"}}, "1") is None

    def test_list_records_skips_denied_customers(self, march_request) -> None:
        """Test a 403 on one customer does not stop the others."""
        seen_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            seen_headers.append(request.headers.get("developer-token"))
            if path.endswith("customers:listAccessibleCustomers"):
                return httpx.Response(
                    200, json={"resourceNames": ["customers/111", "customers/222"]}
                )
            if path == "/v17/customers/111/googleAds:search":
                return httpx.Response(403)
            if path == "/v17/customers/222/googleAds:search":
                assert "invoice.issue_date >= '2024-02-13'" in json.loads(request.content)["query"]
                return httpx.Response(
                    200,
                    json={
                        "results": [
                            {
                                "invoice": {
                                    "id": "9",
                                    "issueDate": "2024-03-01",
                                    "totalAmountMicros": "49990000",
                                    "currencyCode": "EUR",
                                    "pdfUrl": "https://ads.example.com/9.pdf",
                                }
                            }
                        ]
                    },
                )
            return httpx.Response(404)

        adapter = GoogleAdsAdapter("tok", "dev-token", FAST, httpx.MockTransport(handler))
        records, _ = asyncio.run(_collect(adapter, [march_request]))

        assert [r.id for r in records] == ["9"]
        assert set(seen_headers) == {"dev-token"}

    def test_list_records_401_propagates(self, march_request) -> None:
        """Test an expired token aborts the adapter."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("customers:listAccessibleCustomers"):
                return httpx.Response(200, json={"resourceNames": ["customers/111"]})
            return httpx.Response(401)

        adapter = GoogleAdsAdapter("tok", "dev-token", FAST, httpx.MockTransport(handler))
        with pytest.raises(ProviderAuthError):
            asyncio.run(_collect(adapter, [march_request]))


class TestMetaAds:
    """Tests for MetaAdsAdapter."""

    ACCOUNTS = {
        "data": [
            {
                "id": "act_1",
                "account_id": "1",
                "name": "Acme Ads",
                "currency": "EUR",
                "business": {"id": "b1"},
            }
        ]
    }

    def test_transactions(self, march_request) -> None:
        """Test ad account transactions become strict Meta records."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/v21.0/me/adaccounts":
                return httpx.Response(200, json=self.ACCOUNTS)
            if path == "/v21.0/act_1/transactions":
                return httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "id": "tx1",
                                "time": 1709380800,
                                "amount": {"amount": "49.99", "currency": "EUR"},
                                "billing_reason": "threshold",
                            }
                        ]
                    },
                )
            return httpx.Response(404)

        adapter = MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler))
        records, events = asyncio.run(_collect(adapter, [march_request]))

        assert len(records) == 1
        record = records[0]
        assert record.amount == Decimal("49.99")
        assert record.issued == date(2024, 3, 2)
        assert record.require_merchant is True
        assert record.amount_tolerance == Decimal("0.10")
        assert record.account_name == "Acme Ads"
        assert len([e for e in events if isinstance(e, BillingRecordFound)]) == 1

    def test_falls_back_to_business_invoices(self, march_request) -> None:
        """Test business invoices are used when there are no transactions."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/v21.0/me/adaccounts":
                return httpx.Response(200, json=self.ACCOUNTS)
            if path == "/v21.0/act_1/transactions":
                return httpx.Response(200, json={"data": []})
            if path == "/v21.0/b1/business_invoices":
                return httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "id": "bi1",
                                "issue_date": "2024-03-05",
                                "total_amount": {"amount": "49.99", "currency": "EUR"},
                                "download_uri": "https://fb.example.com/bi1.pdf",
                            }
                        ]
                    },
                )
            return httpx.Response(404)

        adapter = MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler))
        records, _ = asyncio.run(_collect(adapter, [march_request]))

        assert [r.id for r in records] == ["bi1"]
        assert records[0].document_url == "https://fb.example.com/bi1.pdf"

    def test_falls_back_to_billing_activities(self, march_request) -> None:
        """Test billing charge activities are read in cents, zero charges skipped."""
        accounts = {"data": [{"id": "act_1", "account_id": "1", "name": "Acme Ads", "currency": "EUR"}]}

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/v21.0/me/adaccounts":
                return httpx.Response(200, json=accounts)
            if path == "/v21.0/act_1/transactions":
                return httpx.Response(500)
            if path == "/v21.0/act_1/activities":
                assert request.url.params["event_type"] == "ad_account_billing_charge"
                return httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "event_time": "2024-03-03T10:00:00+0000",
                                "extra_data": json.dumps({"new_value": 4999, "currency": "EUR"}),
                                "translated_event_type": "Billing charge",
                            },
                            {
                                "event_time": "2024-03-04T10:00:00+0000",
                                "extra_data": {"new_value": 0},
                            },
                        ]
                    },
                )
            return httpx.Response(404)

        adapter = MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler))
        records, _ = asyncio.run(_collect(adapter, [march_request]))

        # transactions failing with 500 skips the account entirely
        assert records == []

        def handler_ok(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v21.0/act_1/transactions":
                return httpx.Response(200, json={"data": []})
            return handler(request)

        adapter = MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler_ok))
        records, _ = asyncio.run(_collect(adapter, [march_request]))

        assert len(records) == 1
        assert records[0].amount == Decimal("49.99")
        assert records[0].issued == date(2024, 3, 3)
        assert records[0].label == "Billing charge"

    def test_fetch_document_generates_receipt(self, meta_record) -> None:
        """Test records without a document get a generated PDF."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        async def run():
            async with MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler)) as adapter:
                return await adapter.fetch_document(meta_record)

        assert asyncio.run(run()).startswith(b"%PDF-")

    def test_fetch_document_renders_off_event_loop(self, meta_record, monkeypatch) -> None:
        """Test the fallback receipt is rendered in a worker thread, not on the loop."""
        threads = {}

        def fake_render(record) -> bytes:
            threads["render"] = threading.get_ident()
            return b"%PDF-fake"

        monkeypatch.setattr("receipt_finder.providers.meta_ads.render_billing_receipt", fake_render)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async def run():
            threads["loop"] = threading.get_ident()
            meta_record.document_url = "https://business.facebook.com/invoice/tx-991.pdf"
            async with MetaAdsAdapter("tok", FAST, httpx.MockTransport(handler)) as adapter:
                return await adapter.fetch_document(meta_record)

        assert asyncio.run(run()) == b"%PDF-fake"
        assert threads["render"] != threads["loop"]
