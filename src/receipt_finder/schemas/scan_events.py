"""
Scan events exchanged between provider adapters and the orchestrator.

Adapters never call back into the orchestrator; they put these records on
a queue and the orchestrator drains it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .scan_models import BillingRecord, Candidate, ReceiptRequest


@dataclass(frozen=True)
class CandidateFound:
    """A mail adapter found a candidate while searching for one request."""

    request: ReceiptRequest
    candidate: Candidate


@dataclass(frozen=True)
class BillingRecordFound:
    """A billing adapter listed a record that may satisfy an open request."""

    record: BillingRecord


@dataclass(frozen=True)
class SearchProgress:
    """Progress within one adapter run: `completed` of `total` requests."""

    adapter: str
    completed: int
    total: int
    message: str = ""


@dataclass(frozen=True)
class AdapterFinished:
    """Sentinel put on the queue when an adapter task ends."""

    adapter: str
    error: str | None = None


ScanEvent = CandidateFound | BillingRecordFound | SearchProgress | AdapterFinished

Emit = Callable[[ScanEvent], Awaitable[None]]
