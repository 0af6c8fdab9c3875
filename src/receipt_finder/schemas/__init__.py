"""
Data schemas for the receipt scanner.
"""

from .scan_events import (
    AdapterFinished,
    BillingRecordFound,
    CandidateFound,
    Emit,
    ScanEvent,
    SearchProgress,
)
from .scan_models import (
    SESSION_PROVIDERS,
    Attachment,
    BillingRecord,
    BillingSource,
    Candidate,
    MatchResult,
    MatchStatus,
    ProviderKind,
    ReceiptRequest,
    RequestStatus,
    ScanSession,
)

__all__ = [
    "AdapterFinished",
    "Attachment",
    "BillingRecord",
    "BillingRecordFound",
    "BillingSource",
    "Candidate",
    "CandidateFound",
    "Emit",
    "MatchResult",
    "MatchStatus",
    "ProviderKind",
    "ReceiptRequest",
    "RequestStatus",
    "SESSION_PROVIDERS",
    "ScanEvent",
    "ScanSession",
    "SearchProgress",
]
