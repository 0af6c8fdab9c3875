"""
Provider search adapters.

Mail adapters (Gmail, Outlook) search for candidates; billing adapters
(Azure, Google Ads, Meta Ads) list billing records. All of them share the
ProviderClient HTTP base and its error hierarchy.
"""

from .azure_billing import AzureBillingAdapter
from .base import (
    BillingAdapter,
    MailAdapter,
    ProviderAPIError,
    ProviderAuthError,
    ProviderClient,
    ProviderConnectionError,
    ProviderError,
    RateLimitError,
)
from .gmail import GmailAdapter
from .google_ads import GoogleAdsAdapter
from .meta_ads import MetaAdsAdapter
from .outlook import OutlookAdapter

__all__ = [
    "AzureBillingAdapter",
    "BillingAdapter",
    "GmailAdapter",
    "GoogleAdsAdapter",
    "MailAdapter",
    "MetaAdsAdapter",
    "OutlookAdapter",
    "ProviderAPIError",
    "ProviderAuthError",
    "ProviderClient",
    "ProviderConnectionError",
    "ProviderError",
    "RateLimitError",
]
