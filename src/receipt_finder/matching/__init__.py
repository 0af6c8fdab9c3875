"""
Matching module for scoring receipt candidates.
"""

from .engine import (
    ContentScore,
    MatchingEngine,
    match_billing_record,
    score_content,
    score_metadata,
)
from .fuzzy import is_fuzzy_match, similarity
from .merchant_rules import MERCHANT_RULES, MerchantRule, get_merchant_rule

__all__ = [
    "ContentScore",
    "MERCHANT_RULES",
    "MatchingEngine",
    "MerchantRule",
    "get_merchant_rule",
    "is_fuzzy_match",
    "match_billing_record",
    "score_content",
    "score_metadata",
    "similarity",
]
