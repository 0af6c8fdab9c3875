"""
Content verification of retrieved documents.
"""

from .verifier import ContentVerifier, VerificationOutcome, VerificationPolicy, VerificationReason

__all__ = [
    "ContentVerifier",
    "VerificationOutcome",
    "VerificationPolicy",
    "VerificationReason",
]
