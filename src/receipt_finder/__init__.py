"""
Receipt finder: mail/billing providers → candidate scoring → verified assignment

Locates receipts for a list of expected transactions by searching connected
mail and billing accounts, scoring every candidate document against the
expected transaction, and committing at most one verified piece of evidence
per transaction.
"""

__version__ = "0.1.0"
