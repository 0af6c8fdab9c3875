"""
Evidence storage.

Matched files are handed to a storage collaborator fire-and-forget; the
scan never waits on it except through an explicit drain.
"""

from .local import LocalDirectoryStorage, ReceiptStorage, StorageError

__all__ = [
    "LocalDirectoryStorage",
    "ReceiptStorage",
    "StorageError",
]
