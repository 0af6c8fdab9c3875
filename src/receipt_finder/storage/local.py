"""
Storage collaborator interface and a local directory implementation.

Layout: <directory>/<request_id>/<filename>
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(Exception):
    """Persisting a matched file failed."""

    pass


def safe_name(value: str) -> str:
    """Reduce a request id or file name to a single safe path component."""
    cleaned = _UNSAFE_CHARS.sub("_", value).strip("._")
    return cleaned or "unnamed"


class ReceiptStorage(ABC):
    """Persists evidence for a request and returns a reference to it."""

    @abstractmethod
    async def persist(self, request_id: str, filename: str, data: bytes) -> str:
        """
        Store one file.

        Returns:
            Reference (path, URL, key) of the stored file

        Raises:
            StorageError: If the file could not be stored
        """
        pass


class LocalDirectoryStorage(ReceiptStorage):
    """Writes files below a base directory, one subdirectory per request."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _write(self, request_id: str, filename: str, data: bytes) -> Path:
        target_dir = self.directory / safe_name(request_id)
        target = target_dir / safe_name(filename)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {target}: {e}") from e
        return target

    async def persist(self, request_id: str, filename: str, data: bytes) -> str:
        path = await asyncio.to_thread(self._write, request_id, filename, data)
        logger.debug("Stored %d bytes for request %s at %s", len(data), request_id, path)
        return str(path)
