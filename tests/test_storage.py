"""Tests for the local storage collaborator."""

import asyncio
from pathlib import Path

import pytest

from receipt_finder.storage.local import LocalDirectoryStorage, StorageError, safe_name


class TestSafeName:
    """Tests for path component sanitizing."""

    def test_separators_removed(self) -> None:
        """Test path separators cannot escape the base directory."""
        assert safe_name("../etc/passwd") == "etc_passwd"

    def test_spaces(self) -> None:
        """Test spaces collapse to underscores."""
        assert safe_name("Uber receipt.pdf") == "Uber_receipt.pdf"

    def test_empty(self) -> None:
        """Test empty names still produce a component."""
        assert safe_name("///") == "unnamed"


class TestLocalDirectoryStorage:
    """Tests for LocalDirectoryStorage."""

    def test_persist_writes_file(self, tmp_path) -> None:
        """Test the file lands under a per-request directory."""
        storage = LocalDirectoryStorage(tmp_path)
        ref = asyncio.run(storage.persist("req-1", "receipt.pdf", b"%PDF-1.4 data"))

        path = Path(ref)
        assert path == tmp_path / "req-1" / "receipt.pdf"
        assert path.read_bytes() == b"%PDF-1.4 data"

    def test_persist_overwrites(self, tmp_path) -> None:
        """Test persisting again replaces the previous file."""
        storage = LocalDirectoryStorage(tmp_path)
        asyncio.run(storage.persist("req-1", "a.pdf", b"one"))
        ref = asyncio.run(storage.persist("req-1", "a.pdf", b"two"))

        assert Path(ref).read_bytes() == b"two"

    def test_unwritable_directory(self, tmp_path) -> None:
        """Test write failures surface as StorageError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        storage = LocalDirectoryStorage(blocker)

        with pytest.raises(StorageError):
            asyncio.run(storage.persist("req-1", "a.pdf", b"x"))
