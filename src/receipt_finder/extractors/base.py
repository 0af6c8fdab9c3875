"""
Base text extractor interface and common types.
"""

from abc import ABC, abstractmethod


class ExtractionError(Exception):
    """Document could not be read (corrupt, encrypted or unsupported)."""

    pass


class BaseTextExtractor(ABC):
    """
    Base class for all text extractors.

    Each extractor implements a specific strategy:
    - PDF text layer
    - Rasterized PDF page + OCR
    - Image OCR
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Extractor name for logging."""
        pass

    @property
    @abstractmethod
    def priority(self) -> int:
        """
        Priority for extractor selection.
        Higher = cheaper and more trusted, tried first.
        """
        pass

    @abstractmethod
    def can_extract(self, mime_type: str, data: bytes) -> bool:
        """
        Check if this extractor can handle the given document.

        Args:
            mime_type: MIME type reported by the provider
            data: Raw document bytes

        Returns:
            True if this extractor should be attempted
        """
        pass

    @abstractmethod
    def extract(self, data: bytes) -> str:
        """
        Extract plain text from a document.

        Args:
            data: Raw document bytes

        Returns:
            Extracted text (may be empty)

        Raises:
            ExtractionError: If the document cannot be read
        """
        pass


def looks_like_pdf(mime_type: str, data: bytes) -> bool:
    """PDF by MIME type or by magic bytes."""
    return "pdf" in (mime_type or "").lower() or data[:5] == b"%PDF-"


def looks_like_image(mime_type: str, data: bytes) -> bool:
    """Image by MIME type or by common magic bytes."""
    if (mime_type or "").lower().startswith("image/"):
        return True
    return data[:3] == b"\xff\xd8\xff" or data[:8] == b"\x89PNG\r\n\x1a\n"
