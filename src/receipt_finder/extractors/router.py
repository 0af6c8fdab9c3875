"""
Extractor router - chooses and applies text extraction strategies.
"""

import logging

from .base import BaseTextExtractor, ExtractionError
from .pdf_text import (
    DEFAULT_OCR_LANGUAGES,
    ImageOcrExtractor,
    PdfOcrExtractor,
    PdfTextLayerExtractor,
)

logger = logging.getLogger(__name__)


class TextExtractionRouter:
    """
    Routes text extraction to the appropriate strategy.

    Tries extractors in priority order and stops at the first one that
    yields non-blank text:
    1. PDF text layer - cheap, exact
    2. PDF OCR - first page only, short PDFs only
    3. Image OCR

    Extraction failures never propagate: a corrupt, encrypted or
    unsupported document simply yields "".
    """

    def __init__(
        self,
        extractors: list[BaseTextExtractor] | None = None,
        ocr_enabled: bool = True,
        ocr_languages: str = DEFAULT_OCR_LANGUAGES,
        ocr_max_pages: int = 3,
        ocr_zoom: float = 2.0,
    ) -> None:
        if extractors is None:
            extractors = [PdfTextLayerExtractor()]
            if ocr_enabled:
                extractors.append(
                    PdfOcrExtractor(languages=ocr_languages, max_pages=ocr_max_pages, zoom=ocr_zoom)
                )
                extractors.append(ImageOcrExtractor(languages=ocr_languages))
        self.extractors = sorted(extractors, key=lambda e: -e.priority)

    def extract_text(self, data: bytes, mime_type: str = "application/pdf") -> str:
        """
        Extract text from document bytes.

        Args:
            data: Raw document bytes
            mime_type: MIME type reported by the provider

        Returns:
            Extracted text, or "" if nothing could be read
        """
        if not data:
            return ""

        for extractor in self.extractors:
            try:
                if not extractor.can_extract(mime_type, data):
                    continue
                text = extractor.extract(data)
            except ExtractionError as e:
                logger.warning("Extractor %s failed: %s", extractor.name, e)
                continue
            except Exception:
                logger.exception("Extractor %s crashed", extractor.name)
                continue

            if text.strip():
                logger.debug("Extractor %s produced %d chars", extractor.name, len(text))
                return text

        return ""
