"""
Text extraction for receipt documents.

Strategies, cheapest first:
- PDF text layer (pypdf)
- First PDF page rasterized with PyMuPDF, then OCR with Tesseract
- Image attachments OCR'd directly

OCR is only attempted for receipt-sized PDFs; long statements with no text
layer are not worth the CPU.
"""

import logging
from io import BytesIO

import fitz
import pytesseract
from PIL import Image
from pypdf import PdfReader

from .base import BaseTextExtractor, ExtractionError, looks_like_image, looks_like_pdf

logger = logging.getLogger(__name__)

DEFAULT_OCR_LANGUAGES = "eng+fin+swe"


def _normalize_spaces(text: str) -> str:
    return text.replace("\u202f", " ").replace("\xa0", " ")


def pdf_page_count(data: bytes) -> int:
    """Number of pages in a PDF, 0 if it cannot be read."""
    try:
        return len(PdfReader(BytesIO(data)).pages)
    except Exception as e:  # pypdf raises arbitrary errors on malformed input
        logger.debug("Could not count PDF pages: %s", e)
        return 0


def _ocr_image(image: Image.Image, languages: str) -> str:
    if image.mode not in {"RGB", "L"}:
        image = image.convert("RGB")
    try:
        return pytesseract.image_to_string(image, lang=languages) or ""
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise ExtractionError(f"OCR failed: {e}") from e


class PdfTextLayerExtractor(BaseTextExtractor):
    """Reads the embedded text layer of a PDF."""

    @property
    def name(self) -> str:
        return "pdf_text_layer"

    @property
    def priority(self) -> int:
        return 100

    def can_extract(self, mime_type: str, data: bytes) -> bool:
        return looks_like_pdf(mime_type, data)

    def extract(self, data: bytes) -> str:
        try:
            reader = PdfReader(BytesIO(data))
            if reader.is_encrypted:
                raise ExtractionError("PDF is encrypted")
            pages = [_normalize_spaces(page.extract_text() or "") for page in reader.pages]
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Unreadable PDF: {e}") from e
        return "\n".join(pages)


class PdfOcrExtractor(BaseTextExtractor):
    """Rasterizes the first page of a short PDF and runs OCR on it."""

    def __init__(
        self,
        languages: str = DEFAULT_OCR_LANGUAGES,
        max_pages: int = 3,
        zoom: float = 2.0,
    ) -> None:
        self.languages = languages
        self.max_pages = max_pages
        self.zoom = zoom

    @property
    def name(self) -> str:
        return "pdf_ocr"

    @property
    def priority(self) -> int:
        return 50

    def can_extract(self, mime_type: str, data: bytes) -> bool:
        if not looks_like_pdf(mime_type, data):
            return False
        pages = pdf_page_count(data)
        return 0 < pages <= self.max_pages

    def extract(self, data: bytes) -> str:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                if len(doc) == 0:
                    return ""
                # Most receipts are single page
                pix = doc[0].get_pixmap(matrix=fitz.Matrix(self.zoom, self.zoom))
                image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise ExtractionError(f"Could not rasterize PDF: {e}") from e

        return _normalize_spaces(_ocr_image(image, self.languages))


class ImageOcrExtractor(BaseTextExtractor):
    """OCR for image attachments (photos of receipts, PNG exports)."""

    def __init__(self, languages: str = DEFAULT_OCR_LANGUAGES) -> None:
        self.languages = languages

    @property
    def name(self) -> str:
        return "image_ocr"

    @property
    def priority(self) -> int:
        return 40

    def can_extract(self, mime_type: str, data: bytes) -> bool:
        return looks_like_image(mime_type, data)

    def extract(self, data: bytes) -> str:
        try:
            image = Image.open(BytesIO(data))
            image.load()
        except OSError as e:
            raise ExtractionError(f"Unreadable image: {e}") from e

        return _normalize_spaces(_ocr_image(image, self.languages))
