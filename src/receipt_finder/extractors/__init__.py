"""
Text extraction and HTML receipt heuristics.
"""

from .base import BaseTextExtractor, ExtractionError
from .html_receipt import HtmlReceiptAnalysis, analyze_html_receipt, clean_email_html, html_to_text
from .pdf_text import ImageOcrExtractor, PdfOcrExtractor, PdfTextLayerExtractor
from .router import TextExtractionRouter

__all__ = [
    "BaseTextExtractor",
    "ExtractionError",
    "HtmlReceiptAnalysis",
    "ImageOcrExtractor",
    "PdfOcrExtractor",
    "PdfTextLayerExtractor",
    "TextExtractionRouter",
    "analyze_html_receipt",
    "clean_email_html",
    "html_to_text",
]
