"""
PDF rendering for email bodies and billing records.
"""

from .receipt_pdf import html_to_lines, render_billing_receipt, render_html_receipt

__all__ = ["html_to_lines", "render_billing_receipt", "render_html_receipt"]
