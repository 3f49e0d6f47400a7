"""
PDF text extraction for statement detection.

Only the first few pages are read: account-type markers sit in statement
headers and summaries, and large statements would otherwise dominate
upload latency.
"""

from __future__ import annotations

from io import BytesIO

import pdfplumber

from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, time_block

logger = get_logger(__name__)


def extract_pdf_text(data: bytes | None, max_pages: int = 5) -> str:
    """
    Extract lowercase text from the first ``max_pages`` pages of a PDF.

    Returns an empty string for empty input, scanned PDFs without a text
    layer, and files pdfplumber can't parse. Detection then falls back to
    "unknown" instead of failing the upload.
    """
    if not data:
        return ""

    chunks: list[str] = []
    try:
        with time_block("files.pdf_text.extract"), pdfplumber.open(BytesIO(data)) as pdf:
            for page in pdf.pages[:max_pages]:
                page_text = page.extract_text() or ""
                if page_text:
                    chunks.append(page_text)
    except Exception as e:
        # pdfminer raises a zoo of exception types for malformed input
        logger.warning("PDF text extraction failed (%s): %s", type(e).__name__, e)
        counter("files.pdf_text.failed")
        return ""

    return "\n".join(chunks).lower()
