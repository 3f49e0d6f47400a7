"""Unit tests for PDF text extraction (real pdfplumber, no monkeypatching)"""

from __future__ import annotations

import pytest

from balance.files.classifier import classify_statement_text
from balance.files.pdf_text import extract_pdf_text
from balance.files.types import StatementType
from balance.observability.telemetry import get_counter


def one_page_pdf(text: str) -> bytes:
    """Smallest well-formed PDF with a Helvetica text layer."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n%s\nendobj\n" % (number, body)

    xref_at = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%EOF\n" % (
        len(objects) + 1,
        xref_at,
    )
    return bytes(out)


def test_extracts_lowercase_text_from_real_pdf():
    text = extract_pdf_text(one_page_pdf("Checking Account Summary - Direct Deposit"))

    assert "checking account summary" in text
    assert "direct deposit" in text
    assert classify_statement_text(text).auto_detected_type is StatementType.CHECKING


@pytest.mark.parametrize("data", [None, b""])
def test_empty_payload_is_empty_text(data):
    assert extract_pdf_text(data) == ""


def test_garbage_bytes_are_empty_text():
    assert extract_pdf_text(b"this is not a pdf at all \x00\x01\x02") == ""
    assert get_counter("files.pdf_text.failed") == 1
