"""
Tests for PDF text extraction and circular metadata detection
"""

from datetime import datetime, timezone
from io import BytesIO

import pytest
from pypdf import PdfWriter

from sebi_corpus.models.documents import DocumentCategory
from sebi_corpus.models.exceptions import DocumentAcquisitionException
from sebi_corpus.rag.pdf_parser import (
    ParsedPdf,
    clean_pdf_text,
    detect_category,
    extract_circular_metadata,
    extract_pdf,
    parse_circular_pdf,
    parse_date,
)

CIRCULAR_TEXT = """SEBI/HO/IMD/IMD-PoD-1/P/CIR/2024/001
Date: March 15, 2024
To: All Mutual Funds
Circular on total expense ratio of mutual fund schemes
1.1 Background
Asset management companies shall disclose the TER of every scheme."""


def blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_clean_pdf_text_strips_page_furniture():
    raw = "Line one   with  spaces\r\nPage 2\r\n12\r\nregula-\ntions apply\n\n\n\nEnd"

    assert clean_pdf_text(raw) == "Line one with spaces\n\nregulations apply\n\nEnd"


@pytest.mark.parametrize("text,expected", [
    ("Dated 15/03/2024", datetime(2024, 3, 15, tzinfo=timezone.utc)),
    ("Dated 5-11-2023", datetime(2023, 11, 5, tzinfo=timezone.utc)),
    ("Issued on March 15, 2024", datetime(2024, 3, 15, tzinfo=timezone.utc)),
    ("Issued on Jan 2 2023", datetime(2023, 1, 2, tzinfo=timezone.utc)),
    ("Issued on 7 August 2022", datetime(2022, 8, 7, tzinfo=timezone.utc)),
])
def test_parse_date_formats(text, expected):
    assert parse_date(text) == expected


def test_parse_date_skips_impossible_dates():
    assert parse_date("Reference 31/02/2024 only") is None
    assert parse_date("no dates here") is None


def test_extract_circular_metadata():
    metadata = extract_circular_metadata(CIRCULAR_TEXT)

    assert metadata.circular_id == "SEBI/HO/IMD/IMD-PoD-1/P/CIR/2024/001"
    assert metadata.date == datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert metadata.title == "Circular on total expense ratio of mutual fund schemes"


@pytest.mark.parametrize("text,expected", [
    ("Revised TER limits for schemes", DocumentCategory.MUTUAL_FUNDS),
    ("Obligations of portfolio managers", DocumentCategory.PORTFOLIO_MANAGERS),
    ("Guidelines for Infrastructure Investment Trusts", DocumentCategory.INVITS),
    ("Valuation norms for REITs", DocumentCategory.REITS),
    ("Mutual funds investing in REITs", DocumentCategory.MUTUAL_FUNDS),
    ("Interest on delayed refunds", DocumentCategory.GENERAL),
])
def test_detect_category(text, expected):
    assert detect_category(text) == expected


def test_extract_pdf_rejects_garbage():
    with pytest.raises(DocumentAcquisitionException):
        extract_pdf(b"this is not a pdf")


def test_extract_pdf_counts_pages():
    parsed = extract_pdf(blank_pdf())

    assert parsed.page_count == 1
    assert parsed.text == ""


def test_parse_circular_pdf_without_text_fails():
    with pytest.raises(DocumentAcquisitionException):
        parse_circular_pdf(blank_pdf())


def test_parse_circular_pdf_builds_document(monkeypatch):
    monkeypatch.setattr(
        "sebi_corpus.rag.pdf_parser.extract_pdf",
        lambda data: ParsedPdf(text=CIRCULAR_TEXT, page_count=2, raw_metadata={"Producer": "test"}),
    )

    document = parse_circular_pdf(b"%PDF")

    assert document.id == "sebi-ho-imd-imd-pod-1-p-cir-2024-001"
    assert document.circular_id == "SEBI/HO/IMD/IMD-PoD-1/P/CIR/2024/001"
    assert document.category == DocumentCategory.MUTUAL_FUNDS
    assert document.date == datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert document.metadata["page_count"] == 2
    assert document.metadata["pdf_info"] == {"Producer": "test"}


def test_parse_circular_pdf_fallbacks(monkeypatch):
    monkeypatch.setattr(
        "sebi_corpus.rag.pdf_parser.extract_pdf",
        lambda data: ParsedPdf(text="Short note.\nAnother one.", page_count=1),
    )

    document = parse_circular_pdf(b"%PDF")

    assert document.id.startswith("sebi-doc-")
    assert document.circular_id.startswith("UNKNOWN-")
    assert document.title == "Untitled SEBI Circular"
    assert document.category == DocumentCategory.GENERAL
