"""
PDF acquisition for SEBI circulars
Extracts text with pypdf, cleans layout artifacts and derives circular metadata
"""

import re
import time
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pypdf import PdfReader
from pypdf.errors import PyPdfError
import structlog

from sebi_corpus.models.documents import Document, DocumentCategory
from sebi_corpus.models.exceptions import DocumentAcquisitionException

logger = structlog.get_logger()

CIRCULAR_ID_PATTERN = re.compile(r"SEBI/[A-Z]+/[A-Z]+(?:/[A-Z0-9-]+)*/\d{4}/\d+", re.IGNORECASE)
HEADER_LINE_PATTERN = re.compile(r"^(SEBI|Securities|To:|From:|Date:|Ref:|Subject:)", re.IGNORECASE)
DATE_SCAN_CHARS = 2000

# (pattern, strptime formats over the space-joined groups) tried in order
DATE_PATTERNS = [
    (re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4})\b"), ["%d %m %Y"]),
    (re.compile(r"\b([A-Za-z]+)\s+(\d{1,2}),?\s+(\d{4})\b"), ["%B %d %Y", "%b %d %Y"]),
    (re.compile(r"\b(\d{1,2})\s+([A-Za-z]+),?\s+(\d{4})\b"), ["%d %B %Y", "%d %b %Y"]),
]

CATEGORY_RULES = [
    (DocumentCategory.MUTUAL_FUNDS, re.compile(r"\bmutual funds?\b|\bamcs?\b|\bter\b")),
    (DocumentCategory.PORTFOLIO_MANAGERS, re.compile(r"\bportfolio managers?\b")),
    (DocumentCategory.INVITS, re.compile(r"\binvits?\b|infrastructure investment trusts?")),
    (DocumentCategory.REITS, re.compile(r"\breits?\b|real estate investment trusts?")),
]


class ParsedPdf(BaseModel):
    """Raw extraction result"""

    text: str
    page_count: int
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)


class CircularMetadata(BaseModel):
    """Header fields recovered from circular text"""

    circular_id: Optional[str] = None
    date: Optional[datetime] = None
    title: Optional[str] = None


def extract_pdf(data: bytes) -> ParsedPdf:
    """
    Extract text from PDF bytes.

    Pages that fail extraction are logged and skipped.

    Raises:
        DocumentAcquisitionException: If the PDF cannot be opened
    """
    try:
        reader = PdfReader(BytesIO(data))
        pages = reader.pages
        page_count = len(pages)
    except (PyPdfError, ValueError) as exc:
        raise DocumentAcquisitionException(message=f"Failed to parse PDF: {exc}") from exc

    text_parts = []
    for page_num, page in enumerate(pages, start=1):
        try:
            page_text = page.extract_text()
        except (PyPdfError, ValueError, KeyError) as exc:
            logger.warning("pdf_parser.page_extraction_failed", page_num=page_num, error=str(exc))
            continue
        if page_text:
            text_parts.append(page_text)

    raw_metadata = {key.lstrip("/"): str(value) for key, value in (reader.metadata or {}).items()}
    full_text = "\n\n".join(text_parts)

    logger.debug("pdf_parser.text_extracted", num_pages=page_count, text_length=len(full_text))

    return ParsedPdf(text=full_text, page_count=page_count, raw_metadata=raw_metadata)


def clean_pdf_text(text: str) -> str:
    """Normalize whitespace and strip page furniture from extracted text"""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"^Page\s+\d+\s*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"^\d+\s*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"(\w)-\n(\w)", r"\1\2", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def parse_date(text: str) -> Optional[datetime]:
    """First recognizable date in text, day-first for numeric forms"""
    for pattern, formats in DATE_PATTERNS:
        for match in pattern.finditer(text):
            candidate = " ".join(match.groups())
            for fmt in formats:
                try:
                    return datetime.strptime(candidate, fmt).replace(tzinfo=timezone.utc)
                except ValueError:
                    continue
    return None


def extract_circular_metadata(text: str) -> CircularMetadata:
    """Circular id, issue date and title from the document header"""
    metadata = CircularMetadata()

    match = CIRCULAR_ID_PATTERN.search(text)
    if match:
        metadata.circular_id = match.group(0)

    metadata.date = parse_date(text[:DATE_SCAN_CHARS])

    lines = [line.strip() for line in text.split("\n") if len(line.strip()) > 10]
    for line in lines[:10]:
        if not HEADER_LINE_PATTERN.match(line) and 20 < len(line) < 200:
            metadata.title = line
            break

    return metadata


def detect_category(text: str) -> DocumentCategory:
    """Keyword rules, first match wins"""
    lowered = text.lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return DocumentCategory.GENERAL


def parse_circular_pdf(data: bytes) -> Document:
    """
    Parse SEBI circular PDF bytes into a Document.

    Raises:
        DocumentAcquisitionException: If the PDF is unreadable or has no text
    """
    parsed = extract_pdf(data)
    text = clean_pdf_text(parsed.text)
    if not text:
        raise DocumentAcquisitionException(message="PDF contains no extractable text")

    header = extract_circular_metadata(text)
    now_ms = int(time.time() * 1000)

    document_id = (
        header.circular_id.replace("/", "-").lower()
        if header.circular_id
        else f"sebi-doc-{now_ms}"
    )

    document = Document(
        id=document_id,
        circular_id=header.circular_id or f"UNKNOWN-{now_ms}",
        title=header.title or "Untitled SEBI Circular",
        date=header.date or datetime.now(timezone.utc),
        category=detect_category(text),
        content=text,
        url="",
        metadata={
            "page_count": parsed.page_count,
            "pdf_info": parsed.raw_metadata,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
        },
    )

    logger.info(
        "pdf_parser.document_parsed",
        document_id=document.id,
        circular_id=document.circular_id,
        category=document.category.value,
        pages=parsed.page_count,
    )

    return document
