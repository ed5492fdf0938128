"""
Pydantic models for SEBI documents, chunks and retrieval results
Shared by the chunker, embedder, retriever and ingestion pipeline
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentCategory(str, Enum):
    """Regulatory category of a SEBI document"""

    MUTUAL_FUNDS = "mutual_funds"
    PORTFOLIO_MANAGERS = "portfolio_managers"
    INVITS = "invits"
    REITS = "reits"
    GENERAL = "general"


CATEGORY_KEYS: List[str] = [category.value for category in DocumentCategory]


class Document(BaseModel):
    """
    A parsed SEBI circular.

    Frozen once built: metadata overrides produce a new validated instance.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique document identifier")
    circular_id: str = Field(..., min_length=1, description="Official circular id, e.g. SEBI/HO/IMD/2024/001")
    title: str = Field(..., min_length=1)
    date: datetime = Field(..., description="Issue date of the circular")
    category: DocumentCategory
    chapter: Optional[str] = None
    section: Optional[str] = None
    content: str = Field(..., min_length=1)
    url: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Content must carry text, not only whitespace"""
        if not v.strip():
            raise ValueError("Document content cannot be blank")
        return v


class Chunk(BaseModel):
    """A token-bounded passage of a document carrying its section lineage"""

    chunk_id: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    chunk_index: int = Field(..., ge=0)
    content: str
    tokens: int = Field(..., ge=0)
    section_hierarchy: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = None


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Deterministic chunk id from (document id, ordinal)"""
    return f"{document_id}-chunk-{chunk_index}"


class SearchFilters(BaseModel):
    """Structured filters honored by vector and keyword search"""

    category: Optional[DocumentCategory] = None
    chapter: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class SearchResult(BaseModel):
    """A scored chunk with its reconstructed owning document"""

    score: float
    chunk: Chunk
    document: Document


class IngestionSummary(BaseModel):
    """Result of ingesting one document"""

    document_key: str
    circular_id: str
    chunk_count: int
    embedding_count: int
    elapsed_ms: int


class IngestionFailure(BaseModel):
    """One file that failed during directory ingestion"""

    file: str
    error: str


class DirectoryIngestionSummary(BaseModel):
    """Result of ingesting every PDF under a directory tree"""

    total_files: int
    success_count: int
    failure_count: int
    summaries: List[IngestionSummary] = Field(default_factory=list)
    failures: List[IngestionFailure] = Field(default_factory=list)


class CorpusStats(BaseModel):
    """Corpus-wide chunk statistics"""

    total_chunks: int
    categories: Dict[str, int]
    latest_date: Optional[str] = None
