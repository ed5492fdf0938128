"""
Admin endpoints for corpus management
5 endpoints: ingest (path or URL), ingest directory, update circular, delete circular, stats
"""

import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field, model_validator
import structlog

from sebi_corpus.config import settings
from sebi_corpus.models.documents import (
    CorpusStats,
    DirectoryIngestionSummary,
    DocumentCategory,
    IngestionSummary,
)
from sebi_corpus.models.exceptions import InsufficientPermissionsException
from sebi_corpus.services import CorpusServices, get_services

logger = structlog.get_logger()


async def verify_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """
    Verify admin token from header using constant-time comparison.

    Admin routes are refused outright when ADMIN_TOKEN is not configured.

    Raises:
        InsufficientPermissionsException: If token is missing or invalid
    """
    if not settings.ADMIN_TOKEN:
        logger.warning("admin.token_not_set")
        raise InsufficientPermissionsException(
            message="Admin API is disabled",
            required_permission="admin",
        )

    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        logger.warning("admin.unauthorized_access_attempt")
        raise InsufficientPermissionsException(
            message="Invalid admin token",
            required_permission="admin",
        )


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_admin)])


class DocumentOverrides(BaseModel):
    """Fields applied over the parsed document"""
    circular_id: Optional[str] = None
    title: Optional[str] = None
    category: Optional[DocumentCategory] = None
    chapter: Optional[str] = None
    url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude_defaults=True)


class IngestRequest(BaseModel):
    """Ingest one PDF by server-side path or URL"""
    path: Optional[str] = Field(None, description="PDF path, relative to CORPUS_SOURCE_PATH")
    url: Optional[str] = Field(None, description="PDF URL to download")
    overrides: DocumentOverrides = Field(default_factory=DocumentOverrides)

    @model_validator(mode="after")
    def exactly_one_source(self) -> "IngestRequest":
        if bool(self.path) == bool(self.url):
            raise ValueError("Provide exactly one of path or url")
        return self


class DirectoryRequest(BaseModel):
    """Ingest every PDF under a directory"""
    path: str = Field(..., min_length=1)


class UpdateRequest(BaseModel):
    """Replace a circular with a new PDF"""
    circular_id: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)


class DeleteResponse(BaseModel):
    circular_id: str
    status: str
    chunks_deleted: int


@router.post("/ingest", response_model=IngestionSummary)
async def ingest(request: IngestRequest, services: CorpusServices = Depends(get_services)):
    """Ingest a single circular"""
    overrides = request.overrides.as_dict() or None

    if request.url:
        summary = await services.ingestion.ingest_url(request.url, overrides)
    else:
        summary = await services.ingestion.ingest_pdf(request.path, overrides)

    logger.info("admin.document_ingested", circular_id=summary.circular_id, chunks=summary.chunk_count)
    return summary


@router.post("/ingest-directory", response_model=DirectoryIngestionSummary)
async def ingest_directory(request: DirectoryRequest, services: CorpusServices = Depends(get_services)):
    """Ingest a directory tree; per-file failures are returned, not raised"""
    return await services.ingestion.ingest_directory(request.path)


@router.post("/update", response_model=IngestionSummary)
async def update_circular(request: UpdateRequest, services: CorpusServices = Depends(get_services)):
    """Delete a circular's chunks and re-ingest it"""
    return await services.ingestion.update_corpus(request.circular_id, request.path)


@router.delete("/circulars/{circular_id:path}", response_model=DeleteResponse)
async def delete_circular(circular_id: str, services: CorpusServices = Depends(get_services)):
    """Delete every chunk of a circular"""
    deleted = await services.retriever.delete_chunks_by_circular_id(circular_id)

    logger.info("admin.circular_deleted", circular_id=circular_id, chunks_deleted=deleted)
    return DeleteResponse(circular_id=circular_id, status="deleted", chunks_deleted=deleted)


@router.get("/stats", response_model=CorpusStats)
async def corpus_stats(services: CorpusServices = Depends(get_services)):
    """Corpus-wide chunk statistics"""
    return await services.ingestion.get_corpus_stats()
