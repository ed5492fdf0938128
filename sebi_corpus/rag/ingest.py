"""
Document ingestion pipeline for the SEBI corpus
Reads, parses, validates, chunks, embeds and stores circulars
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError
import structlog

from sebi_corpus.models.documents import (
    CATEGORY_KEYS,
    CorpusStats,
    DirectoryIngestionSummary,
    Document,
    IngestionFailure,
    IngestionSummary,
)
from sebi_corpus.models.exceptions import DocumentAcquisitionException, DocumentValidationException
from .embedder import Embedder
from .pdf_parser import parse_circular_pdf
from .retriever import HybridRetriever
from .splitter import ChunkOptions, HierarchicalChunker
from .store import to_epoch_ms

logger = structlog.get_logger()

PathLike = Union[str, Path]


async def download_pdf(url: str) -> bytes:
    """
    Download PDF from URL.

    Args:
        url: PDF URL

    Returns:
        PDF content as bytes
    """
    try:
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise DocumentAcquisitionException(message=f"Download failed: {exc}", source=url) from exc

    content_type = response.headers.get("content-type", "")
    if "pdf" not in content_type.lower():
        logger.warning("ingest.unexpected_content_type", url=url, content_type=content_type)

    return response.content


class CorpusIngestion:
    """
    End-to-end ingestion of SEBI circulars.

    Validation always happens before the first network call; a failure in one
    file of a directory never stops the remaining files.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        embedder: Embedder,
        tokenizer,
        parser: Callable[[bytes], Document] = parse_circular_pdf,
        chunk_options: Optional[ChunkOptions] = None,
        source_path: Optional[PathLike] = None,
        downloader: Callable[[str], Awaitable[bytes]] = download_pdf,
    ):
        """
        Initialize ingestion.

        Args:
            retriever: Retriever owning the target collection
            embedder: Embedding client
            tokenizer: Token counter shared with the chunker
            parser: PDF bytes -> Document
            chunk_options: Token budget for passages
            source_path: Base directory for relative paths
            downloader: URL -> PDF bytes
        """
        self.retriever = retriever
        self.embedder = embedder
        self.parser = parser
        self.chunker = HierarchicalChunker(tokenizer, chunk_options)
        self.source_path = Path(source_path) if source_path else None
        self.downloader = downloader

    async def ingest_pdf(self, pdf_path: PathLike, overrides: Optional[Dict[str, Any]] = None) -> IngestionSummary:
        """
        Ingest one PDF file.

        Args:
            pdf_path: Absolute path, or relative to source_path / CWD
            overrides: Document fields to override; metadata is merged

        Returns:
            Per-document summary
        """
        start = time.perf_counter()
        path = self.resolve_path(pdf_path)

        logger.info("ingest.starting", path=str(path))

        try:
            data = path.read_bytes()
        except OSError as exc:
            raise DocumentAcquisitionException(message=f"Cannot read {path}: {exc}", source=str(path)) from exc

        document = self.parser(data)
        return await self._ingest_document(document, overrides, str(path), start)

    async def ingest_url(self, url: str, overrides: Optional[Dict[str, Any]] = None) -> IngestionSummary:
        """Download a PDF and ingest it; the URL is recorded on the document"""
        start = time.perf_counter()
        logger.info("ingest.starting", url=url)

        data = await self.downloader(url)
        document = self.parser(data)

        overrides = {"url": url, **(overrides or {})}
        return await self._ingest_document(document, overrides, url, start)

    async def ingest_directory(self, dir_path: PathLike) -> DirectoryIngestionSummary:
        """
        Ingest every PDF under a directory tree.

        Every file is attempted; failures are collected, not raised.
        """
        directory = self.resolve_path(dir_path)
        if not directory.is_dir():
            raise DocumentAcquisitionException(message=f"Not a directory: {directory}", source=str(directory))

        pdf_files = sorted(
            path for path in directory.rglob("*")
            if path.is_file() and path.suffix.lower() == ".pdf"
        )

        if not pdf_files:
            logger.warning("ingest.no_pdfs_found", directory=str(directory))

        summaries: List[IngestionSummary] = []
        failures: List[IngestionFailure] = []

        for pdf in pdf_files:
            try:
                summaries.append(await self.ingest_pdf(pdf))
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                failures.append(IngestionFailure(file=str(pdf), error=message))
                logger.error("ingest.file_failed", file=str(pdf), error=message, error_type=type(e).__name__)

        logger.info(
            "ingest.directory_complete",
            directory=str(directory),
            total_files=len(pdf_files),
            succeeded=len(summaries),
            failed=len(failures),
        )

        return DirectoryIngestionSummary(
            total_files=len(pdf_files),
            success_count=len(summaries),
            failure_count=len(failures),
            summaries=summaries,
            failures=failures,
        )

    async def update_corpus(self, circular_id: str, pdf_path: PathLike) -> IngestionSummary:
        """Replace every stored chunk of a circular with a fresh ingestion"""
        logger.info("ingest.updating", circular_id=circular_id)

        await self.retriever.delete_chunks_by_circular_id(circular_id)
        return await self.ingest_pdf(
            pdf_path,
            {
                "circular_id": circular_id,
                "metadata": {"version": datetime.now(timezone.utc).isoformat()},
            },
        )

    async def get_corpus_stats(self) -> CorpusStats:
        """Chunk totals per category and the most recent document date"""
        results = await self.retriever.list_chunks()
        categories = {key: 0 for key in CATEGORY_KEYS}
        latest_ms = 0.0

        for result in results:
            category = result.document.category.value
            categories[category] = categories.get(category, 0) + 1

            timestamp = to_epoch_ms(result.document.date) or 0.0
            latest_ms = max(latest_ms, timestamp)

        latest_date = (
            datetime.fromtimestamp(latest_ms / 1000, tz=timezone.utc).isoformat()
            if latest_ms
            else None
        )

        return CorpusStats(total_chunks=len(results), categories=categories, latest_date=latest_date)

    def validate_metadata(self, metadata: Union[Document, Mapping[str, Any], None]) -> None:
        """
        Check the fields every stored document needs.

        Raises:
            DocumentValidationException: On a missing or invalid field
        """
        if metadata is None:
            raise DocumentValidationException(message="Document metadata is required")

        fields = metadata.model_dump() if isinstance(metadata, Document) else dict(metadata)

        for field in ("circular_id", "date", "category"):
            if not fields.get(field):
                raise DocumentValidationException(message=f"Missing {field} in metadata", field=field)

        category = fields["category"]
        category = getattr(category, "value", category)
        if category not in CATEGORY_KEYS:
            raise DocumentValidationException(message=f"Invalid category: {category}", field="category")

        date = fields["date"]
        if isinstance(date, str):
            try:
                datetime.fromisoformat(date.replace("Z", "+00:00"))
            except ValueError as exc:
                raise DocumentValidationException(message=f"Malformed date: {date}", field="date") from exc
        elif not isinstance(date, datetime):
            raise DocumentValidationException(message=f"Malformed date: {date!r}", field="date")

    def resolve_path(self, input_path: PathLike) -> Path:
        path = Path(input_path)
        if path.is_absolute():
            return path
        if self.source_path:
            return (self.source_path / path).resolve()
        return path.resolve()

    async def _ingest_document(
        self,
        document: Document,
        overrides: Optional[Dict[str, Any]],
        document_key: str,
        start: float,
    ) -> IngestionSummary:
        self.validate_metadata(overrides_view(document, overrides))
        merged = merge_metadata(document, overrides)

        await self.retriever.initialize_collection()

        chunks = self.chunker.chunk_document(merged)
        if not chunks:
            raise DocumentValidationException(
                message=f"No chunks produced for {merged.circular_id}",
                field="content",
            )

        embedded = await self.embedder.embed_chunks(chunks)
        upserted = await self.retriever.upsert_chunks(merged, embedded)

        summary = IngestionSummary(
            document_key=document_key,
            circular_id=merged.circular_id,
            chunk_count=len(embedded),
            embedding_count=upserted,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )

        logger.info(
            "ingest.complete",
            document_id=merged.id,
            circular_id=merged.circular_id,
            num_chunks=summary.chunk_count,
            elapsed_ms=summary.elapsed_ms,
        )

        return summary


def overrides_view(document: Document, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Document fields with overrides applied, before model validation"""
    return {**document.model_dump(), **(overrides or {})}


def merge_metadata(document: Document, overrides: Optional[Dict[str, Any]]) -> Document:
    """
    Build a new validated document with overrides applied.
    Metadata dicts are merged rather than replaced.
    """
    if not overrides:
        return document

    merged = {
        **document.model_dump(),
        **overrides,
        "metadata": {**document.metadata, **(overrides.get("metadata") or {})},
    }

    try:
        return Document.model_validate(merged)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise DocumentValidationException(
            message=f"Invalid document override: {first['msg']}",
            field=field,
        ) from exc
