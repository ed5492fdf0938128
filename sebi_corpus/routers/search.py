"""
Search endpoint over the SEBI corpus
Hybrid (default), vector-only or keyword-only retrieval with structured filters
"""

import time
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
import structlog

from sebi_corpus.models.documents import DocumentCategory, SearchFilters, SearchResult
from sebi_corpus.services import CorpusServices, get_services

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["search"])


class SearchRequest(BaseModel):
    """Corpus search request"""
    query: str = Field(..., min_length=1, max_length=2000, description="Search text")
    limit: int = Field(default=5, ge=1, le=50)
    mode: Literal["hybrid", "vector", "keyword"] = "hybrid"
    category: Optional[DocumentCategory] = None
    chapter: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Query cannot be empty")
        return v.strip()

    def filters(self) -> Optional[SearchFilters]:
        if not (self.category or self.chapter or self.date_from or self.date_to):
            return None
        return SearchFilters(
            category=self.category,
            chapter=self.chapter,
            date_from=self.date_from,
            date_to=self.date_to,
        )


class SearchResponse(BaseModel):
    """Ranked search results"""
    results: List[SearchResult]
    count: int
    mode: str
    response_time_ms: int


@router.post("/search", response_model=SearchResponse)
async def search_corpus(
    request: SearchRequest,
    services: CorpusServices = Depends(get_services),
):
    """
    Search the corpus.

    Keyword mode never calls the embedding provider.
    """
    start = time.perf_counter()
    filters = request.filters()
    retriever = services.retriever

    if request.mode == "keyword":
        results = await retriever.keyword_search(request.query, request.limit, filters)
    else:
        query_vector = await services.embedder.embed_query(request.query)
        if request.mode == "vector":
            results = await retriever.search(query_vector, filters, request.limit)
        else:
            results = await retriever.hybrid_search(request.query, query_vector, request.limit, filters)

    response_time_ms = int((time.perf_counter() - start) * 1000)

    logger.info(
        "search.complete",
        mode=request.mode,
        query_length=len(request.query),
        num_results=len(results),
        response_time_ms=response_time_ms,
    )

    return SearchResponse(
        results=results,
        count=len(results),
        mode=request.mode,
        response_time_ms=response_time_ms,
    )
