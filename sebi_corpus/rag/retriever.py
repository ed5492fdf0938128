"""
Hybrid retrieval combining vector search and BM25 keyword search
Uses Reciprocal Rank Fusion for result merging
"""

import asyncio
import math
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError
from rank_bm25 import BM25Okapi
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)
import structlog

from sebi_corpus.models.documents import (
    Chunk,
    Document,
    DocumentCategory,
    SearchFilters,
    SearchResult,
)
from sebi_corpus.models.exceptions import VectorStoreException
from .store import (
    DiskHints,
    FieldMatch,
    FieldRange,
    StoreFilter,
    StorePoint,
    VectorStoreService,
    to_epoch_ms,
)

logger = structlog.get_logger()

DEFAULT_COLLECTION = "sebi_regulations"
VECTOR_SIZE = 3072
UPSERT_BATCH_SIZE = 100
SCROLL_PAGE_SIZE = 256
RRF_K = 60
MIN_OVERFETCH = 10
STORE_ATTEMPTS = 3
BM25_K1 = 1.5
BM25_B = 0.75

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def tokenize(text: str) -> List[str]:
    """Lower-case and split on runs of non-alphanumeric characters"""
    return [token for token in _NON_ALNUM.split(text.lower()) if token]


class CandidateBM25(BM25Okapi):
    """
    BM25 over a fixed candidate set.

    idf is ln(1 + (N - df + 0.5) / (df + 0.5)), which stays positive for
    terms present in most candidates.
    """

    def _calc_idf(self, nd):
        for word, freq in nd.items():
            self.idf[word] = math.log((self.corpus_size - freq + 0.5) / (freq + 0.5) + 1)


def bm25_scores(query_tokens: List[str], documents: List[List[str]]) -> List[float]:
    """Score tokenized documents against a tokenized query"""
    if not documents or not query_tokens:
        return [0.0] * len(documents)
    # avgdl of 0 would divide by zero inside get_scores
    if not any(documents):
        return [0.0] * len(documents)

    bm25 = CandidateBM25(documents, k1=BM25_K1, b=BM25_B)
    return [float(score) for score in bm25.get_scores(query_tokens)]


def result_key(result: SearchResult) -> str:
    return f"{result.document.id}-{result.chunk.chunk_id}"


def reciprocal_rank_fusion(
    result_sets: Sequence[List[SearchResult]],
    limit: int,
    k: int = RRF_K,
) -> List[SearchResult]:
    """
    Combine ranked result lists using Reciprocal Rank Fusion.

    RRF formula: score = sum over lists of 1 / (k + rank + 1), rank 0-based

    Args:
        result_sets: Ranked lists, best first
        limit: Number of fused results to return
        k: Constant for RRF (default 60)

    Returns:
        Fused results, best first; ties keep first-appearance order
    """
    fused: Dict[str, Dict[str, Any]] = {}

    for results in result_sets:
        for rank, result in enumerate(results):
            key = result_key(result)
            increment = 1.0 / (k + rank + 1)

            if key not in fused:
                fused[key] = {"result": result, "score": 0.0}

            fused[key]["score"] += increment

    # sorted is stable; dict order is first appearance
    ranked = sorted(fused.values(), key=lambda entry: entry["score"], reverse=True)

    return [
        entry["result"].model_copy(update={"score": entry["score"]})
        for entry in ranked[:limit]
    ]


def build_payload(document: Document, chunk: Chunk) -> Dict[str, Any]:
    """Point payload: the chunk plus denormalized document fields for filtering"""
    chapter = document.chapter or (chunk.section_hierarchy[0] if chunk.section_hierarchy else None)

    return {
        "chunk": chunk.model_dump(mode="json", exclude={"embedding"}),
        "document": document.model_dump(mode="json", exclude={"content"}),
        "document_id": document.id,
        "circular_id": document.circular_id,
        "category": document.category.value,
        "date": document.date.isoformat(),
        "chapter": chapter,
        "title": document.title,
        "url": document.url,
        "metadata": document.metadata,
    }


def _parse_date(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def payload_to_result(payload: Optional[Dict[str, Any]], score: float = 0.0) -> Optional[SearchResult]:
    """
    Rebuild a SearchResult from a stored payload.

    The document comes from the stored projection, then payload-level fields,
    then synthesized defaults. Returns None for payloads that fail validation.
    """
    if not payload or not isinstance(payload.get("chunk"), dict):
        logger.warning("retriever.payload_invalid", reason="missing_chunk")
        return None

    try:
        chunk = Chunk.model_validate(payload["chunk"])

        raw = payload.get("document") or {}
        hierarchy = chunk.section_hierarchy
        document = Document(
            id=raw.get("id") or chunk.document_id,
            circular_id=raw.get("circular_id") or payload.get("circular_id") or chunk.document_id,
            title=raw.get("title") or payload.get("title") or f"SEBI Circular {chunk.document_id}",
            date=_parse_date(raw.get("date") or payload.get("date")),
            category=raw.get("category") or payload.get("category") or DocumentCategory.GENERAL,
            chapter=raw.get("chapter") or payload.get("chapter") or (hierarchy[0] if hierarchy else None),
            section=raw.get("section") or (hierarchy[-1] if hierarchy else None),
            content=raw.get("content") or chunk.content,
            url=raw.get("url") or payload.get("url") or "",
            metadata=raw.get("metadata") or payload.get("metadata") or {},
        )
    except ValidationError as exc:
        logger.warning(
            "retriever.payload_invalid",
            chunk_id=payload["chunk"].get("chunk_id"),
            errors=exc.error_count(),
        )
        return None

    return SearchResult(score=score, chunk=chunk, document=document)


def build_store_filter(filters: Optional[SearchFilters]) -> Optional[StoreFilter]:
    """Translate search filters into store predicates"""
    if filters is None:
        return None

    must: List[Any] = []
    if filters.category:
        must.append(FieldMatch(key="category", value=filters.category.value))
    if filters.chapter:
        must.append(FieldMatch(key="chapter", value=filters.chapter))
    if filters.date_from or filters.date_to:
        must.append(
            FieldRange(
                key="date",
                gte=to_epoch_ms(filters.date_from),
                lte=to_epoch_ms(filters.date_to),
            )
        )

    return StoreFilter(must=must) if must else None


def _log_store_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retriever.store_retry",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class HybridRetriever:
    """
    Vector, keyword and fused search over one collection.
    Also owns collection setup and chunk persistence.
    """

    def __init__(
        self,
        store: VectorStoreService,
        collection_name: str = DEFAULT_COLLECTION,
        vector_size: int = VECTOR_SIZE,
        distance: str = "COSINE",
        disk_hints: Optional[DiskHints] = None,
        store_attempts: int = STORE_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.collection_name = collection_name
        self.vector_size = vector_size
        self.distance = distance
        self.disk_hints = disk_hints or DiskHints()
        self.store_attempts = store_attempts
        self._sleep = sleep
        self._initialized = False

    async def initialize_collection(self) -> bool:
        """Create the collection if missing; safe to call repeatedly"""
        created = await self._call_store(
            self.store.ensure_collection,
            self.collection_name,
            self.vector_size,
            self.distance,
            self.disk_hints,
        )
        self._initialized = True
        if created:
            logger.info("retriever.collection_created", collection=self.collection_name)
        return created

    async def upsert_chunks(self, document: Document, chunks: List[Chunk]) -> int:
        """
        Persist embedded chunks in batches.

        Returns:
            Number of points acknowledged by the store
        """
        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"Missing embedding for chunk {chunk.chunk_id}")

        upserted = 0
        for start in range(0, len(chunks), UPSERT_BATCH_SIZE):
            batch = chunks[start:start + UPSERT_BATCH_SIZE]
            points = [
                StorePoint(id=chunk.chunk_id, vector=chunk.embedding, payload=build_payload(document, chunk))
                for chunk in batch
            ]
            await self._call_store(self.store.upsert, self.collection_name, points)
            upserted += len(batch)

        logger.info(
            "retriever.chunks_upserted",
            document_id=document.id,
            num_chunks=upserted,
        )
        return upserted

    async def search(
        self,
        query_vector: List[float],
        filters: Optional[SearchFilters] = None,
        limit: int = 5,
    ) -> List[SearchResult]:
        """
        Vector similarity search.

        Args:
            query_vector: Query embedding
            filters: Optional category, chapter and date filters
            limit: Number of results

        Returns:
            Results best first; invalid payloads are skipped
        """
        hits = await self._call_store(
            self.store.vector_search,
            self.collection_name,
            query_vector,
            limit,
            build_store_filter(filters),
        )

        results = []
        for hit in hits:
            result = payload_to_result(hit.payload, hit.score)
            if result is not None:
                results.append(result)

        logger.debug("retriever.vector_search_complete", num_results=len(results))
        return results

    async def keyword_search(
        self,
        query: str,
        limit: int = 5,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchResult]:
        """
        BM25 over every chunk matching the filters.
        An empty query returns the first limit candidates unscored.
        """
        candidates = await self.list_chunks(filters)
        if not query.strip():
            return candidates[:limit]

        query_tokens = tokenize(query)
        scores = bm25_scores(query_tokens, [tokenize(candidate.chunk.content) for candidate in candidates])

        scored = [
            candidate.model_copy(update={"score": score})
            for candidate, score in zip(candidates, scores)
        ]
        scored.sort(key=lambda result: result.score, reverse=True)

        logger.debug(
            "retriever.bm25_search_complete",
            num_candidates=len(candidates),
            num_query_tokens=len(query_tokens),
        )
        return scored[:limit]

    async def hybrid_search(
        self,
        query: str,
        query_vector: List[float],
        limit: int = 5,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchResult]:
        """
        Retrieve relevant chunks using hybrid search (vector + BM25).
        Uses Reciprocal Rank Fusion to combine results.

        Args:
            query: Search query text
            query_vector: Embedding of the query
            limit: Number of results to return
            filters: Optional metadata filters

        Returns:
            Fused results with RRF scores
        """
        fetch = max(limit * 2, MIN_OVERFETCH)

        vector_results = await self.search(query_vector, filters, fetch)
        keyword_results = await self.keyword_search(query, fetch, filters)

        fused = reciprocal_rank_fusion([vector_results, keyword_results], limit)

        logger.info(
            "retriever.hybrid_search_complete",
            query_length=len(query),
            vector_hits=len(vector_results),
            keyword_hits=len(keyword_results),
            num_results=len(fused),
        )
        return fused

    async def list_chunks(self, filters: Optional[SearchFilters] = None) -> List[SearchResult]:
        """Every stored chunk matching the filters, via paginated scroll"""
        store_filter = build_store_filter(filters)
        results: List[SearchResult] = []
        cursor = None

        while True:
            page = await self._call_store(
                self.store.scroll,
                self.collection_name,
                store_filter,
                SCROLL_PAGE_SIZE,
                cursor,
            )
            for point in page.points:
                result = payload_to_result(point.payload)
                if result is not None:
                    results.append(result)

            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        return results

    async def delete_chunks_by_circular_id(self, circular_id: str) -> int:
        deleted = await self._call_store(
            self.store.delete_by_field,
            self.collection_name,
            "circular_id",
            circular_id,
        )
        logger.info("retriever.circular_deleted", circular_id=circular_id, num_chunks=deleted)
        return deleted

    async def delete_collection(self) -> None:
        await self._call_store(self.store.delete_collection, self.collection_name)
        self._initialized = False

    async def count_chunks(self) -> int:
        return await self._call_store(self.store.count, self.collection_name)

    async def _call_store(self, operation, *args):
        """Run a store call, retrying VectorStoreException with an incremental wait"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.store_attempts),
            wait=wait_incrementing(start=0.1, increment=0.1),
            retry=retry_if_exception_type(VectorStoreException),
            before_sleep=_log_store_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await operation(*args)
