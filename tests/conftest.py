"""
Pytest configuration and fixtures for testing
"""

import asyncio
import hashlib
import math
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["ADMIN_TOKEN"] = "test-admin-token-secure"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["LOG_LEVEL"] = "WARNING"

from sebi_corpus.models.documents import Document, DocumentCategory  # noqa: E402
from sebi_corpus.models.exceptions import VectorStoreException  # noqa: E402
from sebi_corpus.rag.embedder import Embedder  # noqa: E402
from sebi_corpus.rag.ingest import CorpusIngestion  # noqa: E402
from sebi_corpus.rag.providers import EmbeddingProvider  # noqa: E402
from sebi_corpus.rag.retriever import HybridRetriever  # noqa: E402
from sebi_corpus.rag.splitter import ChunkOptions  # noqa: E402
from sebi_corpus.rag.store import (  # noqa: E402
    DiskHints,
    FieldMatch,
    ScoredPoint,
    ScrollPage,
    StoreFilter,
    StorePoint,
    VectorStoreService,
    to_epoch_ms,
)
from sebi_corpus.services import CorpusServices  # noqa: E402

DIM = 8


class FakeTokenizer:
    """One token per whitespace-separated word"""

    def count(self, text: str) -> int:
        return len(text.split())


class FakeProvider(EmbeddingProvider):
    """Deterministic vectors; records every call"""

    name = "fake"

    def __init__(self, dimension: int = DIM, fail_times: int = 0, drop_last: bool = False, delay: float = 0.0):
        self.dimension = dimension
        self.fail_times = fail_times
        self.drop_last = drop_last
        self.delay = delay
        self.calls: List[List[str]] = []
        self.vectors: Dict[str, List[float]] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return self.vectors[text]
        digest = hashlib.md5(text.encode("utf-8")).digest()
        return [byte / 255 for byte in digest[:self.dimension]]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("provider unavailable")

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            vectors = [self.vector_for(text) for text in texts]
        finally:
            self.in_flight -= 1

        return vectors[:-1] if self.drop_last else vectors

    def get_dimension(self) -> int:
        return self.dimension


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if not norm:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / norm


class InMemoryVectorStore(VectorStoreService):
    """Dict-backed store honoring the filter and paging contract"""

    def __init__(self):
        self.collections: Dict[str, Dict[str, StorePoint]] = {}
        self.created: List[str] = []
        self.upsert_calls = 0
        self.fail_next = 0
        self.healthy = True

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise VectorStoreException(message=f"{operation} failed", operation=operation)

    @staticmethod
    def _matches(payload: Dict[str, Any], filter: Optional[StoreFilter]) -> bool:
        if filter is None:
            return True
        for predicate in filter.must:
            if isinstance(predicate, FieldMatch):
                if payload.get(predicate.key) != predicate.value:
                    return False
            else:
                value = to_epoch_ms(payload.get(predicate.key))
                if value is None:
                    return False
                if predicate.gte is not None and value < predicate.gte:
                    return False
                if predicate.lte is not None and value > predicate.lte:
                    return False
        return True

    async def ensure_collection(
        self,
        name: str,
        vector_size: int,
        distance: str = "COSINE",
        disk_hints: Optional[DiskHints] = None,
    ) -> bool:
        if name in self.collections:
            return False
        self.collections[name] = {}
        self.created.append(name)
        return True

    async def upsert(self, name: str, points: Sequence[StorePoint]) -> int:
        self._maybe_fail("upsert")
        self.upsert_calls += 1
        collection = self.collections.setdefault(name, {})
        for point in points:
            collection[point.id] = point.model_copy(deep=True)
        return len(points)

    async def vector_search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filter: Optional[StoreFilter] = None,
    ) -> List[ScoredPoint]:
        self._maybe_fail("vector_search")
        hits = [
            ScoredPoint(id=point.id, score=_cosine(vector, point.vector), payload=point.payload)
            for point in self.collections.get(name, {}).values()
            if self._matches(point.payload, filter)
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def scroll(
        self,
        name: str,
        filter: Optional[StoreFilter] = None,
        page_size: int = 256,
        cursor: Optional[int] = None,
    ) -> ScrollPage:
        self._maybe_fail("scroll")
        matching = [
            point for point in self.collections.get(name, {}).values()
            if self._matches(point.payload, filter)
        ]
        offset = cursor or 0
        page = matching[offset:offset + page_size]
        next_offset = offset + len(page)
        return ScrollPage(
            points=[ScoredPoint(id=point.id, payload=point.payload) for point in page],
            next_cursor=next_offset if next_offset < len(matching) else None,
        )

    async def delete_by_field(self, name: str, field: str, value: str) -> int:
        collection = self.collections.get(name, {})
        doomed = [key for key, point in collection.items() if point.payload.get(field) == value]
        for key in doomed:
            del collection[key]
        return len(doomed)

    async def delete_collection(self, name: str) -> None:
        self.collections.pop(name, None)

    async def count(self, name: str) -> int:
        return len(self.collections.get(name, {}))

    async def ping(self) -> bool:
        if not self.healthy:
            raise VectorStoreException(message="store unreachable", operation="ping")
        return True


async def no_sleep(seconds: float) -> None:
    return None


def build_document(
    content: str = "Mutual fund schemes must disclose the total expense ratio.",
    doc_id: str = "sebi-ho-imd-2024-001",
    circular_id: str = "SEBI/HO/IMD/2024/001",
    category: DocumentCategory = DocumentCategory.MUTUAL_FUNDS,
    date: Optional[datetime] = None,
    **extra: Any,
) -> Document:
    return Document(
        id=doc_id,
        circular_id=circular_id,
        title=extra.pop("title", "Circular on expense ratios of mutual fund schemes"),
        date=date or datetime(2024, 3, 15, tzinfo=timezone.utc),
        category=category,
        content=content,
        **extra,
    )


@pytest.fixture
def tokenizer() -> FakeTokenizer:
    return FakeTokenizer()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def embedder(provider: FakeProvider) -> Embedder:
    return Embedder(provider, expected_dimension=DIM, sleep=no_sleep)


@pytest.fixture
def retriever(memory_store: InMemoryVectorStore) -> HybridRetriever:
    return HybridRetriever(memory_store, collection_name="test_regulations", vector_size=DIM, sleep=no_sleep)


def text_parser(data: bytes) -> Document:
    """Treat file bytes as circular text; 'BROKEN' fails like an unreadable PDF"""
    from sebi_corpus.models.exceptions import DocumentAcquisitionException

    text = data.decode("utf-8")
    if text.startswith("BROKEN"):
        raise DocumentAcquisitionException(message="Failed to parse PDF: EOF marker not found")
    first_line = text.split("\n", 1)[0]
    return build_document(content=text, doc_id=first_line.lower().replace("/", "-"), circular_id=first_line)


@pytest.fixture
def ingestion(retriever, embedder, tokenizer, tmp_path) -> CorpusIngestion:
    return CorpusIngestion(
        retriever,
        embedder,
        tokenizer,
        parser=text_parser,
        chunk_options=ChunkOptions(max_tokens=40, min_tokens=0, overlap_tokens=5),
        source_path=tmp_path,
    )


@pytest.fixture
def services(tokenizer, provider, embedder, memory_store, retriever, ingestion) -> CorpusServices:
    return CorpusServices(
        tokenizer=tokenizer,
        provider=provider,
        embedder=embedder,
        store=memory_store,
        retriever=retriever,
        ingestion=ingestion,
    )


@pytest.fixture
async def client(services: CorpusServices) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to in-memory services"""
    from sebi_corpus.main import app
    from sebi_corpus.services import get_services

    app.dependency_overrides[get_services] = lambda: services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
