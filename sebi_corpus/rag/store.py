"""
Vector store interface and its Redis Stack (RediSearch) implementation
Points carry a vector plus a JSON payload; selected payload fields are indexed for filtering
"""

import json
import re
import struct
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field
import redis.asyncio as aioredis
from redis.exceptions import RedisError, ResponseError
from redis.commands.search.field import NumericField, TagField, VectorField
from redis.commands.search.indexDefinition import IndexDefinition, IndexType
from redis.commands.search.query import Query
import structlog

from sebi_corpus.models.exceptions import VectorStoreException

logger = structlog.get_logger()

KEYWORD_FIELDS = ("document_id", "circular_id", "category", "chapter")
RANGE_FIELDS = ("date",)
DELETE_PAGE_SIZE = 1000
# Chapter titles contain commas, RediSearch's default tag separator
TAG_SEPARATOR = "|"

_TAG_SPECIAL = re.compile(r"([^A-Za-z0-9_])")


# ---------------------------------------------------------------------------
# Interface types
# ---------------------------------------------------------------------------


class FieldMatch(BaseModel):
    """Equality predicate on a keyword payload field"""

    key: str
    value: str


class FieldRange(BaseModel):
    """Inclusive numeric range predicate on a payload field"""

    key: str
    gte: Optional[float] = None
    lte: Optional[float] = None


class StoreFilter(BaseModel):
    """Conjunction of predicates"""

    must: List[Union[FieldMatch, FieldRange]] = Field(default_factory=list)


class StorePoint(BaseModel):
    """A point to persist"""

    id: str
    vector: List[float]
    payload: Dict[str, Any] = Field(default_factory=dict)


class ScoredPoint(BaseModel):
    """A point returned by search or scroll"""

    id: str
    score: float = 0.0
    payload: Optional[Dict[str, Any]] = None


class ScrollPage(BaseModel):
    """One page of a full scan; next_cursor is None on the last page"""

    points: List[ScoredPoint] = Field(default_factory=list)
    next_cursor: Optional[int] = None


class DiskHints(BaseModel):
    """Index build hints passed through to the store"""

    on_disk: bool = True
    m: int = 16
    ef_construct: int = 100


class VectorStoreService(ABC):
    """
    Narrow interface over a vector database.
    Implementations raise VectorStoreException for any backend failure.
    """

    @abstractmethod
    async def ensure_collection(
        self,
        name: str,
        vector_size: int,
        distance: str = "COSINE",
        disk_hints: Optional[DiskHints] = None,
    ) -> bool:
        """Create the collection if missing; returns True when created"""

    @abstractmethod
    async def upsert(self, name: str, points: Sequence[StorePoint]) -> int:
        """Persist points and return once the store acknowledged the write"""

    @abstractmethod
    async def vector_search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filter: Optional[StoreFilter] = None,
    ) -> List[ScoredPoint]:
        """Nearest neighbours, best first"""

    @abstractmethod
    async def scroll(
        self,
        name: str,
        filter: Optional[StoreFilter] = None,
        page_size: int = 256,
        cursor: Optional[int] = None,
    ) -> ScrollPage:
        """One page of every point matching the filter"""

    @abstractmethod
    async def delete_by_field(self, name: str, field: str, value: str) -> int:
        """Delete points whose keyword field equals value"""

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Drop the collection and its points"""

    @abstractmethod
    async def count(self, name: str) -> int:
        """Number of stored points"""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Redis implementation
# ---------------------------------------------------------------------------


def to_epoch_ms(value: Any) -> Optional[float]:
    """Convert an ISO string, datetime or number to epoch milliseconds"""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp() * 1000
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp() * 1000
    except ValueError:
        return None


def escape_tag(value: str) -> str:
    """Escape punctuation and spaces for a RediSearch TAG query"""
    return _TAG_SPECIAL.sub(r"\\\1", value)


def build_query_filter(filter: Optional[StoreFilter]) -> str:
    """Translate a StoreFilter into a RediSearch query expression"""
    if filter is None or not filter.must:
        return "*"

    parts = []
    for predicate in filter.must:
        if isinstance(predicate, FieldMatch):
            parts.append(f"@{predicate.key}:{{{escape_tag(predicate.value)}}}")
        else:
            low = "-inf" if predicate.gte is None else repr(float(predicate.gte))
            high = "+inf" if predicate.lte is None else repr(float(predicate.lte))
            parts.append(f"@{predicate.key}:[{low} {high}]")

    return " ".join(parts)


class RedisVectorStore(VectorStoreService):
    """
    Redis-based vector store for document chunks.
    Each collection is a RediSearch index over hashes prefixed "<name>:".
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize vector store.

        Args:
            redis_url: Redis Stack connection URL
            client: Pre-built async client (tests)
        """
        self.redis_url = redis_url

        # Keep binary for vectors
        self.client = client or aioredis.from_url(
            self.redis_url,
            decode_responses=False,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        self._metrics: Dict[str, str] = {}

        logger.info("vectorstore.initialized", url=self.redis_url.split("@")[-1])

    async def ensure_collection(
        self,
        name: str,
        vector_size: int,
        distance: str = "COSINE",
        disk_hints: Optional[DiskHints] = None,
    ) -> bool:
        self._metrics[name] = distance.upper()
        try:
            await self.client.ft(name).info()
            logger.debug("vectorstore.index_exists", index_name=name)
            return False
        except ResponseError:
            # Index doesn't exist, create it
            pass
        except RedisError as exc:
            raise self._error("ensure_collection", name, exc) from exc

        hints = disk_hints or DiskHints()
        schema = [
            VectorField(
                "embedding",
                "HNSW",
                {
                    "TYPE": "FLOAT32",
                    "DIM": vector_size,
                    "DISTANCE_METRIC": distance.upper(),
                    "M": hints.m,
                    "EF_CONSTRUCTION": hints.ef_construct,
                },
            ),
            *(TagField(field, separator=TAG_SEPARATOR) for field in KEYWORD_FIELDS),
            *(NumericField(field) for field in RANGE_FIELDS),
        ]
        definition = IndexDefinition(prefix=[f"{name}:"], index_type=IndexType.HASH)

        try:
            await self.client.ft(name).create_index(fields=schema, definition=definition)
        except RedisError as exc:
            raise self._error("ensure_collection", name, exc) from exc

        logger.info("vectorstore.index_created", index_name=name, dim=vector_size, distance=distance)
        return True

    async def upsert(self, name: str, points: Sequence[StorePoint]) -> int:
        if not points:
            return 0

        pipeline = self.client.pipeline(transaction=False)
        for point in points:
            pipeline.hset(f"{name}:{point.id}", mapping=self._to_hash(point))

        try:
            await pipeline.execute()
        except RedisError as exc:
            raise self._error("upsert", name, exc) from exc

        logger.debug("vectorstore.points_upserted", index_name=name, num_points=len(points))
        return len(points)

    async def vector_search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filter: Optional[StoreFilter] = None,
    ) -> List[ScoredPoint]:
        base = build_query_filter(filter)
        prefix = base if base == "*" else f"({base})"
        query = (
            Query(f"{prefix}=>[KNN {limit} @embedding $vec AS vector_score]")
            .sort_by("vector_score")
            .return_fields("payload", "vector_score")
            .paging(0, limit)
            .dialect(2)
        )

        try:
            results = await self.client.ft(name).search(
                query,
                query_params={"vec": self._embedding_to_bytes(vector)},
            )
        except RedisError as exc:
            raise self._error("vector_search", name, exc) from exc

        metric = self._metrics.get(name, "COSINE")
        return [
            ScoredPoint(
                id=self._point_id(name, doc.id),
                score=self._similarity(float(doc.vector_score), metric),
                payload=self._load_payload(doc),
            )
            for doc in results.docs
        ]

    async def scroll(
        self,
        name: str,
        filter: Optional[StoreFilter] = None,
        page_size: int = 256,
        cursor: Optional[int] = None,
    ) -> ScrollPage:
        offset = cursor or 0
        query = (
            Query(build_query_filter(filter))
            .return_fields("payload")
            .paging(offset, page_size)
            .dialect(2)
        )

        try:
            results = await self.client.ft(name).search(query)
        except RedisError as exc:
            raise self._error("scroll", name, exc) from exc

        points = [
            ScoredPoint(id=self._point_id(name, doc.id), payload=self._load_payload(doc))
            for doc in results.docs
        ]
        next_offset = offset + len(points)
        next_cursor = next_offset if points and next_offset < results.total else None

        return ScrollPage(points=points, next_cursor=next_cursor)

    async def delete_by_field(self, name: str, field: str, value: str) -> int:
        query_filter = StoreFilter(must=[FieldMatch(key=field, value=value)])
        deleted = 0

        try:
            while True:
                query = Query(build_query_filter(query_filter)).no_content().paging(0, DELETE_PAGE_SIZE).dialect(2)
                results = await self.client.ft(name).search(query)
                if not results.docs:
                    break
                await self.client.delete(*(doc.id for doc in results.docs))
                deleted += len(results.docs)
        except RedisError as exc:
            raise self._error("delete_by_field", name, exc) from exc

        logger.info("vectorstore.points_deleted", index_name=name, field=field, value=value, num_points=deleted)
        return deleted

    async def delete_collection(self, name: str) -> None:
        try:
            await self.client.ft(name).dropindex(delete_documents=True)
        except RedisError as exc:
            raise self._error("delete_collection", name, exc) from exc

        self._metrics.pop(name, None)
        logger.info("vectorstore.index_dropped", index_name=name)

    async def count(self, name: str) -> int:
        try:
            info = await self.client.ft(name).info()
        except ResponseError:
            return 0
        except RedisError as exc:
            raise self._error("count", name, exc) from exc

        return int(info["num_docs"])

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            raise self._error("ping", None, exc) from exc

    async def close(self) -> None:
        """Close Redis connection"""
        await self.client.aclose()
        logger.info("vectorstore.closed")

    def _to_hash(self, point: StorePoint) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "embedding": self._embedding_to_bytes(point.vector),
            "payload": json.dumps(point.payload, default=str),
        }
        for field in KEYWORD_FIELDS:
            value = point.payload.get(field)
            if value is not None:
                data[field] = str(value)
        for field in RANGE_FIELDS:
            value = to_epoch_ms(point.payload.get(field))
            if value is not None:
                data[field] = value
        return data

    @staticmethod
    def _point_id(name: str, key: str) -> str:
        prefix = f"{name}:"
        return key[len(prefix):] if key.startswith(prefix) else key

    @staticmethod
    def _load_payload(doc) -> Optional[Dict[str, Any]]:
        raw = getattr(doc, "payload", None)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("vectorstore.payload_not_json", point_id=doc.id)
            return None
        return payload if isinstance(payload, dict) else None

    @staticmethod
    def _similarity(distance: float, metric: str) -> float:
        # RediSearch returns distances; COSINE and IP are 1 - similarity
        if metric == "L2":
            return -distance
        return 1.0 - distance

    @staticmethod
    def _embedding_to_bytes(embedding: List[float]) -> bytes:
        """Convert embedding list to FLOAT32 bytes for Redis"""
        return struct.pack(f"{len(embedding)}f", *embedding)

    @staticmethod
    def _error(operation: str, name: Optional[str], exc: Exception) -> VectorStoreException:
        logger.error("vectorstore.operation_failed", operation=operation, index_name=name, error=str(exc))
        return VectorStoreException(
            message=f"Redis {operation} failed: {exc}",
            operation=operation,
            context={"index_name": name} if name else None,
        )
