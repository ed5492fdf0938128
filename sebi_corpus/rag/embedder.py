"""
Embedding client with caching, batching, concurrency control, rate limiting and retry
Wraps an EmbeddingProvider; one instance owns its cache and rate-limit window
"""

import asyncio
import hashlib
from collections import deque
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from cachetools import TTLCache
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from sebi_corpus.models.documents import Chunk
from sebi_corpus.models.exceptions import (
    ConfigurationException,
    DocumentValidationException,
    EmbeddingIncompleteException,
)
from .providers import EmbeddingProvider
from .rate_limiter import SlidingWindowRateLimiter

logger = structlog.get_logger()

VECTOR_SIZE = 3072
DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_RATE_LIMIT_PER_MINUTE = 3000
DEFAULT_CACHE_TTL_SECONDS = 60 * 60
MAX_CACHE_ENTRIES = 1000
MAX_ATTEMPTS = 5
BACKOFF_BASE_SECONDS = 0.1
PROGRESS_EVERY = 50


def cache_key(text: str) -> str:
    """MD5 hex digest of the text"""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "embedder.retry",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(error),
        error_type=type(error).__name__,
    )


class Embedder:
    """
    Generate embeddings through a provider.

    - Cache: TTL-bounded, size-bounded, keyed by md5 of the trimmed text;
      when full, expired entries go first, then the least recently used
    - Batching: only distinct cache misses reach the provider
    - Concurrency: at most max_concurrency batches in flight, FIFO queue
    - Rate limiting: sliding one-minute window shared by every call
    - Retry: exponential backoff, last error re-raised
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        rate_limit_per_minute: int = DEFAULT_RATE_LIMIT_PER_MINUTE,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        cache_max_entries: int = MAX_CACHE_ENTRIES,
        expected_dimension: int = VECTOR_SIZE,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize embedder.

        Args:
            provider: Backend that performs the raw embedding call
            batch_size: Texts per provider call
            max_concurrency: Provider batches in flight
            rate_limit_per_minute: Provider calls allowed per minute
            cache_ttl_seconds: Lifetime of cached vectors
            cache_max_entries: Cache capacity
            expected_dimension: Vector size checked on every result
            max_attempts: Attempts per provider call
            backoff_base_seconds: First retry wait, doubled per attempt
            rate_limiter: Pre-built limiter (overrides rate_limit_per_minute)
            sleep: Awaitable used for backoff waits
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.provider = provider
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.expected_dimension = expected_dimension
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(max_calls=rate_limit_per_minute)
        self._sleep = sleep
        self._cache: TTLCache = TTLCache(maxsize=cache_max_entries, ttl=cache_ttl_seconds)

        logger.info(
            "embedder.initialized",
            provider=getattr(provider, "name", type(provider).__name__),
            batch_size=batch_size,
            max_concurrency=max_concurrency,
            expected_dimension=expected_dimension,
        )

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            DocumentValidationException: If text is empty
        """
        trimmed = self._normalize(text, index=0)
        key = cache_key(trimmed)

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        vectors = await self._call_provider([trimmed])
        vector = vectors[0]
        self._cache[key] = vector
        return vector

    async def embed_query(self, query: str) -> List[float]:
        """
        Generate embedding for a search query.
        Same as embed_text but kept separate for clarity.
        """
        return await self.embed_text(query)

    async def embed_batch(self, texts: List[str], batch_size: Optional[int] = None) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Output order matches input order; duplicates and cache hits never
        reach the provider.

        Args:
            texts: Texts to embed
            batch_size: Override for texts per provider call

        Returns:
            One vector per input text

        Raises:
            EmbeddingIncompleteException: If any slot is left unfilled
        """
        if not texts:
            return []

        batch_size = batch_size or self.batch_size
        results: List[Optional[List[float]]] = [None] * len(texts)
        slots: Dict[str, List[int]] = {}
        misses: List[Tuple[str, str]] = []

        for index, text in enumerate(texts):
            trimmed = self._normalize(text, index=index)
            key = cache_key(trimmed)

            cached = self._cache.get(key)
            if cached is not None:
                results[index] = cached
                continue

            if key not in slots:
                slots[key] = []
                misses.append((key, trimmed))
            slots[key].append(index)

        batches = [misses[start:start + batch_size] for start in range(0, len(misses), batch_size)]
        processed = 0

        async def run_batch(batch: List[Tuple[str, str]]) -> None:
            nonlocal processed
            vectors = await self._call_provider([text for _, text in batch])
            for (key, _), vector in zip(batch, vectors):
                self._cache[key] = vector
                for slot in slots[key]:
                    results[slot] = vector

            processed += len(batch)
            if len(misses) >= PROGRESS_EVERY and processed % PROGRESS_EVERY == 0:
                logger.info("embedder.progress", processed=processed, total=len(misses))

        await self._run_with_concurrency(batches, run_batch)

        missing = [index for index, vector in enumerate(results) if vector is None]
        if missing:
            raise EmbeddingIncompleteException(
                message=f"Missing embedding for text index {missing[0]}",
                missing_indices=missing,
            )

        logger.debug(
            "embedder.batch_complete",
            num_texts=len(texts),
            cache_misses=len(misses),
            provider_batches=len(batches),
        )

        return results

    async def embed_chunks(self, chunks: List[Chunk]) -> List[Chunk]:
        """
        Embed chunk content and attach the vector to a copy of each chunk.
        """
        if not chunks:
            return []

        embeddings = await self.embed_batch([chunk.content for chunk in chunks])
        return [
            chunk.model_copy(update={"embedding": embedding})
            for chunk, embedding in zip(chunks, embeddings)
        ]

    async def _run_with_concurrency(self, batches: List, worker) -> None:
        """
        Drain a FIFO queue of batches with at most max_concurrency workers.

        The first failing batch stops the run: pending batches are discarded
        and in-flight workers are cancelled before the error propagates.
        """
        queue = deque(batches)

        async def drain() -> None:
            while queue:
                batch = queue.popleft()
                await worker(batch)

        workers = min(self.max_concurrency, len(queue))
        tasks = [asyncio.create_task(drain()) for _ in range(workers)]
        try:
            await asyncio.gather(*tasks)
        finally:
            queue.clear()
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Collect cancellations and any second failure
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _call_provider(self, texts: List[str]) -> List[List[float]]:
        """One rate-limited, retried provider call"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base_seconds, exp_base=2),
            retry=retry_if_not_exception_type(ConfigurationException),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                await self.rate_limiter.acquire()
                vectors = await self.provider.embed(texts)

        if len(vectors) != len(texts):
            raise EmbeddingIncompleteException(
                message=f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                context={"expected": len(texts), "received": len(vectors)},
            )

        for text, vector in zip(texts, vectors):
            self._check_dimension(vector, text)

        return vectors

    def _check_dimension(self, vector: List[float], source_text: str) -> None:
        if len(vector) != self.expected_dimension:
            logger.warning(
                "embedder.unexpected_dimension",
                expected=self.expected_dimension,
                received=len(vector),
                snippet=source_text[:32],
            )

    @staticmethod
    def _normalize(text: str, index: int) -> str:
        trimmed = (text or "").strip()
        if not trimmed:
            raise DocumentValidationException(
                message="Cannot embed empty text",
                field="text",
                context={"index": index},
            )
        return trimmed
