"""
Service wiring shared by the HTTP API and the CLI.
One container per process; the API builds it in lifespan, the CLI per command.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from sebi_corpus.config import Settings, settings as default_settings
from sebi_corpus.rag.embedder import Embedder
from sebi_corpus.rag.ingest import CorpusIngestion
from sebi_corpus.rag.providers import (
    EmbeddingProvider,
    LazyEmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
)
from sebi_corpus.rag.retriever import HybridRetriever
from sebi_corpus.rag.splitter import ChunkOptions
from sebi_corpus.rag.store import RedisVectorStore, VectorStoreService
from sebi_corpus.rag.tokenizer import Tokenizer

logger = structlog.get_logger()

# Global singleton container
_services: Optional["CorpusServices"] = None


@dataclass
class CorpusServices:
    tokenizer: Tokenizer
    provider: EmbeddingProvider
    embedder: Embedder
    store: VectorStoreService
    retriever: HybridRetriever
    ingestion: CorpusIngestion

    async def close(self) -> None:
        await self.store.close()


def build_provider(config: Settings) -> EmbeddingProvider:
    """Embedding backend selected by EMBED_PROVIDER"""
    if config.EMBED_PROVIDER == "local":
        return SentenceTransformerProvider(model_name=config.EMBED_MODEL)
    return OpenAIEmbeddingProvider(
        api_key=config.OPENAI_API_KEY,
        model=config.EMBED_MODEL,
        base_url=config.OPENAI_BASE_URL,
    )


def build_services(
    config: Optional[Settings] = None,
    store: Optional[VectorStoreService] = None,
    provider: Optional[EmbeddingProvider] = None,
) -> CorpusServices:
    """
    Construct every collaborator from settings.

    Args:
        config: Settings (defaults to the global instance)
        store: Pre-built vector store (tests)
        provider: Pre-built embedding provider (tests)
    """
    config = config or default_settings

    tokenizer = Tokenizer(config.TOKENIZER_ENCODING)
    provider = provider or LazyEmbeddingProvider(lambda: build_provider(config), name=config.EMBED_PROVIDER)
    vector_size = provider.get_dimension() if config.EMBED_PROVIDER == "local" else config.EMBED_DIM

    embedder = Embedder(
        provider,
        batch_size=config.EMBED_BATCH_SIZE,
        max_concurrency=config.EMBED_MAX_CONCURRENCY,
        rate_limit_per_minute=config.EMBED_RATE_LIMIT_PER_MINUTE,
        cache_ttl_seconds=config.EMBED_CACHE_TTL_SECONDS,
        cache_max_entries=config.EMBED_CACHE_MAX_ENTRIES,
        expected_dimension=vector_size,
    )
    store = store or RedisVectorStore(redis_url=config.REDIS_VECTOR_URL)
    retriever = HybridRetriever(store, collection_name=config.COLLECTION_NAME, vector_size=vector_size)
    ingestion = CorpusIngestion(
        retriever,
        embedder,
        tokenizer,
        chunk_options=ChunkOptions(
            max_tokens=config.CHUNK_MAX_TOKENS,
            min_tokens=config.CHUNK_MIN_TOKENS,
            overlap_tokens=config.CHUNK_OVERLAP_TOKENS,
        ),
        source_path=config.CORPUS_SOURCE_PATH,
    )

    logger.info(
        "services.built",
        provider=config.EMBED_PROVIDER,
        collection=config.COLLECTION_NAME,
        vector_size=vector_size,
    )

    return CorpusServices(
        tokenizer=tokenizer,
        provider=provider,
        embedder=embedder,
        store=store,
        retriever=retriever,
        ingestion=ingestion,
    )


def set_services(services: Optional[CorpusServices]) -> None:
    global _services
    _services = services


def get_services() -> CorpusServices:
    """FastAPI dependency returning the process-wide container"""
    global _services
    if _services is None:
        _services = build_services()
    return _services
