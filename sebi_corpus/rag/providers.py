"""
Embedding providers: remote OpenAI-compatible API and local sentence-transformers
The Embedder wraps either one with caching, batching, rate limiting and retry
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import openai
from sentence_transformers import SentenceTransformer
import structlog

from sebi_corpus.models.exceptions import ConfigurationException, EmbeddingProviderException

logger = structlog.get_logger()

DEFAULT_OPENAI_MODEL = "text-embedding-3-large"
DEFAULT_LOCAL_MODEL = "thenlper/gte-small"

# Known embedding model dimensions.
MODEL_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
    "thenlper/gte-small": 384,
}


class EmbeddingProvider(ABC):
    """One raw call to an embedding backend; no caching or retry"""

    name: str = "embedding"

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Return one vector per input text, in input order"""

    @abstractmethod
    def get_dimension(self) -> int:
        """Vector size the backend is expected to return"""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by an OpenAI-compatible embeddings API.
    Uses text-embedding-3-large (3072 dims) by default.
    """

    name = "openai_embedding"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
    ):
        """
        Initialize provider.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            base_url: Optional OpenAI-compatible endpoint
        """
        if not api_key:
            raise ConfigurationException(
                message="OpenAI API key is required for embeddings",
                setting="OPENAI_API_KEY",
            )

        client_kwargs = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = model
        self._dimension = MODEL_DIMENSIONS.get(model, 3072)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.APIError as exc:
            raise EmbeddingProviderException(
                message=f"OpenAI embeddings API error: {exc}",
                provider=self.name,
                context={"model": self._model, "batch_size": len(texts)},
            ) from exc

        logger.debug(
            "provider.openai_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )

        return [item.embedding for item in response.data]

    def get_dimension(self) -> int:
        return self._dimension


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Generate embeddings locally using sentence-transformers.
    Uses thenlper/gte-small (384-dim, CPU-friendly) by default.
    """

    name = "sentence_transformer"

    def __init__(self, model_name: str = DEFAULT_LOCAL_MODEL, batch_size: int = 32):
        """
        Load the model (downloads on first run).

        Args:
            model_name: Hugging Face model id
            batch_size: Encode batch size
        """
        self.model_name = model_name
        self.batch_size = batch_size

        logger.info("provider.local_loading", model=self.model_name)
        self.model = SentenceTransformer(self.model_name)
        self._dimension = self.model.get_sentence_embedding_dimension() or MODEL_DIMENSIONS.get(model_name, 384)
        logger.info("provider.local_loaded", model=self.model_name, embed_dim=self._dimension)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        # encode is CPU-bound; keep it off the event loop
        try:
            embeddings = await asyncio.to_thread(
                self.model.encode,
                texts,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except (RuntimeError, ValueError) as exc:
            raise EmbeddingProviderException(
                message=f"Local embedding failed: {exc}",
                provider=self.name,
                context={"model": self.model_name},
            ) from exc

        return [vector.tolist() for vector in embeddings]

    def get_dimension(self) -> int:
        return self._dimension


class LazyEmbeddingProvider(EmbeddingProvider):
    """
    Defers building the real provider until it is first needed.
    Keyword-only callers never construct a client or load a model.
    """

    def __init__(self, factory: Callable[[], EmbeddingProvider], name: str = "embedding"):
        self._factory = factory
        self._provider: Optional[EmbeddingProvider] = None
        self.name = name

    @property
    def loaded(self) -> bool:
        return self._provider is not None

    def resolve(self) -> EmbeddingProvider:
        if self._provider is None:
            self._provider = self._factory()
            self.name = self._provider.name
        return self._provider

    async def embed(self, texts: List[str]) -> List[List[float]]:
        return await self.resolve().embed(texts)

    def get_dimension(self) -> int:
        return self.resolve().get_dimension()
