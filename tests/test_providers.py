"""
Tests for embedding providers with mocked clients
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from sebi_corpus.models.exceptions import ConfigurationException, EmbeddingProviderException
from sebi_corpus.rag.providers import LazyEmbeddingProvider, OpenAIEmbeddingProvider, SentenceTransformerProvider

from conftest import FakeProvider


def embeddings_response(vectors):
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=vector) for vector in vectors],
        usage=SimpleNamespace(total_tokens=7),
    )


def test_openai_requires_api_key():
    with pytest.raises(ConfigurationException) as exc_info:
        OpenAIEmbeddingProvider(api_key="")

    assert exc_info.value.context["setting"] == "OPENAI_API_KEY"


def test_openai_dimension_follows_model():
    assert OpenAIEmbeddingProvider(api_key="sk-test").get_dimension() == 3072
    assert OpenAIEmbeddingProvider(api_key="sk-test", model="text-embedding-3-small").get_dimension() == 1536


async def test_openai_embed_returns_vectors_in_order():
    provider = OpenAIEmbeddingProvider(api_key="sk-test")
    create = AsyncMock(return_value=embeddings_response([[0.1, 0.2], [0.3, 0.4]]))
    provider._client.embeddings.create = create

    vectors = await provider.embed(["first", "second"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    create.assert_awaited_once_with(input=["first", "second"], model="text-embedding-3-large")


async def test_openai_empty_input_skips_api():
    provider = OpenAIEmbeddingProvider(api_key="sk-test")
    provider._client.embeddings.create = AsyncMock()

    assert await provider.embed([]) == []
    provider._client.embeddings.create.assert_not_awaited()


async def test_openai_api_error_is_wrapped():
    provider = OpenAIEmbeddingProvider(api_key="sk-test")
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    provider._client.embeddings.create = AsyncMock(side_effect=openai.APIError("boom", request=request, body=None))

    with pytest.raises(EmbeddingProviderException) as exc_info:
        await provider.embed(["text"])

    assert exc_info.value.status_code == 502
    assert exc_info.value.context["provider"] == "openai_embedding"


async def test_sentence_transformer_encodes_off_loop():
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = 384
    model.encode.return_value = [SimpleNamespace(tolist=lambda: [0.5, 0.5])]

    with patch("sebi_corpus.rag.providers.SentenceTransformer", return_value=model) as factory:
        provider = SentenceTransformerProvider(model_name="thenlper/gte-small")

    vectors = await provider.embed(["hello"])

    factory.assert_called_once_with("thenlper/gte-small")
    assert vectors == [[0.5, 0.5]]
    assert provider.get_dimension() == 384
    assert model.encode.call_args.args[0] == ["hello"]


async def test_sentence_transformer_failure_is_wrapped():
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = 384
    model.encode.side_effect = RuntimeError("CUDA out of memory")

    with patch("sebi_corpus.rag.providers.SentenceTransformer", return_value=model):
        provider = SentenceTransformerProvider()

    with pytest.raises(EmbeddingProviderException):
        await provider.embed(["hello"])


async def test_lazy_provider_builds_on_first_embed():
    built = []

    def factory():
        built.append(True)
        return FakeProvider()

    provider = LazyEmbeddingProvider(factory, name="openai")
    assert not provider.loaded
    assert built == []

    await provider.embed(["first"])
    await provider.embed(["second"])

    assert provider.loaded
    assert built == [True]
    assert provider.name == "fake"
    assert provider.get_dimension() == 8


def test_lazy_provider_surfaces_factory_error():
    provider = LazyEmbeddingProvider(lambda: OpenAIEmbeddingProvider(api_key=""))

    with pytest.raises(ConfigurationException):
        provider.get_dimension()

    assert not provider.loaded
