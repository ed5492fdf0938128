"""Chunking, embedding and hybrid retrieval for the SEBI regulatory corpus"""

from .tokenizer import Tokenizer
from .sections import Section, extract_sections, flatten_sections
from .splitter import ChunkOptions, HierarchicalChunker, chunk_document
from .providers import (
    EmbeddingProvider,
    LazyEmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
)
from .rate_limiter import SlidingWindowRateLimiter
from .embedder import Embedder
from .store import RedisVectorStore, VectorStoreService
from .retriever import HybridRetriever, reciprocal_rank_fusion
from .pdf_parser import parse_circular_pdf
from .ingest import CorpusIngestion

__all__ = [
    "Tokenizer",
    "Section",
    "extract_sections",
    "flatten_sections",
    "ChunkOptions",
    "HierarchicalChunker",
    "chunk_document",
    "EmbeddingProvider",
    "LazyEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerProvider",
    "SlidingWindowRateLimiter",
    "Embedder",
    "RedisVectorStore",
    "VectorStoreService",
    "HybridRetriever",
    "reciprocal_rank_fusion",
    "parse_circular_pdf",
    "CorpusIngestion",
]
