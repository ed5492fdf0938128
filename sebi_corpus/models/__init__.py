"""Models package - Custom exceptions and data models"""

from .exceptions import (
    CorpusAPIException,
    DocumentAcquisitionException,
    DocumentValidationException,
    EmbeddingProviderException,
    EmbeddingIncompleteException,
    VectorStoreException,
    ConfigurationException,
    InsufficientPermissionsException,
)
from .documents import (
    CATEGORY_KEYS,
    Chunk,
    CorpusStats,
    DirectoryIngestionSummary,
    Document,
    DocumentCategory,
    IngestionFailure,
    IngestionSummary,
    SearchFilters,
    SearchResult,
    make_chunk_id,
)

__all__ = [
    "CorpusAPIException",
    "DocumentAcquisitionException",
    "DocumentValidationException",
    "EmbeddingProviderException",
    "EmbeddingIncompleteException",
    "VectorStoreException",
    "ConfigurationException",
    "InsufficientPermissionsException",
    "CATEGORY_KEYS",
    "Chunk",
    "CorpusStats",
    "DirectoryIngestionSummary",
    "Document",
    "DocumentCategory",
    "IngestionFailure",
    "IngestionSummary",
    "SearchFilters",
    "SearchResult",
    "make_chunk_id",
]
