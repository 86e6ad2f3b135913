"""Embedding, search and storage for citecrawl."""

from .embeddings import (
    EmbeddingGenerator,
    EmbeddingServiceError,
    cosine_similarity,
    validate_embedding,
)
from .vector_search import (
    CorpusSnapshot,
    IndexedChunk,
    SearchResult,
    VectorSearchEngine,
    confidence,
)
from .sqlite_adapter import SQLiteAdapter

__all__ = [
    'EmbeddingGenerator',
    'EmbeddingServiceError',
    'cosine_similarity',
    'validate_embedding',
    'CorpusSnapshot',
    'IndexedChunk',
    'SearchResult',
    'VectorSearchEngine',
    'confidence',
    'SQLiteAdapter',
]
