"""Cosine-similarity search over an immutable corpus snapshot.

A re-index builds a new ``CorpusSnapshot`` and swaps it into the engine in
one reference assignment; a query reads the reference once and scans that
snapshot only.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from observability.metrics import degenerate_searches, search_confidence, search_duration

from .embeddings import validate_embedding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedChunk:
    """A stored chunk as loaded for search."""
    chunk_id: int
    page_id: int
    text: str
    category: str
    source_url: str
    page_title: str
    embedding: Optional[np.ndarray] = None


@dataclass(frozen=True)
class SearchResult:
    chunk_id: int
    text: str
    similarity: float
    source_url: str
    category: str
    page_title: str

    def to_dict(self):
        return {
            'chunk_id': self.chunk_id,
            'text': self.text,
            'similarity': self.similarity,
            'source_url': self.source_url,
            'category': self.category,
            'page_title': self.page_title,
        }


class CorpusSnapshot:
    """Read-only view of the indexed chunks and their unit-normalized vectors.

    Chunks without a valid embedding are kept out of the matrix; they make no
    similarity contribution.
    """

    def __init__(self, chunks: Iterable[IndexedChunk], dimensions: int):
        self.dimensions = dimensions
        entries = []
        vectors = []
        skipped = 0

        for chunk in chunks:
            if chunk.embedding is None or not validate_embedding(chunk.embedding, dimensions):
                skipped += 1
                continue
            entries.append(chunk)
            vectors.append(np.asarray(chunk.embedding, dtype=np.float64))

        if vectors:
            matrix = np.vstack(vectors)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            matrix = matrix / norms
        else:
            matrix = np.zeros((0, dimensions), dtype=np.float64)
        matrix.setflags(write=False)

        self.entries: Tuple[IndexedChunk, ...] = tuple(entries)
        self.matrix = matrix
        self.skipped = skipped

        if skipped:
            logger.warning(f"{skipped} chunks without a valid embedding left out of the snapshot")

    @classmethod
    def empty(cls, dimensions: int) -> 'CorpusSnapshot':
        return cls([], dimensions)

    def __len__(self) -> int:
        return len(self.entries)


def confidence(results: Sequence[SearchResult]) -> float:
    """Mean similarity of a result set; 0.0 for an empty set."""
    if not results:
        return 0.0
    return float(sum(r.similarity for r in results) / len(results))


class VectorSearchEngine:
    """Ranks snapshot chunks against a query vector."""

    def __init__(self, dimensions: int, fallback_sample_size: int = 5,
                 snapshot: Optional[CorpusSnapshot] = None):
        self.dimensions = dimensions
        self.fallback_sample_size = fallback_sample_size
        self._snapshot = snapshot or CorpusSnapshot.empty(dimensions)
        self._swap_lock = threading.Lock()

    @property
    def snapshot(self) -> CorpusSnapshot:
        return self._snapshot

    def swap(self, snapshot: CorpusSnapshot) -> CorpusSnapshot:
        """Install ``snapshot``; returns the one it replaced."""
        if snapshot.dimensions != self.dimensions:
            raise ValueError(f"Snapshot has {snapshot.dimensions} dimensions, engine expects {self.dimensions}")
        with self._swap_lock:
            previous, self._snapshot = self._snapshot, snapshot
        logger.info(f"Swapped in corpus snapshot with {len(snapshot)} chunks")
        return previous

    def search(self, query_vector: np.ndarray, top_k: int = 5) -> List[SearchResult]:
        """Top ``top_k`` chunks by descending cosine similarity.

        When nothing matches (no candidates, or every top similarity is
        exactly zero) a bounded sample of the corpus is returned with
        similarity 0.0, so the set's confidence is 0.0.
        """
        if top_k < 1:
            return []

        snapshot = self._snapshot
        start_time = time.perf_counter()

        if not validate_embedding(query_vector, self.dimensions):
            raise ValueError("Query vector has the wrong dimensionality or non-finite values")

        results = self._rank(snapshot, np.asarray(query_vector, dtype=np.float64), top_k)

        if not results or all(r.similarity == 0.0 for r in results):
            results = self._degenerate_fallback(snapshot, top_k)

        search_duration.observe(time.perf_counter() - start_time)
        search_confidence.observe(confidence(results))

        if results:
            logger.debug("Top similarities: " + ", ".join(f"{r.similarity:.3f}" for r in results))
        return results

    def _rank(self, snapshot: CorpusSnapshot, query: np.ndarray, top_k: int) -> List[SearchResult]:
        if len(snapshot) == 0:
            return []

        norm = np.linalg.norm(query)
        if norm == 0:
            similarities = np.zeros(len(snapshot))
        else:
            similarities = np.clip(snapshot.matrix @ (query / norm), -1.0, 1.0)

        order = np.argsort(-similarities, kind='stable')[:top_k]
        return [self._result(snapshot.entries[i], float(similarities[i])) for i in order]

    def _degenerate_fallback(self, snapshot: CorpusSnapshot, top_k: int) -> List[SearchResult]:
        degenerate_searches.inc()
        size = min(top_k, self.fallback_sample_size, len(snapshot))
        logger.info(f"No semantic match; returning {size} fallback chunks with confidence 0")
        return [self._result(chunk, 0.0) for chunk in snapshot.entries[:size]]

    @staticmethod
    def _result(chunk: IndexedChunk, similarity: float) -> SearchResult:
        return SearchResult(
            chunk_id=chunk.chunk_id,
            text=chunk.text,
            similarity=similarity,
            source_url=chunk.source_url,
            category=chunk.category,
            page_title=chunk.page_title,
        )
