# citecrawl Embeddings Module
# Batches chunk and query texts to the embedding service and validates the vectors

import asyncio
import logging
from typing import List, Optional, Sequence

import numpy as np
import openai
from openai import AsyncOpenAI

from config.settings import EmbeddingSettings
from observability.metrics import embedding_requests, invalid_embeddings

logger = logging.getLogger(__name__)

Vector = np.ndarray


class EmbeddingServiceError(Exception):
    """Raised when the embedding service fails; fatal for the enclosing index run."""
    pass


def validate_embedding(embedding, dimensions: int) -> bool:
    """True when ``embedding`` has ``dimensions`` finite numeric entries."""
    try:
        array = np.asarray(embedding, dtype=np.float64)
    except (TypeError, ValueError):
        return False

    if array.ndim != 1 or array.shape[0] != dimensions:
        return False

    return bool(np.all(np.isfinite(array)))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity clipped to [-1, 1]; 0.0 when either vector is zero."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError("Embeddings must have the same dimension")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def serialize_embedding(embedding: np.ndarray) -> bytes:
    """Serialize embedding for database storage"""
    return np.asarray(embedding, dtype=np.float32).tobytes()  # float32 to save space


def deserialize_embedding(data: Optional[bytes]) -> Optional[np.ndarray]:
    """Deserialize embedding from database"""
    if not data:
        return None
    return np.frombuffer(data, dtype=np.float32).copy()


class EmbeddingGenerator:
    """Generates order-preserving, validated embeddings through the OpenAI API."""

    def __init__(self, settings: EmbeddingSettings,
                 client: Optional[AsyncOpenAI] = None,
                 api_key: Optional[str] = None):
        """
        Initialize embedding generator

        Args:
            settings: Model, dimensionality and batching configuration
            client: Async OpenAI client (created lazily when omitted)
            api_key: API key for the lazily created client
        """
        self.settings = settings
        self._client = client
        self._api_key = api_key

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    @property
    def dimensions(self) -> int:
        return self.settings.dimensions

    def _validated(self, raw) -> Optional[Vector]:
        if not validate_embedding(raw, self.settings.dimensions):
            invalid_embeddings.inc()
            length = len(raw) if hasattr(raw, '__len__') else 'unknown'
            logger.warning(f"Discarding embedding with {length} dimensions "
                           f"(expected {self.settings.dimensions}) or non-finite values")
            return None
        return np.asarray(raw, dtype=np.float32)

    async def embed(self, texts: Sequence[str]) -> List[Optional[Vector]]:
        """Embed ``texts`` in one request.

        The service does not guarantee response order, so items are re-sorted
        by their index. Vectors failing validation come back as ``None``.

        Raises:
            ValueError: If ``texts`` is empty
            EmbeddingServiceError: On service failure or a short response
        """
        if not texts:
            raise ValueError("No texts provided for embedding")

        logger.debug(f"Generating embeddings for {len(texts)} text(s)")
        try:
            response = await self.client.embeddings.create(
                model=self.settings.model,
                input=list(texts),
                dimensions=self.settings.dimensions,
            )
        except openai.OpenAIError as e:
            embedding_requests.labels(status='error').inc()
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingServiceError(str(e)) from e

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts) or [item.index for item in items] != list(range(len(texts))):
            embedding_requests.labels(status='error').inc()
            raise EmbeddingServiceError(
                f"Embedding service returned {len(items)} vectors for {len(texts)} texts"
            )

        embedding_requests.labels(status='success').inc()
        return [self._validated(item.embedding) for item in items]

    async def embed_batched(self, texts: Sequence[str], batch_size: Optional[int] = None) -> List[Optional[Vector]]:
        """Embed one corpus in sequential batches with a delay between them.

        Callers pass a single logical corpus per call; batches never mix texts
        from different calls.
        """
        batch_size = batch_size or self.settings.batch_size
        if batch_size < 1:
            raise ValueError("batch_size must be positive")

        embeddings: List[Optional[Vector]] = []
        total_batches = (len(texts) + batch_size - 1) // batch_size

        for batch_number, start in enumerate(range(0, len(texts), batch_size), start=1):
            batch = texts[start:start + batch_size]
            logger.info(f"Processing embedding batch {batch_number}/{total_batches}")
            embeddings.extend(await self.embed(batch))

            if start + batch_size < len(texts) and self.settings.batch_delay > 0:
                await asyncio.sleep(self.settings.batch_delay)

        return embeddings

    async def embed_query(self, text: str) -> Vector:
        """Embed a search query.

        Raises:
            EmbeddingServiceError: If the service fails or returns an invalid vector
        """
        [embedding] = await self.embed([text])
        if embedding is None:
            raise EmbeddingServiceError("Invalid query embedding generated")
        return embedding
