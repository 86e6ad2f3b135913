"""Prometheus metrics for the crawl, index and query paths."""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

# Dedicated registry so embedding applications can expose it on their own terms
citecrawl_registry = CollectorRegistry()

# Crawl metrics
crawl_pages = Counter(
    'citecrawl_crawl_pages_total',
    'Frontier pops by outcome',
    ['outcome'],
    registry=citecrawl_registry
)

crawl_retries = Counter(
    'citecrawl_crawl_retries_total',
    'Fetch+extract retries',
    registry=citecrawl_registry
)

# Indexing metrics
chunks_indexed = Counter(
    'citecrawl_chunks_indexed_total',
    'Chunks written to the store',
    registry=citecrawl_registry
)

embedding_requests = Counter(
    'citecrawl_embedding_requests_total',
    'Embedding service requests',
    ['status'],
    registry=citecrawl_registry
)

invalid_embeddings = Counter(
    'citecrawl_invalid_embeddings_total',
    'Vectors rejected by dimensionality or finiteness checks',
    registry=citecrawl_registry
)

# Query metrics
search_duration = Histogram(
    'citecrawl_search_duration_seconds',
    'Vector search duration in seconds',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=citecrawl_registry
)

search_confidence = Histogram(
    'citecrawl_search_confidence',
    'Confidence of returned search result sets',
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=citecrawl_registry
)

degenerate_searches = Counter(
    'citecrawl_degenerate_searches_total',
    'Searches answered by the degenerate fallback',
    registry=citecrawl_registry
)

answers = Counter(
    'citecrawl_answers_total',
    'Answer generation outcomes',
    ['outcome'],
    registry=citecrawl_registry
)


def get_metrics_text() -> bytes:
    """Render the registry in the Prometheus text exposition format."""
    return generate_latest(citecrawl_registry)
