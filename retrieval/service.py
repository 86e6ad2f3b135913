"""Caller-facing facade over the crawl, index and query paths."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from config.settings import Settings, load_settings
from indexer.embeddings import EmbeddingGenerator
from indexer.sqlite_adapter import SQLiteAdapter
from indexer.vector_search import SearchResult, VectorSearchEngine, confidence
from observability.logging import setup_logging
from pipelines.chunker import TextChunker
from pipelines.crawler import BFSCrawler, CancellationToken
from pipelines.extractor import ContentExtractor
from pipelines.indexer import Indexer, IndexStats, ReindexReport
from pipelines.models import CrawlResult, Page
from services.llm import TextService

from .response_generator import GeneratedResponse, ResponseGenerator, validate_response_citations

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    pass


class RetrievalService:
    """Crawl, index, search and answer against one store.

    Use as an async context manager, or call ``initialize``/``close``.
    """

    def __init__(self,
                 settings: Settings,
                 store: SQLiteAdapter,
                 crawler: BFSCrawler,
                 chunker: TextChunker,
                 embedder: EmbeddingGenerator,
                 engine: VectorSearchEngine,
                 response_generator: ResponseGenerator):
        self.settings = settings
        self.store = store
        self.crawler = crawler
        self.embedder = embedder
        self.engine = engine
        self.response_generator = response_generator
        self.indexer = Indexer(crawler, chunker, embedder, store, engine, settings)

    async def initialize(self):
        await self.store.initialize()
        await self.load_corpus()

    async def close(self):
        await self.store.close()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def load_corpus(self) -> int:
        """Load the stored corpus into the search engine; returns the searchable chunk count."""
        snapshot = await self.indexer.load_snapshot()
        logger.info(f"Loaded {len(snapshot)} searchable chunks")
        return len(snapshot)

    # Crawl and index

    async def crawl(self, seed_url: Optional[str] = None, max_pages: Optional[int] = None,
                    cancel_token: Optional[CancellationToken] = None) -> CrawlResult:
        return await self.crawler.crawl(seed_url=seed_url, max_pages=max_pages, cancel_token=cancel_token)

    async def index(self, pages: Sequence[Page]) -> IndexStats:
        return await self.indexer.index(pages)

    async def reindex(self, seed_url: Optional[str] = None, max_pages: Optional[int] = None,
                      cancel_token: Optional[CancellationToken] = None) -> ReindexReport:
        return await self.indexer.reindex(seed_url=seed_url, max_pages=max_pages, cancel_token=cancel_token)

    # Query

    async def search(self, query: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """Rank the corpus against ``query``.

        Raises:
            ValueError: If ``query`` is blank
            EmbeddingServiceError: If the query cannot be embedded
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        top_k = self.settings.search.top_k if top_k is None else top_k
        query_vector = await self.embedder.embed_query(query)
        return self.engine.search(query_vector, top_k)

    @staticmethod
    def confidence(results: Sequence[SearchResult]) -> float:
        return confidence(results)

    async def answer(self, query: str, results: Sequence[SearchResult], confidence: float) -> GeneratedResponse:
        return await self.response_generator.generate(query, results, confidence)

    async def chat(self, query: str) -> GeneratedResponse:
        """Search, answer and record the interaction in the admin log."""
        logger.info(f"Chat request: {query[:100]}")
        try:
            results = await self.search(query)
            score = confidence(results)
            response = await self.answer(query, results, score)
        except Exception as e:
            await self.store.log_action('chat', 'error', str(e) or type(e).__name__,
                                        metadata={'error_type': type(e).__name__})
            raise

        if not validate_response_citations(response):
            logger.warning("Response may be missing proper citations")

        await self.store.log_action('chat', 'success', f'Chat query: "{query[:100]}"', metadata={
            'query_length': len(query),
            'results_found': len(results),
            'confidence': score,
            'citations_count': len(response.citations),
        })
        return response

    # Admin views

    async def status(self) -> Dict[str, Any]:
        """Index totals, per-category chunk counts and the last reindex outcome."""
        last_reindex = await self.store.last_action('reindex')
        return {
            'last_reindex_at': last_reindex['created_at'].isoformat() if last_reindex else None,
            'last_reindex_status': last_reindex['status'] if last_reindex else None,
            'total_pages': await self.store.count_pages(),
            'total_chunks': await self.store.count_chunks(),
            'total_embeddings': await self.store.count_chunks(with_embedding=True),
            'searchable_chunks': len(self.engine.snapshot),
            'categories': await self.store.category_counts(),
        }

    async def crawl_sessions(self, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.store.list_sessions(limit=limit)

    async def navigation(self, session_id: int) -> Dict[str, Any]:
        """A crawl session with its navigation steps in visit order.

        Raises:
            SessionNotFoundError: If no such session exists
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Crawl session {session_id} not found")

        steps = await self.store.get_navigation_steps(session_id)
        return {
            'session': session.to_dict(),
            'navigation_steps': [step.to_dict() for step in steps],
        }


def build_service(settings: Optional[Settings] = None) -> RetrievalService:
    """Wire the default OpenAI, Playwright and SQLite collaborators."""
    settings = settings or load_settings()
    setup_logging(settings.log_level, use_json=settings.log_json)

    text_service = TextService(api_key=settings.openai_api_key)
    extractor = ContentExtractor(text_service, settings.extraction)
    embedder = EmbeddingGenerator(settings.embedding, api_key=settings.openai_api_key)

    return RetrievalService(
        settings=settings,
        store=SQLiteAdapter(settings.sqlite_path),
        crawler=BFSCrawler(extractor, settings.crawler),
        chunker=TextChunker(settings.chunking),
        embedder=embedder,
        engine=VectorSearchEngine(settings.embedding.dimensions,
                                  fallback_sample_size=settings.search.fallback_sample_size),
        response_generator=ResponseGenerator(text_service, settings.answer),
    )
