"""Index orchestration for citecrawl.

Turns crawled pages into a searchable corpus: chunk, embed, write the corpus
to the store in one transaction, then swap a fresh snapshot into the search
engine. ``reindex`` wraps a crawl and an index run in a crawl session.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from config.settings import Settings
from indexer.embeddings import EmbeddingGenerator
from indexer.sqlite_adapter import SQLiteAdapter
from indexer.vector_search import CorpusSnapshot, VectorSearchEngine
from observability.metrics import chunks_indexed

from .chunker import TextChunker
from .crawler import BFSCrawler, CancellationToken
from .models import CrawlSession, CrawlStatus, Page

logger = logging.getLogger(__name__)

NO_PAGES_ERROR = "no pages crawled"
CANCELLED_ERROR = "cancelled"


@dataclass
class IndexStats:
    chunks_created: int = 0
    embeddings_generated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'chunks_created': self.chunks_created,
            'embeddings_generated': self.embeddings_generated,
        }


@dataclass
class ReindexReport:
    """Outcome of one crawl-and-index session."""
    session: CrawlSession
    pages_indexed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    navigation_steps: int = 0
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.session.status == CrawlStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session': self.session.to_dict(),
            'pages_indexed': self.pages_indexed,
            'chunks_created': self.chunks_created,
            'embeddings_generated': self.embeddings_generated,
            'navigation_steps': self.navigation_steps,
            'duration_ms': self.duration_ms,
        }


class Indexer:
    """Coordinates the crawler, chunker, embedding generator, store and search engine."""

    def __init__(self,
                 crawler: BFSCrawler,
                 chunker: TextChunker,
                 embedder: EmbeddingGenerator,
                 store: SQLiteAdapter,
                 engine: VectorSearchEngine,
                 settings: Settings):
        self.crawler = crawler
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.engine = engine
        self.settings = settings

    async def load_snapshot(self) -> CorpusSnapshot:
        """Build a snapshot from the stored corpus and swap it into the engine."""
        snapshot = CorpusSnapshot(await self.store.load_chunks(), self.embedder.dimensions)
        self.engine.swap(snapshot)
        return snapshot

    async def index(self, pages: Sequence[Page]) -> IndexStats:
        """Replace the stored corpus with ``pages``.

        Embeddings are generated before the store is touched, so an
        ``EmbeddingServiceError`` leaves the previous corpus stored and
        queryable.
        """
        chunked_pages = self.chunker.chunk_pages(pages)
        chunk_stats = self.chunker.chunking_stats(chunked_pages)
        logger.info(f"Chunked {chunk_stats['total_pages']} pages into {chunk_stats['total_chunks']} chunks "
                    f"(~{chunk_stats['total_tokens']} tokens, "
                    f"{chunk_stats['avg_chunks_per_page']:.1f} chunks/page)")

        texts = [chunk.text for chunked in chunked_pages for chunk in chunked.chunks]
        embeddings: List = await self.embedder.embed_batched(texts) if texts else []

        corpus = []
        position = 0
        for chunked in chunked_pages:
            pairs = list(zip(chunked.chunks, embeddings[position:position + len(chunked.chunks)]))
            position += len(chunked.chunks)
            corpus.append((chunked.page, pairs))

        chunk_count = await self.store.replace_corpus(corpus)
        chunks_indexed.inc(chunk_count)
        await self.load_snapshot()

        stats = IndexStats(
            chunks_created=chunk_count,
            embeddings_generated=sum(1 for e in embeddings if e is not None),
        )
        logger.info(f"Indexed {stats.chunks_created} chunks with {stats.embeddings_generated} embeddings")
        return stats

    async def reindex(self,
                      seed_url: Optional[str] = None,
                      max_pages: Optional[int] = None,
                      cancel_token: Optional[CancellationToken] = None) -> ReindexReport:
        """Crawl, then rebuild the corpus from the crawled pages.

        The session fails without touching the corpus when the crawl is
        cancelled or yields no pages. An embedding or store failure, or
        cancellation of the calling task, marks the session failed and is
        re-raised.
        """
        start_time = time.perf_counter()
        session = CrawlSession()
        await self.store.create_session(session)
        session.transition(CrawlStatus.IN_PROGRESS)
        await self.store.update_session(session)
        report = ReindexReport(session=session)

        logger.info(f"Starting reindex session {session.id}")

        try:
            result = await self.crawler.crawl(seed_url=seed_url, max_pages=max_pages,
                                              cancel_token=cancel_token)
            await self.store.save_navigation_steps(session.id, result.steps)
            session.pages_scraped = len(result.pages)
            report.navigation_steps = len(result.steps)

            stats = None
            if result.pages and not result.cancelled:
                stats = await self.index(result.pages)
        except asyncio.CancelledError:
            await asyncio.shield(self._fail(session, CANCELLED_ERROR, report, start_time))
            raise
        except Exception as e:
            await self._fail(session, str(e) or type(e).__name__, report, start_time)
            raise

        if result.cancelled:
            await self._fail(session, CANCELLED_ERROR, report, start_time)
            return report

        if stats is None:
            await self._fail(session, NO_PAGES_ERROR, report, start_time)
            return report

        report.pages_indexed = len(result.pages)
        report.chunks_created = stats.chunks_created
        report.embeddings_generated = stats.embeddings_generated

        session.transition(CrawlStatus.COMPLETED)
        await self.store.update_session(session)
        report.duration_ms = int((time.perf_counter() - start_time) * 1000)

        await self.store.log_action('reindex', 'success',
                                    f"Indexed {report.pages_indexed} pages",
                                    metadata=report.to_dict())
        logger.info(f"Reindex session {session.id} completed: {report.pages_indexed} pages, "
                    f"{report.chunks_created} chunks in {report.duration_ms}ms")
        return report

    async def _fail(self, session: CrawlSession, error: str, report: ReindexReport, start_time: float):
        session.transition(CrawlStatus.FAILED, error=error)
        await self.store.update_session(session)
        report.duration_ms = int((time.perf_counter() - start_time) * 1000)

        await self.store.log_action('reindex', 'error', error, metadata=report.to_dict())
        logger.error(f"Reindex session {session.id} failed: {error}")
