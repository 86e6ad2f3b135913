from unittest.mock import patch

import pytest
import pytest_asyncio

from conftest import FakeExtractor, FakeRenderer, FakeTextService, make_page, words
from config.settings import ChunkingSettings
from indexer.embeddings import EmbeddingGenerator
from indexer.sqlite_adapter import SQLiteAdapter
from indexer.vector_search import VectorSearchEngine
from pipelines.crawler import BFSCrawler
from pipelines.chunker import TextChunker
from retrieval.response_generator import LOW_CONFIDENCE_MESSAGE, AnswerGenerationError, ResponseGenerator
from retrieval.service import RetrievalService, SessionNotFoundError, build_service
from services.llm import TextServiceError

SEED = 'https://example.com/benefits'
DENTAL = 'https://example.com/benefits/dental'
DENTAL_TEXT = words(120, prefix='dental')


@pytest.fixture
def text_service():
    return FakeTextService(['Dental cleanings are covered twice a year [1].'])


@pytest_asyncio.fixture
async def service(settings, embedding_client, embeddings_api, text_service):
    renderer = FakeRenderer({
        SEED: make_page(SEED, words(120, prefix='home'), title='Benefits', links=[('/benefits/dental', 'Dental')]),
        DENTAL: make_page(DENTAL, DENTAL_TEXT, title='Dental'),
    })
    embeddings_api.vectors = {
        DENTAL_TEXT: [0.0, 1.0, 0.0, 0.0],
        words(120, prefix='home'): [1.0, 0.0, 0.0, 0.0],
        'dental cleanings': [0.0, 1.0, 0.0, 0.0],
        'vacation policy': [0.0, 0.0, 0.0, 1.0],
    }

    retrieval = RetrievalService(
        settings=settings,
        store=SQLiteAdapter(settings.sqlite_path),
        crawler=BFSCrawler(FakeExtractor(), settings.crawler, renderer_factory=lambda: renderer),
        chunker=TextChunker(ChunkingSettings()),
        embedder=EmbeddingGenerator(settings.embedding, client=embedding_client),
        engine=VectorSearchEngine(settings.embedding.dimensions,
                                  fallback_sample_size=settings.search.fallback_sample_size),
        response_generator=ResponseGenerator(text_service, settings.answer),
    )
    async with retrieval:
        yield retrieval


class TestRetrievalService:
    @pytest.mark.asyncio
    async def test_reindex_then_search(self, service):
        report = await service.reindex()
        assert report.succeeded
        assert report.pages_indexed == 2

        results = await service.search('dental cleanings')

        assert results[0].source_url == DENTAL
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].category == 'dental'
        assert len(results) <= service.settings.search.top_k

    @pytest.mark.asyncio
    async def test_chat_answers_with_citations_and_logs(self, service, text_service):
        await service.reindex()

        response = await service.chat('dental cleanings')

        assert [c.number for c in response.citations] == [1]
        assert response.citations[0].url == DENTAL
        assert len(text_service.calls) == 1
        last = await service.store.last_action('chat')
        assert last['status'] == 'success'
        assert last['metadata']['citations_count'] == 1

    @pytest.mark.asyncio
    async def test_chat_without_match_refuses(self, service, text_service):
        await service.reindex()

        response = await service.chat('vacation policy')

        assert response.message == LOW_CONFIDENCE_MESSAGE
        assert response.citations == []
        assert text_service.calls == []

    @pytest.mark.asyncio
    async def test_chat_error_logged_and_raised(self, service, text_service):
        await service.reindex()
        text_service.replies = [TextServiceError('503')]

        with pytest.raises(AnswerGenerationError):
            await service.chat('dental cleanings')

        assert (await service.store.last_action('chat'))['status'] == 'error'

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, service):
        with pytest.raises(ValueError):
            await service.search('   ')

    @pytest.mark.asyncio
    async def test_status_and_sessions(self, service):
        report = await service.reindex()

        status = await service.status()
        assert status['total_pages'] == 2
        assert status['total_chunks'] == 2
        assert status['total_embeddings'] == 2
        assert status['searchable_chunks'] == 2
        assert status['last_reindex_status'] == 'success'
        assert {c['category'] for c in status['categories']} == {'general', 'dental'}

        sessions = await service.crawl_sessions()
        assert sessions[0]['id'] == report.session.id

        navigation = await service.navigation(report.session.id)
        assert [s['url'] for s in navigation['navigation_steps']] == [SEED, DENTAL]
        assert navigation['navigation_steps'][1]['depth'] == 1

        with pytest.raises(SessionNotFoundError):
            await service.navigation(12345)

    @pytest.mark.asyncio
    async def test_corpus_reloaded_on_startup(self, service, settings, embedding_client):
        await service.reindex()

        restarted = RetrievalService(
            settings=settings,
            store=SQLiteAdapter(settings.sqlite_path),
            crawler=service.crawler,
            chunker=TextChunker(ChunkingSettings()),
            embedder=EmbeddingGenerator(settings.embedding, client=embedding_client),
            engine=VectorSearchEngine(settings.embedding.dimensions),
            response_generator=service.response_generator,
        )
        async with restarted:
            assert len(restarted.engine.snapshot) == 2

    def test_confidence(self):
        assert RetrievalService.confidence([]) == 0.0


def test_build_service_wires_defaults(settings):
    with patch('retrieval.service.setup_logging') as setup_logging:
        service = build_service(settings)

    setup_logging.assert_called_once_with(settings.log_level, use_json=settings.log_json)

    assert isinstance(service.store, SQLiteAdapter)
    assert service.store.db_path == settings.sqlite_path
    assert service.engine.dimensions == settings.embedding.dimensions
    assert isinstance(service.crawler, BFSCrawler)
    assert service.indexer.store is service.store
