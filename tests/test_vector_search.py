import numpy as np
import pytest

from indexer.vector_search import (
    CorpusSnapshot,
    IndexedChunk,
    SearchResult,
    VectorSearchEngine,
    confidence,
)

DIM = 3


def chunk(chunk_id, vector, text=None, category='medical'):
    return IndexedChunk(
        chunk_id=chunk_id,
        page_id=1,
        text=text or f'chunk {chunk_id}',
        category=category,
        source_url=f'https://example.com/benefits/{category}',
        page_title=f'Page {chunk_id}',
        embedding=None if vector is None else np.array(vector, dtype=np.float32),
    )


def result(similarity, chunk_id=1):
    return SearchResult(chunk_id=chunk_id, text='t', similarity=similarity,
                        source_url='u', category='c', page_title='p')


@pytest.fixture
def engine():
    snapshot = CorpusSnapshot([
        chunk(1, [1.0, 0.0, 0.0]),
        chunk(2, [0.0, 1.0, 0.0]),
        chunk(3, [0.7, 0.7, 0.0]),
        chunk(4, [-1.0, 0.0, 0.0]),
        chunk(5, [0.9, 0.1, 0.0]),
    ], DIM)
    return VectorSearchEngine(DIM, fallback_sample_size=2, snapshot=snapshot)


class TestSearch:
    def test_results_sorted_and_bounded(self, engine):
        results = engine.search(np.array([1.0, 0.0, 0.0]), top_k=3)

        assert len(results) == 3
        assert [r.chunk_id for r in results] == [1, 5, 3]
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)
        assert results[0].similarity == pytest.approx(1.0)

    def test_similarities_in_range(self, engine):
        results = engine.search(np.array([0.3, -0.8, 0.1]), top_k=10)
        assert len(results) == 5
        assert all(-1.0 <= r.similarity <= 1.0 and np.isfinite(r.similarity) for r in results)

    def test_ties_keep_corpus_order(self):
        snapshot = CorpusSnapshot([chunk(i, [1.0, 1.0, 0.0]) for i in range(1, 5)], DIM)
        engine = VectorSearchEngine(DIM, snapshot=snapshot)

        results = engine.search(np.array([1.0, 0.0, 0.0]), top_k=3)

        assert [r.chunk_id for r in results] == [1, 2, 3]

    def test_result_metadata(self, engine):
        [top] = engine.search(np.array([0.0, 1.0, 0.0]), top_k=1)
        assert top.chunk_id == 2
        assert top.page_title == 'Page 2'
        assert top.source_url == 'https://example.com/benefits/medical'
        assert top.to_dict()['similarity'] == pytest.approx(1.0)

    def test_chunks_without_embeddings_excluded(self):
        snapshot = CorpusSnapshot([
            chunk(1, [1.0, 0.0, 0.0]),
            chunk(2, None),
            chunk(3, [1.0, 0.0]),
        ], DIM)

        assert len(snapshot) == 1
        assert snapshot.skipped == 2
        assert not snapshot.matrix.flags.writeable

    def test_query_dimension_mismatch(self, engine):
        with pytest.raises(ValueError):
            engine.search(np.array([1.0, 0.0]), top_k=3)

    def test_non_positive_top_k(self, engine):
        assert engine.search(np.array([1.0, 0.0, 0.0]), top_k=0) == []


class TestDegenerateFallback:
    def test_all_zero_similarity_returns_sample_with_zero_confidence(self, engine):
        results = engine.search(np.array([0.0, 0.0, 1.0]), top_k=5)

        assert len(results) == 2
        assert [r.chunk_id for r in results] == [1, 2]
        assert all(r.similarity == 0.0 for r in results)
        assert confidence(results) == 0.0

    def test_zero_query_vector(self, engine):
        results = engine.search(np.zeros(DIM), top_k=5)
        assert results
        assert confidence(results) == 0.0

    def test_empty_corpus_returns_nothing(self):
        engine = VectorSearchEngine(DIM)
        assert engine.search(np.array([1.0, 0.0, 0.0]), top_k=5) == []

    def test_fallback_bounded_by_top_k(self, engine):
        results = engine.search(np.array([0.0, 0.0, 1.0]), top_k=1)
        assert len(results) == 1


class TestSnapshotSwap:
    def test_swap_replaces_corpus(self, engine):
        old = engine.snapshot
        new = CorpusSnapshot([chunk(9, [0.0, 0.0, 1.0])], DIM)

        previous = engine.swap(new)

        assert previous is old
        assert engine.snapshot is new
        [top] = engine.search(np.array([0.0, 0.0, 1.0]), top_k=1)
        assert top.chunk_id == 9

    def test_swap_rejects_other_dimensions(self, engine):
        with pytest.raises(ValueError):
            engine.swap(CorpusSnapshot([], 8))


class TestConfidence:
    def test_empty(self):
        assert confidence([]) == 0.0

    def test_mean_similarity(self):
        assert confidence([result(0.9), result(0.5), result(0.1)]) == pytest.approx(0.5)
