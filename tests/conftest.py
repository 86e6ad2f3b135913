"""Shared fixtures and fakes for the citecrawl test suite."""

import os
import sys
from types import SimpleNamespace
from typing import Dict, List, Optional

import numpy as np
import pytest

# Add the parent directory to the path so the top-level packages import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import (  # noqa: E402
    AnswerSettings,
    ChunkingSettings,
    CrawlerSettings,
    EmbeddingSettings,
    Settings,
)
from pipelines.browser import NavigationError, RenderedPage  # noqa: E402
from pipelines.extractor import ExtractedContent, ExtractionError  # noqa: E402

DIMENSIONS = 4


class FakeRenderer:
    """Serves canned pages; a URL mapped to a list yields one outcome per attempt."""

    def __init__(self, pages: Dict[str, object]):
        self.pages = pages
        self.calls: List[str] = []
        self.entered = False
        self.closed = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True
        return False

    async def render(self, url: str) -> RenderedPage:
        self.calls.append(url)
        outcome = self.pages.get(url)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if outcome is None:
            raise NavigationError(f"404 for {url}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeExtractor:
    """Returns the page HTML as content, or raises what ``failures`` maps the URL to."""

    def __init__(self, failures: Optional[Dict[str, object]] = None, on_extract=None):
        self.failures = failures or {}
        self.on_extract = on_extract
        self.calls: List[str] = []

    async def extract(self, html: str, url: str, fallback_title: Optional[str] = None) -> ExtractedContent:
        self.calls.append(url)
        if self.on_extract:
            self.on_extract(url)

        failure = self.failures.get(url)
        if isinstance(failure, list):
            failure = failure.pop(0) if failure else None
        if failure is not None:
            raise failure
        if not html:
            raise ExtractionError(f"No content for {url}")
        return ExtractedContent(title=fallback_title or 'Untitled', content=html)


class FakeTextService:
    """Records completions and answers with queued replies."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def complete(self, system_instruction, content, model, temperature=0.2,
                       max_tokens=None, json_response=False):
        self.calls.append({
            'system_instruction': system_instruction,
            'content': content,
            'model': model,
            'temperature': temperature,
            'max_tokens': max_tokens,
            'json_response': json_response,
        })
        reply = self.replies.pop(0) if len(self.replies) > 1 else (self.replies[0] if self.replies else '')
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeEmbeddingsAPI:
    """Stands in for ``AsyncOpenAI().embeddings``.

    Vectors are derived from the text so equal texts embed equally; set
    ``reverse`` to return items out of order or ``fail`` to raise.
    """

    def __init__(self, dimensions: int = DIMENSIONS, vectors: Optional[Dict[str, List[float]]] = None):
        self.dimensions = dimensions
        self.vectors = vectors or {}
        self.requests: List[List[str]] = []
        self.reverse = False
        self.fail: Optional[Exception] = None

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return self.vectors[text]
        rng = np.random.default_rng(abs(hash(text)) % (2 ** 32))
        return rng.random(self.dimensions).tolist()

    async def create(self, model, input, dimensions=None):
        self.requests.append(list(input))
        if self.fail is not None:
            raise self.fail
        data = [SimpleNamespace(index=i, embedding=self.vector_for(text)) for i, text in enumerate(input)]
        if self.reverse:
            data.reverse()
        return SimpleNamespace(data=data)


def make_page(url: str, html: str = '', title: str = '', links=None, headings=None) -> RenderedPage:
    return RenderedPage(url=url, html=html, title=title or url.rsplit('/', 1)[-1],
                        headings=list(headings or []), links=list(links or []))


def words(count: int, prefix: str = 'w') -> str:
    return ' '.join(f'{prefix}{i}' for i in range(count))


@pytest.fixture
def crawler_settings():
    return CrawlerSettings(
        seed_url='https://example.com/benefits',
        max_pages=10,
        allowed_paths=['/benefits'],
        min_delay=0,
        max_delay=0,
        backoff_base=0,
        max_attempts=3,
    )


@pytest.fixture
def chunking_settings():
    return ChunkingSettings()


@pytest.fixture
def embedding_settings():
    return EmbeddingSettings(dimensions=DIMENSIONS, batch_size=2, batch_delay=0)


@pytest.fixture
def answer_settings():
    return AnswerSettings()


@pytest.fixture
def settings(crawler_settings, embedding_settings, tmp_path):
    return Settings(
        crawler=crawler_settings,
        embedding=embedding_settings,
        sqlite_path=str(tmp_path / 'citecrawl.db'),
    )


@pytest.fixture
def embeddings_api():
    return FakeEmbeddingsAPI()


@pytest.fixture
def embedding_client(embeddings_api):
    return SimpleNamespace(embeddings=embeddings_api)
