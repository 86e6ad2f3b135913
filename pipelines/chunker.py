"""Word-window chunking pipeline for citecrawl.

Segments extracted pages into overlapping word windows, the unit of
embedding and retrieval. Chunking is a pure function of the page and the
chunking settings.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence
from urllib.parse import urlparse

from config.settings import ChunkingSettings

from .models import Page

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextChunk:
    """A word window of one page."""
    text: str
    category: str
    source_url: str
    index: int
    start_word: int

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class ChunkedPage:
    page: Page
    chunks: List[TextChunk]


def normalize_text(text: str) -> str:
    """Collapse all whitespace runs to single spaces."""
    if not isinstance(text, str):
        logger.warning(f"normalize_text received non-string input: {type(text).__name__}")
        text = str(text or '')
    return re.sub(r'\s+', ' ', text).strip()


def split_words(text: str) -> List[str]:
    return text.split()


def window_starts(word_count: int, max_words: int, overlap_words: int) -> List[int]:
    """Start offsets of the sliding windows over ``word_count`` words.

    Windows advance by ``max_words - overlap_words``; a window is started
    only while it still contributes words beyond the previous overlap, giving
    ``ceil(max(word_count - overlap_words, 0) / step)`` windows.
    """
    step = max_words - overlap_words
    limit = max(word_count - overlap_words, 0)
    return list(range(0, limit, step))


def extract_category(url: str, prefix: str, default: str = "general") -> str:
    """First path segment after ``prefix`` (e.g. ``/benefits/medical`` -> ``medical``)."""
    path = urlparse(url).path
    marker = path.find(prefix)
    if marker == -1:
        return default

    remainder = path[marker + len(prefix):]
    segment = remainder.split('/', 1)[0]
    return segment or default


class TextChunker:
    """Splits pages into overlapping word windows."""

    def __init__(self, settings: ChunkingSettings):
        if settings.overlap_words >= settings.max_words:
            raise ValueError("overlap_words must be smaller than max_words")
        self.settings = settings

    def chunk(self, page: Page) -> List[TextChunk]:
        """Chunk a single page.

        Windows shorter than ``min_words`` are dropped, so a page under the
        minimum yields no chunks.
        """
        settings = self.settings
        words = split_words(normalize_text(page.content))
        if len(words) < settings.min_words:
            return []

        category = extract_category(page.url, settings.category_prefix, settings.default_category)

        chunks = []
        for start in window_starts(len(words), settings.max_words, settings.overlap_words):
            window = words[start:start + settings.max_words]
            if len(window) < settings.min_words:
                continue
            chunks.append(TextChunk(
                text=' '.join(window),
                category=category,
                source_url=page.url,
                index=len(chunks),
                start_word=start,
            ))

        return chunks

    def chunk_pages(self, pages: Sequence[Page]) -> List[ChunkedPage]:
        return [ChunkedPage(page=page, chunks=self.chunk(page)) for page in pages]

    def estimate_token_count(self, text: str) -> int:
        return math.ceil(len(split_words(text)) * self.settings.tokens_per_word)

    def chunking_stats(self, chunked_pages: Sequence[ChunkedPage]) -> Dict[str, Any]:
        """Totals and averages over a chunked corpus."""
        total_chunks = sum(len(cp.chunks) for cp in chunked_pages)
        total_tokens = sum(self.estimate_token_count(c.text) for cp in chunked_pages for c in cp.chunks)
        total_pages = len(chunked_pages)

        return {
            'total_pages': total_pages,
            'total_chunks': total_chunks,
            'total_tokens': total_tokens,
            'avg_chunks_per_page': total_chunks / total_pages if total_pages else 0.0,
            'avg_tokens_per_chunk': total_tokens / total_chunks if total_chunks else 0.0,
        }
