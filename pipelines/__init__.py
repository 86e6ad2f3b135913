"""Pipelines package for citecrawl.

Provides crawling, extraction and chunking functionality. Index
orchestration lives in ``pipelines.indexer``.
"""

from .models import CrawlResult, CrawlSession, CrawlStatus, InvalidTransitionError, NavigationStep, Page
from .urls import normalize_url, resolve_link, is_same_domain, is_allowed_path, has_binary_extension
from .browser import NavigationError, PlaywrightRenderer, RenderedPage
from .extractor import ContentExtractor, ExtractedContent, ExtractionError
from .crawler import BFSCrawler, CancellationToken, CrawlCancelled, CrawlStats
from .chunker import ChunkedPage, TextChunk, TextChunker

__all__ = [
    # Models
    'CrawlResult',
    'CrawlSession',
    'CrawlStatus',
    'InvalidTransitionError',
    'NavigationStep',
    'Page',

    # URLs
    'normalize_url',
    'resolve_link',
    'is_same_domain',
    'is_allowed_path',
    'has_binary_extension',

    # Browser
    'NavigationError',
    'PlaywrightRenderer',
    'RenderedPage',

    # Extractor
    'ContentExtractor',
    'ExtractedContent',
    'ExtractionError',

    # Crawler
    'BFSCrawler',
    'CancellationToken',
    'CrawlCancelled',
    'CrawlStats',

    # Chunker
    'ChunkedPage',
    'TextChunk',
    'TextChunker',
]
