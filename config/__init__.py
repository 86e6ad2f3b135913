"""Configuration module for citecrawl.

Provides configuration for crawling, extraction, chunking, embeddings, search and answers.
"""

from .settings import (
    Settings,
    CrawlerSettings,
    ExtractionSettings,
    ChunkingSettings,
    EmbeddingSettings,
    SearchSettings,
    AnswerSettings,
    load_settings,
    load_source_file
)

__all__ = [
    'Settings',
    'CrawlerSettings',
    'ExtractionSettings',
    'ChunkingSettings',
    'EmbeddingSettings',
    'SearchSettings',
    'AnswerSettings',
    'load_settings',
    'load_source_file'
]
