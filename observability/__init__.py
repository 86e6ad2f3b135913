"""Observability package for citecrawl."""

from .logging import (
    setup_logging,
    get_logger,
    get_structured_logger,
    StructuredLogger,
    JSONFormatter,
    ColoredFormatter
)
from .metrics import citecrawl_registry, get_metrics_text

__all__ = [
    'setup_logging',
    'get_logger',
    'get_structured_logger',
    'StructuredLogger',
    'JSONFormatter',
    'ColoredFormatter',
    'citecrawl_registry',
    'get_metrics_text'
]
