"""Retrieval package for citecrawl.

Provides the answer generator and the caller-facing service facade.
"""

from .response_generator import (
    AnswerGenerationError,
    Citation,
    GeneratedResponse,
    ResponseGenerator,
    extract_citations,
    format_response_for_api,
    validate_response_citations,
)
from .service import RetrievalService, SessionNotFoundError, build_service

__all__ = [
    # Answers
    'AnswerGenerationError',
    'Citation',
    'GeneratedResponse',
    'ResponseGenerator',
    'extract_citations',
    'format_response_for_api',
    'validate_response_citations',

    # Facade
    'RetrievalService',
    'SessionNotFoundError',
    'build_service',
]
