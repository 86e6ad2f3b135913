"""External service adapters for citecrawl."""

from .llm import TextService, TextServiceError

__all__ = ['TextService', 'TextServiceError']
