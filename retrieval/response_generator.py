"""Answer synthesis with inline citations.

Ranked search results are formatted as numbered context items and handed to
the generation service, which must cite them as ``[N]``. Low-confidence or
empty result sets are answered with a fixed refusal and no service call.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from config.settings import AnswerSettings
from indexer.vector_search import SearchResult
from observability.metrics import answers
from services.llm import TextService, TextServiceError

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_MESSAGE = (
    "I don't have confident information about that question. "
    "Please visit the official website for complete information."
)
NO_RESULTS_MESSAGE = (
    "I don't have information about that topic in the database. "
    "Please visit the official website for more details."
)

CITATION_PATTERN = re.compile(r'\[(\d+)\]')
UNKNOWN_ANSWER_PHRASES = ("don't have", "don't know", "no information")

SYSTEM_PROMPT = """You are the {assistant_name}. Your role is to help users find accurate information from the indexed documentation.

CRITICAL RULES:
1. ONLY provide information based on the context provided from the database
2. EVERY factual claim MUST include a citation in the format [N] where N is the citation number
3. If information is not in the provided context, clearly say "I don't have that information"
4. NEVER speculate, guess, or provide information not in the database
5. Be concise and direct - answer the question clearly and briefly
6. If the question is ambiguous, ask for clarification
7. Format citations as [1], [2], etc. inline in your response

Example response format:
"The HSA contribution limit is $4,150 for individuals and $8,300 for families [1]. You can also contribute to an FSA [2]."

IMPORTANT: Include citation numbers throughout your response where applicable."""


class AnswerGenerationError(Exception):
    """Raised when the generation service is unavailable."""
    pass


@dataclass(frozen=True)
class Citation:
    number: int
    text: str
    url: str
    category: str


@dataclass
class GeneratedResponse:
    message: str
    citations: List[Citation] = field(default_factory=list)
    confidence: float = 0.0
    raw_response: str = ""


def format_context(results: Sequence[SearchResult]) -> str:
    """Number results from 1 in the order they were ranked."""
    items = '\n\n'.join(
        f"[{i}] {result.text}\n(Source: {result.page_title})"
        for i, result in enumerate(results, start=1)
    )
    return f"DATABASE INFORMATION:\n{items}"


def extract_citations(response_text: str, results: Sequence[SearchResult]) -> List[Citation]:
    """Map ``[N]`` markers in ``response_text`` to citations.

    Duplicates are collapsed and numbers outside ``1..len(results)`` dropped,
    so the returned numbers are strictly increasing.
    """
    numbers = {int(match) for match in CITATION_PATTERN.findall(response_text)}

    citations = []
    for number in sorted(numbers):
        if 1 <= number <= len(results):
            result = results[number - 1]
            citations.append(Citation(
                number=number,
                text=result.page_title,
                url=result.source_url,
                category=result.category,
            ))
        else:
            logger.debug(f"Dropping out-of-range citation [{number}]")

    return citations


def validate_response_citations(response: GeneratedResponse) -> bool:
    """True if the answer carries a citation marker or admits not knowing."""
    if CITATION_PATTERN.search(response.message):
        return True

    if any(phrase in response.message for phrase in UNKNOWN_ANSWER_PHRASES):
        return True

    logger.warning(f"Response may be missing citations: {response.message[:200]}")
    return False


def format_response_for_api(response: GeneratedResponse) -> Dict[str, Any]:
    return {
        'message': response.message,
        'citations': [
            {'number': c.number, 'text': c.text, 'url': c.url}
            for c in response.citations
        ],
        'confidence': round(response.confidence, 2),
    }


class ResponseGenerator:
    """Generates cited answers from ranked search results."""

    def __init__(self, text_service: TextService, settings: AnswerSettings):
        self.text_service = text_service
        self.settings = settings
        self.system_prompt = SYSTEM_PROMPT.format(assistant_name=settings.assistant_name)

    async def generate(self, query: str, results: Sequence[SearchResult], confidence: float) -> GeneratedResponse:
        """Answer ``query`` from ``results``.

        Raises:
            AnswerGenerationError: If the generation service fails
        """
        if not results:
            answers.labels(outcome='no_results').inc()
            return GeneratedResponse(message=NO_RESULTS_MESSAGE, raw_response='No search results')

        if confidence < self.settings.confidence_floor:
            logger.info(f"Low confidence ({confidence:.2f}), returning fallback response")
            answers.labels(outcome='low_confidence').inc()
            return GeneratedResponse(
                message=LOW_CONFIDENCE_MESSAGE,
                raw_response='Fallback response due to low confidence',
            )

        content = f"Context:\n{format_context(results)}\n\nQuestion: {query}"

        try:
            raw_response = await self.text_service.complete(
                self.system_prompt,
                content,
                model=self.settings.model,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
        except TextServiceError as e:
            answers.labels(outcome='error').inc()
            logger.error(f"Error generating response: {e}")
            raise AnswerGenerationError(str(e)) from e

        citations = extract_citations(raw_response, results)
        answers.labels(outcome='answered').inc()
        logger.info(f"Generated answer with {len(citations)} citations (confidence {confidence:.2f})")

        return GeneratedResponse(
            message=raw_response,
            citations=citations,
            confidence=confidence,
            raw_response=raw_response,
        )
