"""Main-content extraction for crawled pages.

Boilerplate markup is stripped locally; the remaining HTML is handed to the
text-understanding service, which returns the page title and clean content.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup, Comment

from config.settings import ExtractionSettings
from services.llm import TextService

logger = logging.getLogger(__name__)

BOILERPLATE_TAGS = ["script", "style", "nav", "header", "footer"]
TRUNCATION_MARKER = "\n...[truncated]"

EXTRACTION_INSTRUCTION = """You are a web scraping assistant. Extract the main content from HTML pages about {topic}.
Remove navigation, ads, footers, sidebars, and other non-content elements.
Focus on extracting information about {focus}.

Return a JSON object with:
- title: The main page title
- content: Clean, formatted text content with the relevant details (preserve structure with headings and bullet points where appropriate)"""


class ExtractionError(Exception):
    """Raised when a page yields insufficient or malformed content."""
    pass


@dataclass
class ExtractedContent:
    title: str
    content: str


def strip_boilerplate(html: str) -> str:
    """Remove script, style, nav, header, footer and comment markup."""
    soup = BeautifulSoup(html, 'html.parser')

    for element in soup(BOILERPLATE_TAGS):
        element.decompose()

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    return str(soup)


def truncate_html(html: str, max_chars: int) -> str:
    if len(html) <= max_chars:
        return html
    return html[:max_chars] + TRUNCATION_MARKER


class ContentExtractor:
    """Extracts title and main content through the text service."""

    def __init__(self, text_service: TextService, settings: ExtractionSettings):
        self.text_service = text_service
        self.settings = settings
        self.instruction = EXTRACTION_INSTRUCTION.format(topic=settings.topic, focus=settings.focus)

    async def extract(self, html: str, url: str, fallback_title: Optional[str] = None) -> ExtractedContent:
        """Extract the main content of a rendered page.

        Args:
            html: Rendered page HTML
            url: Page URL (for logging)
            fallback_title: Title to use when the service returns none

        Returns:
            Extracted title and content

        Raises:
            ExtractionError: If the response is malformed or the content too short
            TextServiceError: If the service call itself fails
        """
        cleaned = strip_boilerplate(html)
        truncated = truncate_html(cleaned, self.settings.max_html_chars)
        logger.debug(f"Sending {len(truncated)} chars for {url} (original: {len(html)})")

        raw = await self.text_service.complete(
            self.instruction,
            f"Extract the main {self.settings.topic} content from this HTML:\n\n{truncated}",
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            json_response=True,
        )

        try:
            result = json.loads(raw or '{}')
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Malformed extraction response for {url}: {e}") from e

        if not isinstance(result, dict):
            raise ExtractionError(f"Extraction response for {url} is not a JSON object")

        content = result.get('content') or ''
        if not isinstance(content, str):
            raise ExtractionError(f"Extraction content for {url} is not text")

        content = content.strip()
        if len(content) < self.settings.min_content_length:
            raise ExtractionError(
                f"Insufficient content for {url} ({len(content)} chars, "
                f"minimum {self.settings.min_content_length})"
            )

        title = result.get('title') if isinstance(result.get('title'), str) else None
        title = (title or '').strip() or (fallback_title or '').strip() or self.settings.default_title

        logger.info(f"Extracted content from {url}: {title} ({len(content)} chars)")
        return ExtractedContent(title=title, content=content)
