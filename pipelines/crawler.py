"""Breadth-first crawler for citecrawl.

Walks a site from a seed URL through a FIFO frontier, rendering each page in
a headless browser and extracting its main content. Per-page failures are
retried with exponential backoff and then recorded, never raised.

Pages are processed by a single worker, so navigation steps are appended in
frontier order, which is non-decreasing depth order.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncContextManager, Callable, Deque, List, Optional, Set, Tuple

from config.settings import CrawlerSettings
from observability.logging import get_structured_logger
from observability.metrics import crawl_pages, crawl_retries
from services.llm import TextServiceError

from .browser import NavigationError, PlaywrightRenderer, RenderedPage
from .extractor import ContentExtractor, ExtractionError
from .models import CrawlResult, NavigationStep, Page, utcnow
from .urls import has_binary_extension, is_allowed_path, is_same_domain, normalize_url, resolve_link

logger = logging.getLogger(__name__)

RendererFactory = Callable[[], AsyncContextManager]


class CrawlCancelled(Exception):
    """Raised inside the crawl loop when its cancellation token fires."""
    pass

class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a crawl.

    The wake-up event is created on first ``sleep`` so a token can be built
    outside the event loop that later runs the crawl.
    """

    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    def cancel(self):
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self):
        if self._cancelled:
            raise CrawlCancelled()

    async def sleep(self, seconds: float):
        """Sleep for ``seconds``, returning early if cancelled."""
        if seconds <= 0 or self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            # Timeout is the normal path: the full delay elapsed
            return


@dataclass
class FrontierEntry:
    url: str
    depth: int
    parent_url: Optional[str] = None
    link_text: Optional[str] = None


@dataclass
class CrawlStats:
    """Statistics for a crawl session."""
    visited: int = 0
    scraped: int = 0
    failed: int = 0
    retried: int = 0
    links_queued: int = 0
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        self.end_time = utcnow()


class BFSCrawler:
    """Breadth-first crawler with politeness delay, retries and cancellation."""

    def __init__(self,
                 extractor: ContentExtractor,
                 settings: CrawlerSettings,
                 renderer_factory: Optional[RendererFactory] = None):
        """Initialize crawler.

        Args:
            extractor: Content extractor used on every rendered page
            settings: Crawler configuration
            renderer_factory: Returns an async context manager yielding a
                renderer with ``render(url) -> RenderedPage``. One renderer is
                acquired per crawl. Defaults to ``PlaywrightRenderer``.
        """
        self.extractor = extractor
        self.settings = settings
        self.renderer_factory = renderer_factory or (lambda: PlaywrightRenderer(settings))

    def _backoff_delay(self, attempt: int) -> float:
        return self.settings.backoff_base * (2 ** attempt)

    def _politeness_delay(self) -> float:
        return random.uniform(self.settings.min_delay, self.settings.max_delay)

    async def _sleep(self, seconds: float, token: CancellationToken):
        await token.sleep(seconds)

    async def crawl(self,
                    seed_url: Optional[str] = None,
                    max_pages: Optional[int] = None,
                    cancel_token: Optional[CancellationToken] = None) -> CrawlResult:
        """Crawl breadth-first from ``seed_url`` until ``max_pages`` pages are extracted.

        Args:
            seed_url: Start URL (defaults to the configured seed)
            max_pages: Page budget (defaults to the configured budget)
            cancel_token: Optional token checked before each pop and network call

        Returns:
            Pages and navigation steps collected so far; ``cancelled`` is set
            when the crawl stopped on the token
        """
        seed_url = seed_url or self.settings.seed_url
        max_pages = self.settings.max_pages if max_pages is None else max_pages
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")

        token = cancel_token or CancellationToken()
        seed = normalize_url(seed_url)
        log = get_structured_logger(__name__, seed=seed)
        stats = CrawlStats()
        result = CrawlResult()

        frontier: Deque[FrontierEntry] = deque([FrontierEntry(url=seed, depth=0)])
        queued: Set[str] = {seed}
        visited: Set[str] = set()

        log.info(f"Starting crawl of {seed} (max_pages={max_pages})")

        async with self.renderer_factory() as renderer:
            while frontier and len(result.pages) < max_pages:
                if stats.visited:
                    delay = self._politeness_delay()
                    logger.debug(f"Waiting {delay:.2f}s before next request")
                    await self._sleep(delay, token)

                if token.cancelled:
                    result.cancelled = True
                    break

                entry = frontier.popleft()
                if entry.url in visited:
                    continue
                visited.add(entry.url)
                stats.visited += 1

                step = NavigationStep(
                    url=entry.url,
                    depth=entry.depth,
                    parent_url=entry.parent_url,
                    link_text=entry.link_text,
                )
                result.steps.append(step)

                try:
                    rendered, page = await self._fetch_and_extract(renderer, entry.url, token, stats)
                except CrawlCancelled:
                    result.cancelled = True
                    break

                if page is not None:
                    step.scraped = True
                    result.pages.append(page)
                    stats.scraped += 1
                    crawl_pages.labels(outcome='scraped').inc()
                else:
                    stats.failed += 1
                    crawl_pages.labels(outcome='failed').inc()

                if rendered is not None and len(result.pages) < max_pages:
                    discovered = self._discover_links(rendered, entry, seed, visited, queued)
                    frontier.extend(discovered)
                    stats.links_queued += len(discovered)
                    if discovered:
                        logger.debug(f"Queued {len(discovered)} links from {entry.url} at depth {entry.depth + 1}")

        stats.finish()
        if result.cancelled:
            log.warning(f"Crawl cancelled after {stats.visited} pages visited")

        log.info(f"Crawl finished: {stats.scraped} scraped, {stats.failed} failed, "
                 f"{stats.retried} retried, {stats.links_queued} links queued "
                 f"out of {stats.visited} visited in {stats.duration}")

        return result

    async def _fetch_and_extract(self,
                                 renderer,
                                 url: str,
                                 token: CancellationToken,
                                 stats: CrawlStats) -> Tuple[Optional[RenderedPage], Optional[Page]]:
        """Render and extract one URL within the attempt ceiling.

        Navigation and service failures are retried with exponential backoff.
        Insufficient or malformed content ends the page at once.
        """
        rendered: Optional[RenderedPage] = None
        last_error: Optional[Exception] = None
        max_attempts = self.settings.max_attempts

        for attempt in range(max_attempts):
            try:
                if rendered is None:
                    token.raise_if_cancelled()
                    logger.info(f"Scraping {url} (attempt {attempt + 1}/{max_attempts})")
                    rendered = await renderer.render(url)

                token.raise_if_cancelled()
                extracted = await self.extractor.extract(rendered.html, url, fallback_title=rendered.title)
                page = Page(
                    url=url,
                    title=extracted.title,
                    content=extracted.content,
                    headings=tuple(rendered.headings),
                )
                return rendered, page

            except ExtractionError as e:
                logger.info(f"Discarding {url}: {e}")
                return rendered, None

            except (NavigationError, TextServiceError) as e:
                last_error = e
                if attempt < max_attempts - 1:
                    delay = self._backoff_delay(attempt)
                    stats.retried += 1
                    crawl_retries.inc()
                    logger.warning(f"Error scraping {url}: {e}; retrying in {delay:.2f}s "
                                   f"(attempt {attempt + 1}/{max_attempts})")
                    await self._sleep(delay, token)

        logger.warning(f"Giving up on {url} after {max_attempts} attempts: {last_error}")
        return rendered, None

    def _discover_links(self,
                        rendered: RenderedPage,
                        entry: FrontierEntry,
                        seed: str,
                        visited: Set[str],
                        queued: Set[str]) -> List[FrontierEntry]:
        """Filter a page's outbound links into new frontier entries."""
        discovered = []

        for href, text in rendered.links:
            absolute_url = resolve_link(href, entry.url)
            if absolute_url is None:
                continue

            url = normalize_url(absolute_url)
            if url in visited or url in queued:
                continue
            if not is_same_domain(url, seed):
                continue
            if not is_allowed_path(url, self.settings.allowed_paths):
                continue
            if has_binary_extension(url):
                continue

            queued.add(url)
            link_text = ' '.join((text or '').split())[:self.settings.max_link_text] or None
            discovered.append(FrontierEntry(
                url=url,
                depth=entry.depth + 1,
                parent_url=entry.url,
                link_text=link_text,
            ))

        return discovered
