"""Headless browser rendering for the crawler.

A ``PlaywrightRenderer`` owns one browser and one browser context for the
lifetime of a crawl session. It is acquired with ``async with`` and always
released on exit, including on errors and cancellation.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from config.settings import CrawlerSettings

logger = logging.getLogger(__name__)

HEADING_SELECTOR = 'h1, h2, h3, h4, h5, h6'
LINK_SELECTOR = 'a[href]'
MIN_HEADING_LENGTH = 5
MAX_HEADINGS = 20


class NavigationError(Exception):
    """Raised when a page cannot be loaded or rendered (timeout, network failure)."""
    pass


@dataclass
class RenderedPage:
    """The rendered state of one URL."""
    url: str
    html: str
    title: str = ""
    headings: List[str] = field(default_factory=list)
    links: List[Tuple[str, str]] = field(default_factory=list)  # (href, anchor text)


class PlaywrightRenderer:
    """Chromium renderer scoped to a single crawl session."""

    def __init__(self, settings: CrawlerSettings):
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self) -> 'PlaywrightRenderer':
        logger.info("Launching Chromium browser")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=['--disable-blink-features=AutomationControlled'],
            )
            self._context = await self._browser.new_context(
                user_agent=random.choice(self.settings.user_agents),
                viewport={'width': 1920, 'height': 1080},
                locale='en-US',
            )
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Release context, browser and driver, in that order."""
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Browser closed")

    async def render(self, url: str) -> RenderedPage:
        """Load ``url`` in a fresh tab and capture its rendered state.

        Raises:
            NavigationError: On timeout or any browser-level failure
        """
        if self._context is None:
            raise RuntimeError("Renderer used outside its async context")

        page = await self._context.new_page()
        try:
            await page.goto(
                url,
                wait_until='networkidle',
                timeout=self.settings.navigation_timeout * 1000,
            )
            if self.settings.render_wait > 0:
                await asyncio.sleep(self.settings.render_wait)

            title = await page.title()
            headings = await page.eval_on_selector_all(
                HEADING_SELECTOR,
                'els => els.map(el => (el.textContent || "").trim())',
            )
            links = await page.eval_on_selector_all(
                LINK_SELECTOR,
                'els => els.map(el => [el.getAttribute("href"), (el.textContent || "").trim()])',
            )
            html = await page.content()

            return RenderedPage(
                url=url,
                html=html,
                title=title or "",
                headings=[h for h in headings if h and len(h) > MIN_HEADING_LENGTH][:MAX_HEADINGS],
                links=[(href, text) for href, text in links if href],
            )
        except PlaywrightTimeoutError as e:
            await self._capture_failure(page, url)
            raise NavigationError(f"Timed out loading {url}: {e}") from e
        except PlaywrightError as e:
            await self._capture_failure(page, url)
            raise NavigationError(f"Failed to load {url}: {e}") from e
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing tab for {url}: {e}")

    async def _capture_failure(self, page, url: str):
        """Save a full-page screenshot for debugging when a directory is configured."""
        if not self.settings.screenshot_dir:
            return
        directory = Path(self.settings.screenshot_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"crawl-error-{int(time.time() * 1000)}.png"
        try:
            await page.screenshot(path=str(path), full_page=True)
            logger.info(f"Screenshot of failed page {url} saved to {path}")
        except PlaywrightError as e:
            logger.debug(f"Could not capture screenshot for {url}: {e}")
