"""Crawl4AI client: the rich HTML to markdown fetch strategy.

Renders the page in a headless browser and returns Crawl4AI's markdown
conversion, which keeps headings, lists and tables that plain text
extraction loses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import structlog
from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

from ...core.config import settings

logger = structlog.get_logger(__name__)


class CrawlError(Exception):
    """Exception raised when web crawling fails."""

    pass


class CrawlPageError(CrawlError):
    """The crawler worked but the page itself is unusable.

    Invalid URLs, navigation failures, HTTP error statuses and empty pages.
    """

    pass


@dataclass
class CrawledPage:
    """Crawled page with markdown content and metadata."""

    url: str
    markdown: str
    status_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        """Page title from the crawl metadata, '' if unknown."""
        title = self.metadata.get("title") or ""
        return " ".join(str(title).split())


class Crawl4AIClient:
    """Web crawler client using Crawl4AI for content extraction.

    Example:
        >>> client = Crawl4AIClient()
        >>> page = await client.crawl_url("https://example.com")
        >>> print(page.title, page.markdown[:100])
    """

    def __init__(
        self,
        headless: bool = True,
        browser_type: str = "chromium",
        timeout: float | None = None,
        max_content_chars: int | None = None,
    ):
        """Initialize Crawl4AI client.

        Args:
            headless: Run browser in headless mode (default: True)
            browser_type: Browser to use - chromium, firefox, webkit (default: chromium)
            timeout: Page load timeout in seconds (defaults to FETCH_TIMEOUT_SECONDS)
            max_content_chars: Cap on returned markdown length
        """
        self.headless = headless
        self.browser_type = browser_type
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        self.max_content_chars = max_content_chars or settings.MAX_CONTENT_CHARS

        logger.info(
            "Crawl4AIClient initialized",
            headless=headless,
            browser_type=browser_type,
            timeout=self.timeout,
        )

    async def crawl_url(self, url: str) -> CrawledPage:
        """Crawl a single URL and return its markdown.

        Args:
            url: URL to crawl

        Returns:
            CrawledPage with non-empty markdown

        Raises:
            CrawlPageError: If the URL is invalid or the page is unusable
            CrawlError: If the crawler itself fails (browser launch, timeout)
        """
        if not self._is_valid_url(url):
            raise CrawlPageError(f"Invalid URL: {url}")

        logger.debug("Crawling URL", url=url)

        browser_config = BrowserConfig(
            browser_type=self.browser_type,
            headless=self.headless,
            verbose=False,
        )
        run_config = CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            excluded_tags=["nav", "header", "footer", "aside", "form"],
            remove_overlay_elements=True,
            page_timeout=int(self.timeout * 1000),
        )

        try:
            async with AsyncWebCrawler(config=browser_config) as crawler:
                result = await crawler.arun(url=url, config=run_config)
        except TimeoutError as e:
            raise CrawlError(f"Timeout crawling {url}: {e}") from e
        except Exception as e:
            raise CrawlError(f"Error crawling {url}: {e}") from e

        if not result.success:
            reason = result.error_message or "unknown error"
            raise CrawlPageError(f"Failed to crawl {url}: {reason}")

        status_code = getattr(result, "status_code", None)
        if status_code is not None and status_code >= 400:
            raise CrawlPageError(f"HTTP {status_code} crawling {url}")

        markdown = str(result.markdown or "")
        if not markdown.strip():
            raise CrawlPageError(f"Empty markdown for {url}")

        logger.info("Crawl successful", url=url, markdown_length=len(markdown))

        return CrawledPage(
            url=result.url or url,
            markdown=markdown[: self.max_content_chars],
            status_code=status_code,
            metadata=result.metadata or {},
        )

    def _is_valid_url(self, url: str) -> bool:
        """Validate URL format.

        Args:
            url: URL to validate

        Returns:
            True if valid, False otherwise
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
