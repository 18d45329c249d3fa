"""Web crawling services."""

from .crawl4ai_client import Crawl4AIClient, CrawledPage, CrawlError

__all__ = [
    "Crawl4AIClient",
    "CrawledPage",
    "CrawlError",
]
