"""Built-in fetch strategy: plain HTTP GET plus HTML to text conversion.

Features:
- Fixed per-request timeout, redirects followed
- Retries with exponential backoff on timeouts, connection resets, 5xx and 429
- PDF and other non-HTML responses reported as errors with an empty body
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
import structlog

from ...core.config import settings
from .html_text import extract_title, html_to_text

logger = structlog.get_logger(__name__)

ACCEPT_HEADER = "text/html,application/xhtml+xml,*/*;q=0.9"

# Transport failures worth another attempt
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


@dataclass
class HttpFetchResult:
    """Outcome of a built-in fetch.

    http_status is 0 when no response was received at all.
    """

    title: str
    content: str
    http_status: int
    error: str | None = None


class HttpFetcher:
    """Fetch a URL over HTTP and return cleaned page text.

    Example:
        >>> fetcher = HttpFetcher()
        >>> result = await fetcher.fetch("https://example.com")
        >>> result.http_status, result.title
        (200, 'Example Domain')
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        user_agent: str | None = None,
        max_content_chars: int | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Shared httpx client (one is created lazily if omitted)
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            backoff_base: Attempt n sleeps backoff_base * 2**(n+1) seconds
            user_agent: User-Agent header
            max_content_chars: Cap on returned text length
        """
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.FETCH_MAX_RETRIES
        self.backoff_base = (
            backoff_base if backoff_base is not None else settings.FETCH_BACKOFF_BASE_SECONDS
        )
        self.user_agent = user_agent or settings.FETCH_USER_AGENT
        self.max_content_chars = max_content_chars or settings.MAX_CONTENT_CHARS
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _backoff(self, attempt: int) -> None:
        delay = self.backoff_base * 2 ** (attempt + 1)
        if delay > 0:
            await asyncio.sleep(delay)

    async def fetch(self, url: str) -> HttpFetchResult:
        """Fetch ``url`` and convert the HTML body to text.

        Never raises for network or HTTP failures; they are reported through
        ``error`` and ``http_status``.
        """
        headers = {"User-Agent": self.user_agent, "Accept": ACCEPT_HEADER}
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.get(
                    url, headers=headers, timeout=self.timeout, follow_redirects=True
                )
            except TRANSIENT_ERRORS as e:
                if attempt < self.max_retries:
                    logger.warning(
                        "Transient fetch failure, retrying",
                        url=url,
                        attempt=attempt + 1,
                        error=repr(e),
                    )
                    await self._backoff(attempt)
                    continue
                error = "timeout" if isinstance(e, httpx.TimeoutException) else _describe(e)
                logger.info("Fetch failed", url=url, error=error)
                return HttpFetchResult(title="", content="", http_status=0, error=error)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.info("Fetch failed", url=url, error=_describe(e))
                return HttpFetchResult(title="", content="", http_status=0, error=_describe(e))

            status = response.status_code
            if (status >= 500 or status == 429) and attempt < self.max_retries:
                logger.warning("Retryable HTTP status", url=url, status=status, attempt=attempt + 1)
                await self._backoff(attempt)
                continue

            if not response.is_success:
                return HttpFetchResult(title="", content="", http_status=status, error=f"HTTP {status}")

            content_type = response.headers.get("content-type", "")
            if "application/pdf" in content_type:
                return HttpFetchResult(
                    title="(PDF)", content="", http_status=status, error="PDF content"
                )
            if "text/html" not in content_type and "application/xhtml" not in content_type:
                return HttpFetchResult(
                    title="", content="", http_status=status, error=f"non-HTML: {content_type}"
                )

            html = response.text
            return HttpFetchResult(
                title=extract_title(html),
                content=html_to_text(html, max_chars=self.max_content_chars),
                http_status=status,
            )

        return HttpFetchResult(title="", content="", http_status=0, error="max retries exceeded")


def _describe(error: Exception) -> str:
    return str(error) or error.__class__.__name__
