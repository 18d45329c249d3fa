"""Wiki server client for the remote citation content tier.

Only the two citation content routes the fetcher needs are wrapped:

    GET  /api/citations/content?url=...
    POST /api/citations/content/upsert

Failures are returned as ``ApiResult`` values instead of raised, so callers
can treat the remote tier as optional.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import httpx
import structlog
from pydantic import ValidationError

from ..core.config import settings
from ..models.source import CitationContentRecord

logger = structlog.get_logger(__name__)

ApiErrorKind = Literal["unavailable", "not_found", "bad_request", "server_error", "invalid_response"]

# pageId recorded for rows written by the fetcher rather than a page audit
SOURCE_FETCHER_PAGE_ID = "_source-fetcher"


@dataclass
class ApiResult:
    """Explicit success/error result of a wiki server call."""

    ok: bool
    data: CitationContentRecord | None = None
    error: ApiErrorKind | None = None
    message: str = ""

    @classmethod
    def success(cls, data: CitationContentRecord | None) -> ApiResult:
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: ApiErrorKind, message: str) -> ApiResult:
        return cls(ok=False, error=error, message=message)


def _record_from_payload(payload: dict[str, Any]) -> CitationContentRecord:
    return CitationContentRecord(
        url=payload["url"],
        page_title=payload.get("pageTitle"),
        full_text=payload.get("fullText"),
        fetched_at=payload["fetchedAt"],
        http_status=payload.get("httpStatus"),
        content_type=payload.get("contentType"),
        content_length=payload.get("contentLength"),
        created_at=payload.get("createdAt"),
        updated_at=payload.get("updatedAt"),
    )


def _payload_from_record(record: CitationContentRecord) -> dict[str, Any]:
    return {
        "url": record.url,
        "pageId": SOURCE_FETCHER_PAGE_ID,
        "footnote": 0,
        "fetchedAt": record.fetched_at.isoformat(),
        "httpStatus": record.http_status,
        "contentType": record.content_type,
        "pageTitle": record.page_title,
        "fullText": record.full_text,
        "contentLength": record.content_length,
    }


class WikiServerClient:
    """Async client for the wiki server citation content API.

    Example:
        >>> client = WikiServerClient(base_url="http://localhost:3100", api_key="...")
        >>> result = await client.get_citation_content("https://example.com")
        >>> if result.ok:
        ...     print(result.data.page_title)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server base URL; empty disables the client
            api_key: Bearer token sent with every request
            timeout: Per-request timeout in seconds
            client: Shared httpx client (created lazily if omitted)
        """
        self.base_url = (base_url if base_url is not None else settings.WIKI_SERVER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.WIKI_SERVER_API_KEY
        self.timeout = timeout if timeout is not None else settings.WIKI_SERVER_TIMEOUT
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        """Whether a server URL is configured."""
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        parse_record: bool = True,
    ) -> ApiResult:
        if not self.enabled:
            return ApiResult.failure("unavailable", "WIKI_SERVER_URL is not configured")

        try:
            response = await self._get_client().request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            return ApiResult.failure("unavailable", f"Timeout calling wiki server: {e}")
        except httpx.HTTPError as e:
            return ApiResult.failure("unavailable", f"Wiki server unreachable: {e}")

        if response.status_code == 404:
            return ApiResult.failure("not_found", "Not found")
        if 400 <= response.status_code < 500:
            return ApiResult.failure("bad_request", f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code >= 500:
            return ApiResult.failure("server_error", f"HTTP {response.status_code}")

        try:
            return ApiResult.success(_record_from_payload(response.json()))
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            if not parse_record:
                return ApiResult.success(None)
            return ApiResult.failure("invalid_response", f"Unexpected response body: {e}")

    async def get_citation_content(self, url: str) -> ApiResult:
        """Look up stored content for ``url``."""
        return await self._request("GET", "/api/citations/content", params={"url": url})

    async def upsert_citation_content(self, record: CitationContentRecord) -> ApiResult:
        """Insert or update stored content for ``record.url``."""
        result = await self._request(
            "POST",
            "/api/citations/content/upsert",
            json=_payload_from_record(record),
            parse_record=False,
        )
        if not result.ok:
            logger.debug("Wiki server upsert failed", url=record.url, error=result.error)
        return result
