"""Source fetcher: tiered cache lookups, in-flight deduplication, network fetch.

Resolution order for a URL (first hit wins):

    1. in-process LRU (SessionCache)
    2. in-flight request for the same URL (shared asyncio task)
    3. blocked domain -> immediate 'error' result, no network call
    4. remote tier (wiki server); a hit is backfilled into the embedded tier
    5. embedded tier (SQL)
    6. network: rich HTML->markdown strategy, then built-in HTML->text fetch

Remote and embedded entries older than CACHE_TTL are treated as misses.
Fresh non-empty content is written to the embedded tier (awaited) and the
remote tier (background task). Persistence failures are logged and never
fail the fetch.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Literal, Protocol, Sequence
from urllib.parse import urlparse

import structlog

from ...clients.wiki_server_client import ApiResult, WikiServerClient
from ...core.circuit_breaker import CircuitBreaker, CircuitOpenError
from ...core.config import settings
from ...database.repositories.citation_content_repository import CitationContentRepository
from ...database.session import get_session_factory
from ...models.source import (
    CitationContentRecord,
    FetchedSource,
    FetchRequest,
    FetchStatus,
    ResourceInfo,
)
from ..crawl.crawl4ai_client import Crawl4AIClient, CrawledPage, CrawlError, CrawlPageError
from ..resources.catalog import ResourceCatalog
from .excerpts import extract_relevant_excerpts
from .http_fetcher import HttpFetcher
from .session_cache import SessionCache

logger = structlog.get_logger(__name__)

# Remote and embedded entries older than this are misses
CACHE_TTL = timedelta(days=7)

# Domains that block all automated access
BLOCKED_DOMAINS = (
    "twitter.com",
    "x.com",
    "linkedin.com",
    "facebook.com",
    "t.co",
    "instagram.com",
    "tiktok.com",
)

# Phrases indicating a paywall or login wall
PAYWALL_SIGNALS = (
    "subscribe to read",
    "sign in to read",
    "create a free account",
    "this content is for subscribers",
    "subscriber-only",
    "paywall",
    "to continue reading",
    "unlimited access",
    "login required",
    "please sign in",
    "register to read",
)
PAYWALL_SHORT_CONTENT_CHARS = 500
PAYWALL_SCAN_CHARS = 2000


class InvalidFetchRequestError(ValueError):
    """Raised when a FetchRequest resolves to no URL."""

    pass


class EmbeddedContentStore(Protocol):
    async def get_by_url(self, url: str) -> CitationContentRecord | None: ...

    async def upsert(self, record: CitationContentRecord) -> None: ...


class RemoteContentStore(Protocol):
    enabled: bool

    async def get_citation_content(self, url: str) -> ApiResult: ...

    async def upsert_citation_content(self, record: CitationContentRecord) -> ApiResult: ...

    async def close(self) -> None: ...


Resolver = Callable[[str, ResourceInfo | None], Awaitable[FetchedSource | None]]


def get_domain(url: str) -> str:
    """Lowercased host without a leading 'www.', '' if unparseable."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def is_blocked_domain(url: str) -> bool:
    """Whether ``url`` belongs to a domain (or subdomain) known to block fetchers."""
    domain = get_domain(url)
    return any(domain == blocked or domain.endswith("." + blocked) for blocked in BLOCKED_DOMAINS)


def detect_paywall(content: str) -> bool:
    """Heuristic paywall check.

    Short content (< 500 chars) needs one signal phrase anywhere. Longer
    content needs two distinct signals within the first 2,000 characters so a
    single passing mention of "subscribe" does not trip it.
    """
    if not content:
        return False
    lower = content.lower()
    if len(content) < PAYWALL_SHORT_CONTENT_CHARS:
        return any(signal in lower for signal in PAYWALL_SIGNALS)
    early = lower[:PAYWALL_SCAN_CHARS]
    return sum(1 for signal in PAYWALL_SIGNALS if signal in early) >= 2


def determine_status(content: str, http_status: int, error: str | None) -> FetchStatus:
    """Map a network fetch outcome onto FetchStatus."""
    if error and http_status == 0:
        return FetchStatus.ERROR
    if http_status >= 400:
        return FetchStatus.DEAD
    if detect_paywall(content):
        return FetchStatus.PAYWALL
    if content:
        return FetchStatus.OK
    if error:
        return FetchStatus.ERROR
    return FetchStatus.OK


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _is_stale(record: CitationContentRecord) -> bool:
    return _now() - _as_utc(record.fetched_at) > CACHE_TTL


class SourceFetcher:
    """Fetch sources through the cache tiers with in-flight deduplication.

    The fetcher owns its session cache and in-flight map; the embedded and
    remote stores are shared, externally owned collaborators.

    Example:
        >>> fetcher = SourceFetcher(http_fetcher=HttpFetcher())
        >>> source = await fetcher.fetch_source(
        ...     FetchRequest(url="https://example.com", extract_mode="relevant", query="AI safety")
        ... )
        >>> source.status, source.relevant_excerpts[:1]
    """

    def __init__(
        self,
        session_cache: SessionCache | None = None,
        http_fetcher: HttpFetcher | None = None,
        crawl_client: Crawl4AIClient | None = None,
        embedded_store: EmbeddedContentStore | None = None,
        remote_store: RemoteContentStore | None = None,
        resource_catalog: ResourceCatalog | None = None,
        rich_fetch_breaker: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            session_cache: In-process LRU tier (a fresh one by default)
            http_fetcher: Built-in fetch strategy
            crawl_client: Rich fetch strategy; None disables it
            embedded_store: Embedded SQL tier; None disables it
            remote_store: Remote wiki server tier; None disables it
            resource_catalog: Catalog for resource ids and metadata
            rich_fetch_breaker: Circuit breaker guarding the rich strategy; the
                default ignores page-level CrawlPageError outcomes
        """
        self.session_cache = (
            session_cache if session_cache is not None else SessionCache(settings.SESSION_CACHE_CAPACITY)
        )
        self.http_fetcher = http_fetcher or HttpFetcher()
        self.crawl_client = crawl_client
        self.embedded_store = embedded_store
        self.remote_store = remote_store
        self.resource_catalog = resource_catalog
        self.rich_fetch_breaker = rich_fetch_breaker or CircuitBreaker(
            failure_threshold=settings.RICH_FETCH_CIRCUIT_BREAKER_THRESHOLD,
            timeout=float(settings.RICH_FETCH_CIRCUIT_BREAKER_TIMEOUT),
            excluded_exceptions=(CrawlPageError,),
        )

        self._in_flight: dict[str, asyncio.Task[FetchedSource]] = {}
        self._background_writes: set[asyncio.Task[None]] = set()
        self._resolvers: list[Resolver] = [
            self._resolve_blocked_domain,
            self._resolve_remote,
            self._resolve_embedded,
            self._resolve_network,
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_source(self, request: FetchRequest) -> FetchedSource:
        """Fetch one source.

        Args:
            request: URL or resource id, plus extraction options

        Returns:
            FetchedSource; excerpts reflect this request's mode and query only

        Raises:
            InvalidFetchRequestError: If neither url nor a known resource_id is given
        """
        url, resource = self._resolve_request(request)

        cached = self.session_cache.get(url)
        if cached is not None:
            logger.debug("Session cache hit", url=url)
            return self._with_excerpts(cached, request)

        source = await self._fetch_once(url, resource)
        if request.update_resource_status and resource is not None:
            self._reflect_status(resource, source)
        return self._with_excerpts(source, request)

    async def fetch_sources(
        self,
        requests: Sequence[FetchRequest],
        concurrency: int | None = None,
        delay_ms: int | None = None,
    ) -> list[FetchedSource]:
        """Fetch many sources in fixed-size batches, preserving input order.

        Sleeps ``delay_ms`` between batches, never within one.
        """
        concurrency = concurrency or settings.FETCH_CONCURRENCY
        delay_ms = settings.FETCH_BATCH_DELAY_MS if delay_ms is None else delay_ms
        results: list[FetchedSource] = []

        for start in range(0, len(requests), concurrency):
            batch = requests[start : start + concurrency]
            results.extend(await asyncio.gather(*(self.fetch_source(r) for r in batch)))
            if start + concurrency < len(requests) and delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

        return results

    async def fetch_and_verify_claim(
        self, url: str, claim_context: str
    ) -> tuple[FetchedSource, bool]:
        """Fetch ``url`` with excerpts for ``claim_context``.

        Returns:
            (source, has_support) where has_support means status 'ok' and at
            least one matching excerpt
        """
        source = await self.fetch_source(
            FetchRequest(url=url, extract_mode="relevant", query=claim_context)
        )
        has_support = source.status == FetchStatus.OK and len(source.relevant_excerpts) > 0
        return source, has_support

    def requests_from_resource_ids(
        self,
        resource_ids: Sequence[str],
        extract_mode: Literal["full", "relevant"] = "full",
        query: str | None = None,
        update_resource_status: bool = False,
    ) -> list[FetchRequest]:
        """Build fetch requests for known resource ids, skipping unknown ones."""
        if self.resource_catalog is None:
            return []
        requests: list[FetchRequest] = []
        for resource_id in resource_ids:
            resource = self.resource_catalog.get_by_id(resource_id)
            if resource is None:
                logger.debug("Unknown resource id skipped", resource_id=resource_id)
                continue
            requests.append(
                FetchRequest(
                    url=resource.url,
                    resource_id=resource_id,
                    extract_mode=extract_mode,
                    query=query,
                    update_resource_status=update_resource_status,
                )
            )
        return requests

    async def wait_for_background_writes(self) -> None:
        """Wait for pending fire-and-forget remote writes."""
        while self._background_writes:
            await asyncio.gather(*list(self._background_writes), return_exceptions=True)

    async def close(self) -> None:
        """Drain pending remote writes and close the HTTP clients this fetcher uses."""
        await self.wait_for_background_writes()
        await self.http_fetcher.close()
        if self.remote_store is not None:
            await self.remote_store.close()

    def session_cache_size(self) -> int:
        return len(self.session_cache)

    def session_cache_evictions(self) -> int:
        return self.session_cache.evictions

    def clear_session_cache(self) -> None:
        self.session_cache.clear()

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def _resolve_request(self, request: FetchRequest) -> tuple[str, ResourceInfo | None]:
        url = request.url
        resource: ResourceInfo | None = None

        if not url and request.resource_id and self.resource_catalog is not None:
            resource = self.resource_catalog.get_by_id(request.resource_id)
            if resource is not None:
                url = resource.url

        if not url:
            raise InvalidFetchRequestError(
                "FetchRequest requires either url or a valid resource_id"
            )

        if resource is None and self.resource_catalog is not None:
            resource = self.resource_catalog.get_by_url(url)
        return url, resource

    def _with_excerpts(self, source: FetchedSource, request: FetchRequest) -> FetchedSource:
        excerpts: list[str] = []
        if request.extract_mode == "relevant" and request.query and source.content:
            excerpts = extract_relevant_excerpts(source.content, request.query)
        if excerpts == source.relevant_excerpts:
            return source
        return source.model_copy(update={"relevant_excerpts": excerpts})

    async def _fetch_once(self, url: str, resource: ResourceInfo | None) -> FetchedSource:
        task = self._in_flight.get(url)
        if task is None:
            task = asyncio.create_task(self._resolve(url, resource))
            self._in_flight[url] = task
            task.add_done_callback(lambda done, url=url: self._forget_in_flight(url, done))
        else:
            logger.debug("Joining in-flight fetch", url=url)
        # One caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    def _forget_in_flight(self, url: str, task: asyncio.Task[FetchedSource]) -> None:
        if self._in_flight.get(url) is task:
            del self._in_flight[url]

    async def _resolve(self, url: str, resource: ResourceInfo | None) -> FetchedSource:
        source: FetchedSource | None = None
        for resolver in self._resolvers:
            source = await resolver(url, resource)
            if source is not None:
                break
        assert source is not None  # the network resolver always returns a result
        self.session_cache.set(url, source)
        return source

    def _reflect_status(self, resource: ResourceInfo, source: FetchedSource) -> None:
        assert self.resource_catalog is not None
        try:
            self.resource_catalog.update_fetch_status(
                resource.id,
                fetch_status=source.status.value,
                fetched_at=source.fetched_at,
                fetched_title=source.title or None,
            )
        except Exception as e:
            logger.warning("Failed to update resource fetch status", resource_id=resource.id, error=str(e))

    def _build_source(
        self,
        url: str,
        resource: ResourceInfo | None,
        *,
        title: str,
        content: str,
        status: FetchStatus,
        fetched_at: datetime,
    ) -> FetchedSource:
        return FetchedSource(
            url=url,
            title=title or (resource.title if resource else ""),
            fetched_at=fetched_at.isoformat(),
            content=content,
            relevant_excerpts=[],
            status=status,
            resource=resource,
        )

    def _source_from_record(
        self, url: str, resource: ResourceInfo | None, record: CitationContentRecord
    ) -> FetchedSource:
        content = record.full_text or ""
        return self._build_source(
            url,
            resource,
            title=record.page_title or "",
            content=content,
            status=FetchStatus.PAYWALL if detect_paywall(content) else FetchStatus.OK,
            fetched_at=_as_utc(record.fetched_at),
        )

    # ------------------------------------------------------------------
    # Resolvers
    # ------------------------------------------------------------------

    async def _resolve_blocked_domain(
        self, url: str, resource: ResourceInfo | None
    ) -> FetchedSource | None:
        if not is_blocked_domain(url):
            return None
        logger.info("Skipping blocked domain", url=url, domain=get_domain(url))
        return self._build_source(
            url, resource, title="", content="", status=FetchStatus.ERROR, fetched_at=_now()
        )

    async def _resolve_remote(
        self, url: str, resource: ResourceInfo | None
    ) -> FetchedSource | None:
        if self.remote_store is None or not self.remote_store.enabled:
            return None

        result = await self.remote_store.get_citation_content(url)
        if not result.ok or result.data is None:
            if result.error not in (None, "not_found"):
                logger.debug("Remote tier unavailable", url=url, error=result.error)
            return None

        record = result.data
        if not record.full_text:
            return None
        if _is_stale(record):
            logger.debug("Remote tier entry stale", url=url, fetched_at=record.fetched_at.isoformat())
            return None

        logger.debug("Remote tier hit", url=url)
        await self._save_embedded(record)
        return self._source_from_record(url, resource, record)

    async def _resolve_embedded(
        self, url: str, resource: ResourceInfo | None
    ) -> FetchedSource | None:
        if self.embedded_store is None:
            return None
        try:
            record = await self.embedded_store.get_by_url(url)
        except Exception as e:
            logger.warning("Embedded tier read failed", url=url, error=str(e))
            return None
        if record is None or not record.full_text:
            return None
        if _is_stale(record):
            logger.debug(
                "Embedded tier entry stale", url=url, fetched_at=record.fetched_at.isoformat()
            )
            return None

        logger.debug("Embedded tier hit", url=url)
        return self._source_from_record(url, resource, record)

    async def _resolve_network(self, url: str, resource: ResourceInfo | None) -> FetchedSource:
        fetched_at = _now()
        content_type = "text/html"

        page = await self._fetch_rich(url)
        if page is not None:
            title, content, error = page.title, page.markdown, None
            http_status = page.status_code or 200
            content_type = "text/markdown"
        else:
            result = await self.http_fetcher.fetch(url)
            title, content, http_status, error = (
                result.title,
                result.content,
                result.http_status,
                result.error,
            )

        status = determine_status(content, http_status, error)
        logger.info(
            "Source fetched",
            url=url,
            status=status.value,
            http_status=http_status,
            content_length=len(content),
            error=error,
        )

        if content:
            await self._persist(
                CitationContentRecord(
                    url=url,
                    page_title=title,
                    full_text=content,
                    fetched_at=fetched_at,
                    http_status=http_status,
                    content_type=content_type,
                    content_length=len(content),
                )
            )

        return self._build_source(
            url, resource, title=title, content=content, status=status, fetched_at=fetched_at
        )

    async def _fetch_rich(self, url: str) -> CrawledPage | None:
        if self.crawl_client is None or not self.rich_fetch_breaker.allows_call():
            return None
        try:
            return await self.rich_fetch_breaker.call(self.crawl_client.crawl_url, url)
        except (CrawlError, CircuitOpenError) as e:
            logger.info("Rich fetch unavailable, using built-in fetch", url=url, error=str(e))
            return None

    # ------------------------------------------------------------------
    # Persistence (best effort)
    # ------------------------------------------------------------------

    async def _persist(self, record: CitationContentRecord) -> None:
        await self._save_embedded(record)
        if self.remote_store is not None and self.remote_store.enabled:
            task = asyncio.create_task(self._save_remote(record))
            self._background_writes.add(task)
            task.add_done_callback(self._background_writes.discard)

    async def _save_embedded(self, record: CitationContentRecord) -> None:
        if self.embedded_store is None:
            return
        try:
            await self.embedded_store.upsert(record)
        except Exception as e:
            logger.warning("Embedded tier write failed", url=record.url, error=str(e))

    async def _save_remote(self, record: CitationContentRecord) -> None:
        assert self.remote_store is not None
        try:
            result = await self.remote_store.upsert_citation_content(record)
        except Exception as e:
            logger.warning("Remote tier write failed", url=record.url, error=str(e))
            return
        if not result.ok:
            logger.warning(
                "Remote tier write rejected", url=record.url, error=result.error, message=result.message
            )


# ----------------------------------------------------------------------
# Default instance
# ----------------------------------------------------------------------

_source_fetcher: SourceFetcher | None = None


def get_source_fetcher() -> SourceFetcher:
    """Get or create the process-wide SourceFetcher built from settings."""
    global _source_fetcher
    if _source_fetcher is None:
        _source_fetcher = SourceFetcher(
            crawl_client=Crawl4AIClient() if settings.ENABLE_RICH_FETCH else None,
            embedded_store=CitationContentRepository(get_session_factory()),
            remote_store=WikiServerClient() if settings.WIKI_SERVER_URL else None,
        )
        logger.info(
            "SourceFetcher initialized",
            rich_fetch=settings.ENABLE_RICH_FETCH,
            remote_tier=bool(settings.WIKI_SERVER_URL),
            session_cache_capacity=settings.SESSION_CACHE_CAPACITY,
        )
    return _source_fetcher


async def fetch_source(request: FetchRequest) -> FetchedSource:
    """Fetch one source with the default fetcher."""
    return await get_source_fetcher().fetch_source(request)


async def fetch_sources(
    requests: Sequence[FetchRequest],
    concurrency: int | None = None,
    delay_ms: int | None = None,
) -> list[FetchedSource]:
    """Fetch many sources with the default fetcher, preserving order."""
    return await get_source_fetcher().fetch_sources(requests, concurrency, delay_ms)
