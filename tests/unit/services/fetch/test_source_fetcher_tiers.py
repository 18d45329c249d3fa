"""Tests for SourceFetcher cache tiers, persistence and fetch strategies."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import ARTICLE_TEXT, FakeEmbeddedStore, FakeRemoteStore, make_record

from crux_citations.core.circuit_breaker import CircuitBreaker
from crux_citations.models.source import CitationContentRecord, FetchRequest, FetchStatus
from crux_citations.services.crawl.crawl4ai_client import CrawledPage, CrawlError, CrawlPageError
from crux_citations.services.fetch.http_fetcher import HttpFetchResult

URL = "https://example.com/report"
MARKDOWN = "# AI Safety Funding\n\nOpen Philanthropy granted $50 million to AI safety research."


def days_ago(days: int) -> datetime:
    """Return a UTC timestamp the given number of days in the past."""
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture
def crawl_client() -> MagicMock:
    """Create a rich fetch client mock returning a markdown page."""
    client = MagicMock()
    client.crawl_url = AsyncMock(
        return_value=CrawledPage(
            url=URL, markdown=MARKDOWN, status_code=200, metadata={"title": "Rich Title"}
        )
    )
    return client


@pytest.mark.unit
class TestRemoteTier:
    """Test the wiki server cache tier."""

    @pytest.mark.asyncio
    async def test_fresh_remote_hit_skips_network_and_backfills(
        self, source_fetcher_factory, http_fetcher, embedded_store, remote_store
    ) -> None:
        """Test a fresh remote entry is served and copied into the embedded tier."""
        remote_store.records[URL] = make_record(URL, fetched_at=days_ago(1))
        fetcher = source_fetcher_factory(remote_store=remote_store)

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.status == FetchStatus.OK
        assert source.title == "Stored Title"
        assert source.content == ARTICLE_TEXT
        http_fetcher.fetch.assert_not_awaited()
        assert URL in embedded_store.records

    @pytest.mark.asyncio
    async def test_stale_remote_entry_ignored(
        self, source_fetcher_factory, http_fetcher, remote_store
    ) -> None:
        """Test an entry past the TTL is refetched and the remote copy refreshed."""
        remote_store.records[URL] = make_record(URL, page_title="Old", fetched_at=days_ago(8))
        fetcher = source_fetcher_factory(remote_store=remote_store)

        source = await fetcher.fetch_source(FetchRequest(url=URL))
        await fetcher.wait_for_background_writes()

        http_fetcher.fetch.assert_awaited_once_with(URL)
        assert source.title == "AI Safety Funding Report"
        assert len(remote_store.upserts) == 1
        assert remote_store.upserts[0].page_title == "AI Safety Funding Report"

    @pytest.mark.asyncio
    async def test_remote_entry_without_text_ignored(
        self, source_fetcher_factory, http_fetcher, remote_store
    ) -> None:
        """Test a remote entry with no text counts as a miss."""
        remote_store.records[URL] = make_record(URL, full_text="")
        fetcher = source_fetcher_factory(remote_store=remote_store)

        await fetcher.fetch_source(FetchRequest(url=URL))

        http_fetcher.fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled_remote_tier_not_consulted(self, source_fetcher_factory) -> None:
        """Test a disabled remote store is neither read nor written."""
        remote_store = FakeRemoteStore(enabled=False)
        fetcher = source_fetcher_factory(remote_store=remote_store)

        await fetcher.fetch_source(FetchRequest(url=URL))
        await fetcher.wait_for_background_writes()

        assert remote_store.lookups == 0
        assert remote_store.upserts == []

    @pytest.mark.asyncio
    async def test_remote_write_failure_does_not_fail_fetch(self, source_fetcher_factory) -> None:
        """Test a failing background write leaves the fetch result intact."""
        remote_store = FakeRemoteStore()
        remote_store.upsert_citation_content = AsyncMock(side_effect=RuntimeError("server down"))
        fetcher = source_fetcher_factory(remote_store=remote_store)

        source = await fetcher.fetch_source(FetchRequest(url=URL))
        await fetcher.wait_for_background_writes()

        assert source.status == FetchStatus.OK
        remote_store.upsert_citation_content.assert_awaited_once()


@pytest.mark.unit
class TestEmbeddedTier:
    """Test the embedded SQL cache tier."""

    @pytest.mark.asyncio
    async def test_embedded_hit_skips_network(
        self, source_fetcher_factory, http_fetcher, embedded_store
    ) -> None:
        """Test a fresh embedded entry is served without a network call."""
        embedded_store.records[URL] = make_record(URL, fetched_at=days_ago(2))
        fetcher = source_fetcher_factory()

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.status == FetchStatus.OK
        assert source.title == "Stored Title"
        http_fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_embedded_entry_refetched(
        self, source_fetcher_factory, http_fetcher, embedded_store
    ) -> None:
        """Test an embedded entry past the TTL is refetched and overwritten."""
        embedded_store.records[URL] = make_record(
            URL, full_text="Outdated text about the report.", fetched_at=days_ago(8)
        )
        fetcher = source_fetcher_factory()

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        http_fetcher.fetch.assert_awaited_once_with(URL)
        assert source.content == ARTICLE_TEXT
        assert embedded_store.records[URL].full_text == ARTICLE_TEXT
        assert embedded_store.records[URL].fetched_at > days_ago(1)

    @pytest.mark.asyncio
    async def test_embedded_paywall_record(self, source_fetcher_factory, embedded_store) -> None:
        """Test paywall detection applies to stored content."""
        embedded_store.records[URL] = make_record(URL, full_text="Please sign in to continue.")
        fetcher = source_fetcher_factory()

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.status == FetchStatus.PAYWALL

    @pytest.mark.asyncio
    async def test_embedded_read_failure_falls_through_to_network(
        self, source_fetcher_factory, http_fetcher
    ) -> None:
        """Test a failing embedded read falls through to the network."""
        broken = FakeEmbeddedStore()
        broken.get_by_url = AsyncMock(side_effect=RuntimeError("database is locked"))
        fetcher = source_fetcher_factory(embedded_store=broken)

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.status == FetchStatus.OK
        http_fetcher.fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_embedded_write_failure_does_not_fail_fetch(self, source_fetcher_factory) -> None:
        """Test a failing embedded write leaves the fetch result intact."""
        broken = FakeEmbeddedStore()
        broken.upsert = AsyncMock(side_effect=RuntimeError("disk full"))
        fetcher = source_fetcher_factory(embedded_store=broken)

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.status == FetchStatus.OK


@pytest.mark.unit
class TestPersistence:
    """Test write-through of fresh content."""

    @pytest.mark.asyncio
    async def test_fresh_content_written_to_both_tiers(
        self, source_fetcher_factory, embedded_store, remote_store
    ) -> None:
        """Test fetched content is stored in both tiers with its metadata."""
        fetcher = source_fetcher_factory(remote_store=remote_store)

        await fetcher.fetch_source(FetchRequest(url=URL))
        await fetcher.wait_for_background_writes()

        record: CitationContentRecord = embedded_store.records[URL]
        assert record.full_text == ARTICLE_TEXT
        assert record.page_title == "AI Safety Funding Report"
        assert record.http_status == 200
        assert record.content_type == "text/html"
        assert record.content_length == len(ARTICLE_TEXT)
        assert [r.url for r in remote_store.upserts] == [URL]

    @pytest.mark.asyncio
    async def test_empty_content_not_persisted(
        self, source_fetcher_factory, http_fetcher, embedded_store, remote_store
    ) -> None:
        """Test results without content are not stored."""
        http_fetcher.fetch.return_value = HttpFetchResult(
            title="", content="", http_status=404, error="HTTP 404"
        )
        fetcher = source_fetcher_factory(remote_store=remote_store)

        await fetcher.fetch_source(FetchRequest(url=URL))
        await fetcher.wait_for_background_writes()

        assert embedded_store.writes == 0
        assert remote_store.upserts == []

    @pytest.mark.asyncio
    async def test_second_fetcher_reads_embedded_tier(
        self, source_fetcher_factory, http_fetcher, embedded_store
    ) -> None:
        """A fresh process (new session cache) is served by the embedded tier."""
        await source_fetcher_factory().fetch_source(FetchRequest(url=URL))

        source = await source_fetcher_factory().fetch_source(FetchRequest(url=URL))

        assert source.content == ARTICLE_TEXT
        assert http_fetcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_close_drains_writes_and_closes_clients(
        self, source_fetcher_factory, http_fetcher, remote_store
    ) -> None:
        """Test close waits for remote writes and closes both HTTP clients."""
        fetcher = source_fetcher_factory(remote_store=remote_store)
        await fetcher.fetch_source(FetchRequest(url=URL))

        await fetcher.close()

        assert [r.url for r in remote_store.upserts] == [URL]
        http_fetcher.close.assert_awaited_once()
        assert remote_store.closed is True


@pytest.mark.unit
class TestRichFetchStrategy:
    """Test the crawl4ai strategy and its circuit breaker."""

    @pytest.mark.asyncio
    async def test_rich_strategy_preferred(
        self, source_fetcher_factory, http_fetcher, embedded_store, crawl_client
    ) -> None:
        """Test the rich strategy is used first when configured."""
        fetcher = source_fetcher_factory(crawl_client=crawl_client)

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.title == "Rich Title"
        assert source.content == MARKDOWN
        http_fetcher.fetch.assert_not_awaited()
        assert embedded_store.records[URL].content_type == "text/markdown"

    @pytest.mark.asyncio
    async def test_rich_failure_falls_back_to_builtin(
        self, source_fetcher_factory, http_fetcher, crawl_client
    ) -> None:
        """Test a crawler failure falls back to the built-in fetch."""
        crawl_client.crawl_url.side_effect = CrawlError("browser crashed")
        fetcher = source_fetcher_factory(crawl_client=crawl_client)

        source = await fetcher.fetch_source(FetchRequest(url=URL))

        assert source.content == ARTICLE_TEXT
        http_fetcher.fetch.assert_awaited_once_with(URL)

    @pytest.mark.asyncio
    async def test_open_breaker_skips_rich_strategy(
        self, source_fetcher_factory, http_fetcher, crawl_client
    ) -> None:
        """Test crawler failures open the breaker and later fetches skip the crawler."""
        crawl_client.crawl_url.side_effect = CrawlError("browser crashed")
        fetcher = source_fetcher_factory(
            crawl_client=crawl_client,
            rich_fetch_breaker=CircuitBreaker(failure_threshold=1, timeout=300.0),
        )

        await fetcher.fetch_source(FetchRequest(url="https://example.com/a"))
        await fetcher.fetch_source(FetchRequest(url="https://example.com/b"))

        assert crawl_client.crawl_url.await_count == 1
        assert http_fetcher.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_dead_pages_do_not_open_breaker(
        self, source_fetcher_factory, http_fetcher, crawl_client
    ) -> None:
        """Test page-level crawl errors never open the breaker."""
        crawl_client.crawl_url.side_effect = CrawlPageError("HTTP 404 crawling page")
        breaker = CircuitBreaker(
            failure_threshold=1, timeout=300.0, excluded_exceptions=(CrawlPageError,)
        )
        fetcher = source_fetcher_factory(crawl_client=crawl_client, rich_fetch_breaker=breaker)

        for path in ("a", "b", "c"):
            await fetcher.fetch_source(FetchRequest(url=f"https://example.com/{path}"))

        assert crawl_client.crawl_url.await_count == 3
        assert http_fetcher.fetch.await_count == 3
        assert breaker.allows_call() is True

    def test_default_breaker_ignores_page_errors(self, source_fetcher_factory) -> None:
        """Test the default breaker excludes page-level crawl errors."""
        fetcher = source_fetcher_factory()

        assert fetcher.rich_fetch_breaker.excluded_exceptions == (CrawlPageError,)
