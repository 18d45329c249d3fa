"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from crux_citations.clients.wiki_server_client import ApiResult
from crux_citations.database.session import build_engine, create_session_factory, init_db
from crux_citations.models.source import CitationContentRecord, FetchedSource, FetchStatus
from crux_citations.services.fetch.http_fetcher import HttpFetchResult
from crux_citations.services.fetch.session_cache import SessionCache
from crux_citations.services.fetch.source_fetcher import SourceFetcher

ARTICLE_HTML = """<html>
<head><title>AI Safety Funding Report</title></head>
<body>
<nav>Home | About</nav>
<p>Open Philanthropy granted $50 million to AI safety research organizations in 2023.</p>
<p>The report covers alignment research, interpretability and governance programs.</p>
<footer>Copyright 2024</footer>
</body>
</html>"""

ARTICLE_TEXT = (
    "Open Philanthropy granted $50 million to AI safety research organizations in 2023.\n\n"
    "The report covers alignment research, interpretability and governance programs."
)


class FakeEmbeddedStore:
    """Dict-backed stand-in for CitationContentRepository."""

    def __init__(self) -> None:
        self.records: dict[str, CitationContentRecord] = {}
        self.reads = 0
        self.writes = 0

    async def get_by_url(self, url: str) -> CitationContentRecord | None:
        self.reads += 1
        return self.records.get(url)

    async def upsert(self, record: CitationContentRecord) -> None:
        self.writes += 1
        self.records[record.url] = record


class FakeRemoteStore:
    """Dict-backed stand-in for WikiServerClient."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.records: dict[str, CitationContentRecord] = {}
        self.upserts: list[CitationContentRecord] = []
        self.lookups = 0
        self.closed = False

    async def get_citation_content(self, url: str) -> ApiResult:
        self.lookups += 1
        record = self.records.get(url)
        if record is None:
            return ApiResult.failure("not_found", "Not found")
        return ApiResult.success(record)

    async def upsert_citation_content(self, record: CitationContentRecord) -> ApiResult:
        self.upserts.append(record)
        self.records[record.url] = record
        return ApiResult.success(None)

    async def close(self) -> None:
        self.closed = True


def make_record(
    url: str,
    full_text: str = ARTICLE_TEXT,
    page_title: str = "Stored Title",
    fetched_at: datetime | None = None,
) -> CitationContentRecord:
    """Build a cache tier record fetched now unless fetched_at is given."""
    return CitationContentRecord(
        url=url,
        page_title=page_title,
        full_text=full_text,
        fetched_at=fetched_at or datetime.now(timezone.utc),
        http_status=200,
        content_type="text/html",
        content_length=len(full_text),
    )


def make_source(
    url: str,
    content: str = ARTICLE_TEXT,
    status: FetchStatus = FetchStatus.OK,
    title: str = "",
    relevant_excerpts: list[str] | None = None,
) -> FetchedSource:
    """Build a FetchedSource with the sample article as content."""
    return FetchedSource(
        url=url,
        title=title,
        fetched_at=datetime.now(timezone.utc).isoformat(),
        content=content,
        relevant_excerpts=relevant_excerpts or [],
        status=status,
    )


@pytest.fixture
def ok_result() -> HttpFetchResult:
    """Successful built-in fetch of a short article."""
    return HttpFetchResult(title="AI Safety Funding Report", content=ARTICLE_TEXT, http_status=200)


@pytest.fixture
def http_fetcher(ok_result: HttpFetchResult) -> MagicMock:
    """Built-in fetch strategy returning ``ok_result`` for every URL."""
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=ok_result)
    fetcher.close = AsyncMock()
    return fetcher


@pytest.fixture
def embedded_store() -> FakeEmbeddedStore:
    """Create an empty embedded tier."""
    return FakeEmbeddedStore()


@pytest.fixture
def remote_store() -> FakeRemoteStore:
    """Create an empty, enabled remote tier."""
    return FakeRemoteStore()


@pytest.fixture
def source_fetcher_factory(
    http_fetcher: MagicMock,
    embedded_store: FakeEmbeddedStore,
) -> Callable[..., SourceFetcher]:
    """Build a SourceFetcher wired to in-memory collaborators."""

    def _factory(**overrides) -> SourceFetcher:
        kwargs = {
            "session_cache": SessionCache(capacity=500),
            "http_fetcher": http_fetcher,
            "embedded_store": embedded_store,
        }
        kwargs.update(overrides)
        return SourceFetcher(**kwargs)

    return _factory


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine on a per-test database file with the schema created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'knowledge.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test database."""
    return create_session_factory(db_engine)
