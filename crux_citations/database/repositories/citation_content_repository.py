"""Repository for the embedded citation content tier."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...models.source import CitationContentRecord
from ..models import CitationContent


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round trip
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CitationContentRepository:
    """Read and write fetched source text keyed by URL.

    Each call opens its own short-lived session so the repository can be
    shared by concurrent fetches.

    Example:
        >>> repo = CitationContentRepository(get_session_factory())
        >>> await repo.upsert(record)
        >>> (await repo.get_by_url(record.url)).page_title
        'Example Domain'
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize repository with a session factory.

        Args:
            session_factory: Async SQLAlchemy session factory
        """
        self.session_factory = session_factory

    async def get_by_url(self, url: str) -> CitationContentRecord | None:
        """Return the stored record for ``url`` or None."""
        async with self.session_factory() as session:
            result = await session.execute(select(CitationContent).where(CitationContent.url == url))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return CitationContentRecord(
                url=row.url,
                page_title=row.page_title,
                full_text=row.full_text,
                fetched_at=_as_utc(row.fetched_at),
                http_status=row.http_status,
                content_type=row.content_type,
                content_length=row.content_length,
                created_at=_as_utc(row.created_at),
                updated_at=_as_utc(row.updated_at),
            )

    async def upsert(self, record: CitationContentRecord) -> None:
        """Insert or replace the row for ``record.url``."""
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(CitationContent, record.url)
                if row is None:
                    row = CitationContent(url=record.url)
                    session.add(row)
                row.page_title = record.page_title
                row.full_text = record.full_text
                row.fetched_at = record.fetched_at
                row.http_status = record.http_status
                row.content_type = record.content_type
                row.content_length = record.content_length

    async def delete(self, url: str) -> bool:
        """Delete the row for ``url``. Returns whether it existed."""
        async with self.session_factory() as session:
            async with session.begin():
                row = await session.get(CitationContent, url)
                if row is None:
                    return False
                await session.delete(row)
                return True
