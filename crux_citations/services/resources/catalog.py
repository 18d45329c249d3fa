"""Resource catalog collaborator.

The fetcher uses the catalog to resolve resource ids to URLs, attach
resource metadata to fetched sources and record fetch outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol
from urllib.parse import urlparse

import structlog

from ...models.source import ResourceInfo

logger = structlog.get_logger(__name__)


@dataclass
class FetchStatusUpdate:
    """Fetch outcome recorded against a resource."""

    fetch_status: str
    fetched_at: str
    fetched_title: str | None = None


class ResourceCatalog(Protocol):
    """Interface the fetcher expects from a resource catalog."""

    def get_by_id(self, resource_id: str) -> ResourceInfo | None: ...

    def get_by_url(self, url: str) -> ResourceInfo | None: ...

    def update_fetch_status(
        self,
        resource_id: str,
        *,
        fetch_status: str,
        fetched_at: str,
        fetched_title: str | None = None,
    ) -> None: ...


def normalize_url(url: str) -> str:
    """Normalize a URL for catalog lookup.

    Scheme, a leading 'www.', host case and a trailing slash are ignored.
    Query strings are kept.
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url.strip()
    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    normalized = f"{host}{path}"
    if parsed.query:
        normalized = f"{normalized}?{parsed.query}"
    return normalized


class InMemoryResourceCatalog:
    """Dictionary-backed catalog, suitable for tests and small deployments.

    Example:
        >>> catalog = InMemoryResourceCatalog([ResourceInfo(id="r1", url="https://example.com/a")])
        >>> catalog.get_by_url("http://www.example.com/a/").id
        'r1'
    """

    def __init__(self, resources: Iterable[ResourceInfo] = ()) -> None:
        self._by_id: dict[str, ResourceInfo] = {}
        self._by_url: dict[str, ResourceInfo] = {}
        self.fetch_status: dict[str, FetchStatusUpdate] = {}
        for resource in resources:
            self.add(resource)

    def add(self, resource: ResourceInfo) -> None:
        """Register or replace a resource."""
        self._by_id[resource.id] = resource
        self._by_url[normalize_url(resource.url)] = resource

    def get_by_id(self, resource_id: str) -> ResourceInfo | None:
        return self._by_id.get(resource_id)

    def get_by_url(self, url: str) -> ResourceInfo | None:
        return self._by_url.get(normalize_url(url))

    def update_fetch_status(
        self,
        resource_id: str,
        *,
        fetch_status: str,
        fetched_at: str,
        fetched_title: str | None = None,
    ) -> None:
        """Record the latest fetch outcome for a resource."""
        if resource_id not in self._by_id:
            raise KeyError(f"Unknown resource: {resource_id}")
        self.fetch_status[resource_id] = FetchStatusUpdate(
            fetch_status=fetch_status,
            fetched_at=fetched_at,
            fetched_title=fetched_title,
        )
        logger.debug("Resource fetch status updated", resource_id=resource_id, status=fetch_status)

    def __len__(self) -> int:
        return len(self._by_id)
