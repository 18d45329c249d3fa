"""Source fetching models shared by the fetcher, the auditor and the API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FetchStatus(str, Enum):
    """Outcome of resolving a source URL.

    ok: content retrieved
    paywall: content looks like a login or subscription wall
    dead: definitive HTTP failure (4xx/5xx after retries)
    error: source could not be evaluated (network failure, blocked domain,
        non-HTML content)
    """

    OK = "ok"
    PAYWALL = "paywall"
    DEAD = "dead"
    ERROR = "error"


class ResourceInfo(BaseModel):
    """Catalog metadata for a known resource."""

    id: str = Field(..., description="Resource identifier")
    url: str = Field(..., description="Canonical resource URL")
    title: str = Field(default="", description="Resource title")
    type: str = Field(default="web", description="Resource type (paper, blog, report, ...)")
    summary: str | None = Field(default=None, description="Short summary")
    authors: list[str] = Field(default_factory=list, description="Author names")
    tags: list[str] = Field(default_factory=list, description="Free-form tags")


class FetchRequest(BaseModel):
    """Request to fetch a single source.

    Either ``url`` or ``resource_id`` must resolve to a URL.
    """

    url: str | None = Field(default=None, description="Source URL")
    resource_id: str | None = Field(default=None, description="Catalog resource id")
    extract_mode: Literal["full", "relevant"] = Field(
        default="full", description="'relevant' also extracts excerpts for the query"
    )
    query: str | None = Field(default=None, description="Query used for excerpt extraction")
    update_resource_status: bool = Field(
        default=False, description="Reflect the fetch outcome back to the resource catalog"
    )


class FetchedSource(BaseModel):
    """Canonical fetch result for one URL. Immutable once built."""

    url: str
    title: str = ""
    fetched_at: str = Field(..., description="ISO-8601 fetch timestamp")
    content: str = Field(default="", description="Cleaned page text, capped in length")
    relevant_excerpts: list[str] = Field(
        default_factory=list,
        description="Paragraphs matching the query (empty unless extract_mode='relevant')",
    )
    status: FetchStatus
    resource: ResourceInfo | None = None

    model_config = ConfigDict(frozen=True)


class CitationContentRecord(BaseModel):
    """Row shape shared by the embedded and remote content tiers."""

    url: str
    page_title: str | None = None
    full_text: str | None = None
    fetched_at: datetime
    http_status: int | None = None
    content_type: str | None = None
    content_length: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
