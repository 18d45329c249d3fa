"""API request/response schemas for the source and audit endpoints.

Library models (FetchRequest, FetchedSource, AuditRequest, AuditResult) are
used directly as request/response bodies; this module only adds the
API-specific envelopes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from ...models.source import FetchRequest

# ============================================================================
# Source Endpoint Schemas
# ============================================================================


class FetchBatchRequest(BaseModel):
    """Request model for /v1/sources/fetch-batch.

    Attributes:
        requests: Fetch requests, answered in the same order
        concurrency: Batch size (defaults to FETCH_CONCURRENCY)
        delay_ms: Delay between batches (defaults to FETCH_BATCH_DELAY_MS)
    """

    requests: list[FetchRequest] = Field(..., min_length=1, max_length=200)
    concurrency: int | None = Field(None, ge=1, le=50, description="Requests per batch")
    delay_ms: int | None = Field(None, ge=0, le=60_000, description="Delay between batches")


class CacheStatsResponse(BaseModel):
    """In-process cache diagnostics."""

    size: int = Field(..., description="Entries currently cached")
    evictions: int = Field(..., description="Entries evicted since the last clear")
    capacity: int = Field(..., description="Maximum entries")


class CacheClearResponse(BaseModel):
    """Result of clearing the in-process cache."""

    cleared: int = Field(..., description="Entries removed")
