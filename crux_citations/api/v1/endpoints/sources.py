"""Source fetching endpoints.

Provides API routes for:
- Fetching one source (tiered cache, in-flight deduplication)
- Fetching many sources in order
- In-process cache diagnostics and reset
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from ....models.source import FetchedSource, FetchRequest
from ....services.fetch.source_fetcher import (
    InvalidFetchRequestError,
    SourceFetcher,
    get_source_fetcher,
)
from ..schemas import CacheClearResponse, CacheStatsResponse, FetchBatchRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sources", tags=["sources"])


@router.post("/fetch", response_model=FetchedSource)
async def fetch_source(
    request: FetchRequest,
    fetcher: Annotated[SourceFetcher, Depends(get_source_fetcher)],
) -> FetchedSource:
    """Fetch a single source by URL or resource id.

    Raises:
        HTTPException 422: Neither url nor a known resource_id was given
    """
    try:
        return await fetcher.fetch_source(request)
    except InvalidFetchRequestError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.post("/fetch-batch", response_model=list[FetchedSource])
async def fetch_sources(
    batch: FetchBatchRequest,
    fetcher: Annotated[SourceFetcher, Depends(get_source_fetcher)],
) -> list[FetchedSource]:
    """Fetch several sources; results follow request order."""
    try:
        return await fetcher.fetch_sources(
            batch.requests, concurrency=batch.concurrency, delay_ms=batch.delay_ms
        )
    except InvalidFetchRequestError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(
    fetcher: Annotated[SourceFetcher, Depends(get_source_fetcher)],
) -> CacheStatsResponse:
    """In-process cache size, eviction count and capacity."""
    return CacheStatsResponse(
        size=fetcher.session_cache_size(),
        evictions=fetcher.session_cache_evictions(),
        capacity=fetcher.session_cache.capacity,
    )


@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(
    fetcher: Annotated[SourceFetcher, Depends(get_source_fetcher)],
) -> CacheClearResponse:
    """Drop every in-process cache entry and reset the eviction counter."""
    cleared = fetcher.session_cache_size()
    fetcher.clear_session_cache()
    logger.info("Session cache cleared", entries=cleared)
    return CacheClearResponse(cleared=cleared)
