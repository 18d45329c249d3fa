"""Source fetching: cache tiers, fetch strategies and excerpt extraction."""

from .excerpts import extract_relevant_excerpts, tokenize_query
from .http_fetcher import HttpFetcher, HttpFetchResult
from .session_cache import SessionCache
from .source_fetcher import (
    InvalidFetchRequestError,
    SourceFetcher,
    fetch_source,
    fetch_sources,
    get_source_fetcher,
)

__all__ = [
    "HttpFetchResult",
    "HttpFetcher",
    "InvalidFetchRequestError",
    "SessionCache",
    "SourceFetcher",
    "extract_relevant_excerpts",
    "fetch_source",
    "fetch_sources",
    "get_source_fetcher",
    "tokenize_query",
]
