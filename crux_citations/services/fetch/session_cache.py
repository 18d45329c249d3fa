"""In-process LRU tier of the source cache."""

from __future__ import annotations

from collections import OrderedDict

from ...models.source import FetchedSource


class SessionCache:
    """Bounded least-recently-used map from URL to FetchedSource.

    Example:
        >>> cache = SessionCache(capacity=2)
        >>> cache.set(a.url, a); cache.set(b.url, b); cache.get(a.url)
        >>> cache.set(c.url, c)  # evicts b
        >>> cache.evictions
        1

    Attributes:
        capacity: Maximum number of entries kept
        evictions: Number of entries dropped to stay within capacity
    """

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError(f"Cache capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.evictions = 0
        self._entries: OrderedDict[str, FetchedSource] = OrderedDict()

    def get(self, url: str) -> FetchedSource | None:
        """Return the cached source and mark it most recently used."""
        source = self._entries.get(url)
        if source is not None:
            self._entries.move_to_end(url)
        return source

    def set(self, url: str, source: FetchedSource) -> None:
        """Insert or refresh an entry, evicting the oldest beyond capacity."""
        self._entries[url] = source
        self._entries.move_to_end(url)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.evictions += 1

    def evict(self, url: str) -> bool:
        """Drop one entry. Returns whether it was present."""
        return self._entries.pop(url, None) is not None

    def clear(self) -> None:
        """Drop every entry and reset the eviction counter."""
        self._entries.clear()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries
