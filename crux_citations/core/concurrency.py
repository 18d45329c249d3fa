"""Task admission control for bounded async concurrency.

A tiny p-limit style primitive: callers submit coroutine functions and at
most ``limit`` of them run at once. Waiters are admitted strictly in
submission order, and a failing or cancelled task always hands its slot on.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """Bound how many async operations run simultaneously.

    Example:
        >>> limiter = ConcurrencyLimiter(3)
        >>> results = await asyncio.gather(*(limiter.run(verify, g) for g in groups))

    Attributes:
        limit: Maximum number of concurrently running operations
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        """Number of operations currently running."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of operations queued for admission."""
        return sum(1 for w in self._waiters if not w.done())

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` once a slot is free.

        Args:
            fn: Coroutine function to run
            *args: Positional arguments for fn
            **kwargs: Keyword arguments for fn

        Returns:
            Whatever fn returns; exceptions propagate to the caller
        """
        await self._acquire()
        try:
            return await fn(*args, **kwargs)
        finally:
            self._release()

    __call__ = run

    async def _acquire(self) -> None:
        if self._active < self.limit and not self._waiters:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation; pass it on.
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _release(self) -> None:
        self._active -= 1
        self._drain()

    def _drain(self) -> None:
        while self._waiters and self._active < self.limit:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)
