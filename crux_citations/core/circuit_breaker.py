"""Circuit breaker for external service calls.

Temporarily stops calling a failing dependency (the rich fetch strategy, the
LLM provider) so callers fall back quickly instead of waiting on timeouts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable


class CircuitState(Enum):
    """Circuit breaker states.

    CLOSED: Normal operation, calls pass through
    OPEN: Service failing, calls rejected immediately
    HALF_OPEN: Testing recovery, limited calls allowed
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    pass


@dataclass
class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    Opens after ``failure_threshold`` consecutive failures, then lets one
    trial call through (HALF_OPEN) once ``timeout`` seconds have elapsed.
    Exceptions listed in ``excluded_exceptions`` propagate but reset
    the failure count like a successful call.

    Example:
        >>> breaker = CircuitBreaker(failure_threshold=3, timeout=60.0)
        >>> page = await breaker.call(crawl_client.crawl_url, url)

    Attributes:
        failure_threshold: Number of failures before opening circuit
        timeout: Seconds before testing recovery (HALF_OPEN)
        excluded_exceptions: Exception types that do not count as failures
    """

    failure_threshold: int = 5
    timeout: float = 60.0
    excluded_exceptions: tuple[type[Exception], ...] = ()

    state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    failure_count: int = field(default=0, init=False)
    last_failure_time: datetime | None = field(default=None, init=False)

    def allows_call(self) -> bool:
        """Whether a call would currently be attempted."""
        return self.state != CircuitState.OPEN or self._should_attempt_reset()

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """Execute an async function with circuit breaker protection.

        Args:
            func: Async function to call
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Function result if successful

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Whatever func raises
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
            else:
                raise CircuitOpenError("Circuit breaker open - service unavailable")

        try:
            result = await func(*args, **kwargs)
        except self.excluded_exceptions:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def record_failure(self) -> None:
        """Count a failure observed outside of call()."""
        self._on_failure()

    def _on_success(self) -> None:
        """Handle successful call - reset state to CLOSED."""
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        """Handle failed call - increment count and possibly OPEN circuit."""
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)

        if self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN

    def _should_attempt_reset(self) -> bool:
        """Check if timeout elapsed to test recovery."""
        if not self.last_failure_time:
            return True

        elapsed = datetime.now(timezone.utc) - self.last_failure_time
        return elapsed >= timedelta(seconds=self.timeout)
