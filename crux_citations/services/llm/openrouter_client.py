"""OpenRouter LLM client with retry logic.

OpenAI-compatible client with exponential backoff and jitter, guarded by a
circuit breaker so a failing provider is skipped quickly.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

import structlog
from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from ...core.circuit_breaker import CircuitBreaker, CircuitOpenError
from ...core.config import settings
from .schemas import ChatResponse, LLMClientError, TokenUsage

logger = structlog.get_logger(__name__)

# LLM circuit breaker singleton
_llm_circuit_breaker: CircuitBreaker | None = None


def get_llm_circuit_breaker() -> CircuitBreaker:
    """Get or initialize the circuit breaker for LLM operations."""
    global _llm_circuit_breaker
    if _llm_circuit_breaker is None:
        _llm_circuit_breaker = CircuitBreaker(
            failure_threshold=settings.LLM_CIRCUIT_BREAKER_THRESHOLD,
            timeout=float(settings.LLM_CIRCUIT_BREAKER_TIMEOUT),
        )
        logger.info(
            "LLM circuit breaker initialized",
            threshold=settings.LLM_CIRCUIT_BREAKER_THRESHOLD,
            timeout=settings.LLM_CIRCUIT_BREAKER_TIMEOUT,
        )
    return _llm_circuit_breaker


class OpenRouterClient:
    """OpenRouter LLM client with OpenAI-compatible interface.

    Features:
    - Async chat completion
    - Exponential backoff retry with jitter to avoid thundering herd
    - No retry on 400 Bad Request
    - Circuit breaker around the whole retry loop

    Example:
        >>> client = OpenRouterClient()
        >>> text = await client.complete("You are terse.", "Say hi", max_tokens=50)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_retries: int = 3,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        timeout: float | None = None,
        client: AsyncOpenAI | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        """Initialize OpenRouter client.

        Args:
            api_key: OpenRouter API key (defaults to settings.OPENROUTER_API_KEY)
            base_url: Base URL for OpenRouter API
            model: Default model (defaults to settings.CITATION_LLM_MODEL)
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay between retries (seconds)
            exponential_base: Base for exponential backoff calculation
            timeout: Request timeout (seconds)
            client: Preconfigured AsyncOpenAI client
            circuit_breaker: Breaker to use instead of the shared one

        Raises:
            ValueError: If API key is not provided
        """
        llm_config = settings.citation_llm_config
        self.api_key = api_key or settings.OPENROUTER_API_KEY
        if client is None and not self.api_key:
            raise ValueError(
                "API key is required. Set OPENROUTER_API_KEY or pass api_key parameter."
            )

        self.base_url = base_url or settings.OPENROUTER_BASE_URL
        self.model = model if model is not None else llm_config.model
        self.temperature = llm_config.temperature
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.timeout = timeout if timeout is not None else float(llm_config.timeout)
        self.circuit_breaker = circuit_breaker

        self.client = client or AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
        )

    async def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        title: str | None = None,
        **kwargs: Any,
    ) -> ChatResponse:
        """Execute a non-streaming chat completion.

        Args:
            messages: List of chat messages with 'role' and 'content'
            model: Model override for this call
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens to generate
            title: Application title reported to OpenRouter (X-Title header)
            **kwargs: Additional parameters for the OpenAI API

        Returns:
            ChatResponse with content, model, usage and finish_reason

        Raises:
            LLMClientError: If the request fails after all retries or the circuit is open
        """
        model = model or self.model
        temperature = self.temperature if temperature is None else temperature
        if title:
            kwargs.setdefault("extra_headers", {})["X-Title"] = title

        logger.info(
            "LLM request start",
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            messages=len(messages),
        )

        async def _execute() -> ChatResponse:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,  # type: ignore[arg-type]
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
                **kwargs,
            )
            usage = response.usage
            result = ChatResponse(
                content=response.choices[0].message.content or "",
                model=response.model or model,
                usage=TokenUsage(
                    prompt_tokens=usage.prompt_tokens if usage else 0,
                    completion_tokens=usage.completion_tokens if usage else 0,
                    total_tokens=usage.total_tokens if usage else 0,
                ),
                finish_reason=response.choices[0].finish_reason,
            )
            logger.info(
                "LLM response success",
                model=result.model,
                total_tokens=result.usage.total_tokens,
            )
            return result

        breaker = self.circuit_breaker or get_llm_circuit_breaker()
        try:
            return await breaker.call(self._retry_with_backoff, _execute)
        except CircuitOpenError as e:
            raise LLMClientError(f"LLM circuit open: {e}") from e

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        title: str | None = None,
    ) -> str:
        """Single system+user turn returning the raw response text."""
        response = await self.chat(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=model,
            max_tokens=max_tokens,
            title=title,
        )
        return response.content

    async def _retry_with_backoff(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Execute function with exponential backoff retry.

        Args:
            fn: Async function to execute

        Returns:
            Result from fn

        Raises:
            LLMClientError: If all retries exhausted or non-retriable error
        """
        delay = 1.0
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return await fn()

            # RateLimitError and APITimeoutError are subclasses of APIError
            except (RateLimitError, APITimeoutError) as e:
                last_error = e
                logger.warning(
                    "LLM transient error",
                    error=type(e).__name__,
                    attempt=attempt + 1,
                    max_attempts=self.max_retries + 1,
                )

            except APIError as e:
                last_error = e
                if getattr(e, "status_code", None) == 400:
                    logger.error("LLM bad request", error=str(e))
                    raise LLMClientError(f"Bad request: {e}") from e
                logger.warning("LLM API error", error=str(e), attempt=attempt + 1)

            if attempt < self.max_retries:
                await self._sleep_with_backoff(delay)
                delay = min(delay * self.exponential_base, self.max_delay)

        raise LLMClientError(
            f"Maximum number of retries ({self.max_retries}) exceeded. Last error: {last_error}"
        ) from last_error

    async def _sleep_with_backoff(self, delay: float) -> None:
        """Sleep with jitter: min(delay, max_delay) * (1 + random())."""
        jitter = 1.0 + random.random()
        actual_delay = min(delay, self.max_delay) * jitter
        logger.debug("LLM backoff", delay=round(actual_delay, 2))
        await asyncio.sleep(actual_delay)


_default_client: OpenRouterClient | None = None


def get_llm_client() -> OpenRouterClient:
    """Get or create the shared OpenRouter client."""
    global _default_client
    if _default_client is None:
        _default_client = OpenRouterClient()
    return _default_client
