"""Tests for the OpenRouter LLM client.

The AsyncOpenAI client is a MagicMock; retries sleep through a patched
_sleep_with_backoff so the suite stays fast.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APITimeoutError, BadRequestError, RateLimitError
from openai.types.chat import ChatCompletion, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice
from openai.types.completion_usage import CompletionUsage

from crux_citations.core.circuit_breaker import CircuitBreaker, CircuitState
from crux_citations.core.config import settings
from crux_citations.services.llm.openrouter_client import OpenRouterClient
from crux_citations.services.llm.schemas import LLMClientError


def _create_mock_request():
    """Create a mock request for OpenAI exceptions."""
    return httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")


def _create_mock_response(status_code: int):
    """Create a mock response for OpenAI exceptions."""
    return httpx.Response(status_code, request=_create_mock_request())


def _create_rate_limit_error(message: str = "Rate limit exceeded"):
    return RateLimitError(
        message, response=_create_mock_response(429), body={"error": {"message": message}}
    )


def _create_bad_request_error(message: str = "Invalid model"):
    return BadRequestError(
        message, response=_create_mock_response(400), body={"error": {"message": message}}
    )


@pytest.fixture
def mock_chat_response():
    """Create a mock successful chat response."""
    return ChatCompletion(
        id="chatcmpl-test123",
        object="chat.completion",
        created=1234567890,
        model="google/gemini-2.0-flash-001",
        choices=[
            Choice(
                index=0,
                message=ChatCompletionMessage(
                    role="assistant", content='{"verdict": "verified"}'
                ),
                finish_reason="stop",
            )
        ],
        usage=CompletionUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
    )


@pytest.fixture
def mock_openai_client(mock_chat_response):
    """Mock AsyncOpenAI client returning ``mock_chat_response``."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=mock_chat_response)
    return client


@pytest.fixture
def breaker() -> CircuitBreaker:
    """Create a circuit breaker isolated from the module-level one."""
    return CircuitBreaker(failure_threshold=5, timeout=60.0)


@pytest.fixture
def llm_client(mock_openai_client, breaker) -> OpenRouterClient:
    """Create a client on the mocked SDK with backoff sleeps stubbed out."""
    client = OpenRouterClient(
        api_key="test-key", client=mock_openai_client, circuit_breaker=breaker, max_retries=2
    )
    client._sleep_with_backoff = AsyncMock()
    return client


class TestOpenRouterClientInitialization:
    """Test OpenRouterClient initialization and configuration."""

    def test_defaults_from_settings(self, mock_openai_client) -> None:
        """Test model, base URL and temperature come from settings."""
        client = OpenRouterClient(api_key="test-key", client=mock_openai_client)

        assert client.model == settings.CITATION_LLM_MODEL
        assert client.base_url == settings.OPENROUTER_BASE_URL
        assert client.temperature == settings.CITATION_LLM_TEMPERATURE

    def test_missing_api_key_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test construction fails without an API key."""
        monkeypatch.setattr(settings, "OPENROUTER_API_KEY", None)

        with pytest.raises(ValueError, match="API key is required"):
            OpenRouterClient()


class TestOpenRouterClientChat:
    """Test successful completions."""

    @pytest.mark.asyncio
    async def test_chat_returns_response(self, llm_client, mock_openai_client) -> None:
        """Test a completion is mapped onto ChatResponse with usage."""
        response = await llm_client.chat(
            messages=[{"role": "user", "content": "hi"}], max_tokens=100
        )

        assert response.content == '{"verdict": "verified"}'
        assert response.model == "google/gemini-2.0-flash-001"
        assert response.usage.total_tokens == 30
        assert response.finish_reason == "stop"
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 100
        assert kwargs["stream"] is False

    @pytest.mark.asyncio
    async def test_complete_sends_system_and_user_turns(
        self, llm_client, mock_openai_client
    ) -> None:
        """Test complete sends a system and a user message and returns the text."""
        text = await llm_client.complete(
            "You verify citations.",
            "Claim and source",
            model="openai/gpt-4o-mini",
            max_tokens=500,
            title="LongtermWiki Citation Audit",
        )

        assert text == '{"verdict": "verified"}'
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "You verify citations."},
            {"role": "user", "content": "Claim and source"},
        ]
        assert kwargs["extra_headers"] == {"X-Title": "LongtermWiki Citation Audit"}


class TestOpenRouterClientRetries:
    """Test retry, bad-request and circuit breaker behaviour."""

    @pytest.mark.asyncio
    async def test_rate_limit_retried(
        self, llm_client, mock_openai_client, mock_chat_response
    ) -> None:
        """Test rate limits and timeouts are retried with backoff."""
        mock_openai_client.chat.completions.create.side_effect = [
            _create_rate_limit_error(),
            APITimeoutError(request=_create_mock_request()),
            mock_chat_response,
        ]

        response = await llm_client.chat(messages=[{"role": "user", "content": "hi"}])

        assert response.content == '{"verdict": "verified"}'
        assert mock_openai_client.chat.completions.create.await_count == 3
        assert llm_client._sleep_with_backoff.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, llm_client, mock_openai_client) -> None:
        """Test LLMClientError is raised once retries run out."""
        mock_openai_client.chat.completions.create.side_effect = _create_rate_limit_error()

        with pytest.raises(LLMClientError, match="Maximum number of retries"):
            await llm_client.chat(messages=[{"role": "user", "content": "hi"}])

        assert mock_openai_client.chat.completions.create.await_count == 3

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, llm_client, mock_openai_client) -> None:
        """Test a 400 response fails without retrying."""
        mock_openai_client.chat.completions.create.side_effect = _create_bad_request_error()

        with pytest.raises(LLMClientError, match="Bad request"):
            await llm_client.chat(messages=[{"role": "user", "content": "hi"}])

        assert mock_openai_client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_quickly(self, mock_openai_client) -> None:
        """Test an open breaker rejects calls without reaching the SDK."""
        breaker = CircuitBreaker(failure_threshold=1, timeout=300.0)
        client = OpenRouterClient(
            api_key="test-key", client=mock_openai_client, circuit_breaker=breaker, max_retries=0
        )
        mock_openai_client.chat.completions.create.side_effect = _create_rate_limit_error()

        with pytest.raises(LLMClientError):
            await client.chat(messages=[{"role": "user", "content": "hi"}])
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(LLMClientError, match="circuit open"):
            await client.chat(messages=[{"role": "user", "content": "hi"}])

        assert mock_openai_client.chat.completions.create.await_count == 1
