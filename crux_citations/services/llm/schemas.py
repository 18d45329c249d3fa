"""Schemas for the LLM service."""

from typing import Protocol

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = Field(default=0, description="Number of tokens in prompt")
    completion_tokens: int = Field(default=0, description="Number of tokens in completion")
    total_tokens: int = Field(default=0, description="Total number of tokens")


class ChatResponse(BaseModel):
    """Non-streaming chat completion result."""

    content: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None


class LLMCaller(Protocol):
    """Text-in/text-out LLM call used by the citation verifier.

    ``OpenRouterClient.complete`` satisfies this; tests pass an AsyncMock.
    """

    async def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        title: str | None = None,
    ) -> str: ...


class LLMClientError(Exception):
    """Base exception for LLM client errors."""

    pass
