"""LLM service client (OpenRouter)."""

from .openrouter_client import OpenRouterClient, get_llm_client
from .schemas import LLMCaller, LLMClientError

__all__ = [
    "LLMCaller",
    "LLMClientError",
    "OpenRouterClient",
    "get_llm_client",
]
