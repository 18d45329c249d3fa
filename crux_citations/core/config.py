"""Configuration management for the citation auditing toolchain."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseModel):
    """Configuration for a specific LLM.

    Attributes:
        provider: LLM provider (openrouter, etc.)
        model: Model identifier (e.g., 'google/gemini-2.0-flash-001')
        temperature: Sampling temperature (0.0-2.0)
        max_tokens: Maximum tokens to generate per verified claim
        timeout: Request timeout in seconds (10-600)
    """

    provider: str = Field(..., description="LLM provider (openrouter, etc.)")
    model: str = Field(..., description="Model identifier")
    temperature: float = Field(..., ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(..., ge=100, le=32000, description="Maximum tokens to generate")
    timeout: int = Field(..., ge=10, le=600, description="Request timeout (seconds)")

    model_config = {"frozen": True}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenRouter (LLM)
    OPENROUTER_API_KEY: str | None = Field(default=None, description="OpenRouter API key")
    OPENROUTER_BASE_URL: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )

    # Citation verification LLM
    CITATION_LLM_PROVIDER: str = Field(default="openrouter", description="Citation LLM provider")
    CITATION_LLM_MODEL: str = Field(
        default="google/gemini-2.0-flash-001",
        description="Cheap, fast model used for per-citation verification",
    )
    CITATION_LLM_TEMPERATURE: float = Field(
        default=0.0, ge=0.0, le=2.0, description="Citation LLM temperature"
    )
    CITATION_LLM_MAX_TOKENS: int = Field(
        default=500, ge=100, le=32000, description="Max tokens per verified claim"
    )
    CITATION_LLM_TIMEOUT: int = Field(
        default=60, ge=10, le=600, description="Citation LLM request timeout (seconds)"
    )
    LLM_CIRCUIT_BREAKER_THRESHOLD: int = Field(
        default=5, ge=1, le=20, description="Failures before the LLM circuit breaker opens"
    )
    LLM_CIRCUIT_BREAKER_TIMEOUT: int = Field(
        default=300, ge=10, le=3600, description="Seconds before the LLM circuit breaker retries"
    )

    # Remote cache tier (wiki-server, PostgreSQL-backed)
    WIKI_SERVER_URL: str = Field(
        default="", description="Wiki server base URL (empty disables the remote cache tier)"
    )
    WIKI_SERVER_API_KEY: str | None = Field(default=None, description="Wiki server API key")
    WIKI_SERVER_TIMEOUT: float = Field(
        default=5.0, ge=0.5, le=60.0, description="Wiki server request timeout (seconds)"
    )

    # Embedded cache tier (SQLite)
    KNOWLEDGE_DB_URL: str = Field(
        default="sqlite+aiosqlite:///./.cache/knowledge.db",
        description="SQLAlchemy async URL of the embedded citation content store",
    )

    # Source fetching
    FETCH_TIMEOUT_SECONDS: float = Field(
        default=15.0, ge=1.0, le=120.0, description="Per-request network fetch timeout"
    )
    FETCH_MAX_RETRIES: int = Field(
        default=2, ge=0, le=5, description="Retries on transient failures and 5xx/429"
    )
    FETCH_BACKOFF_BASE_SECONDS: float = Field(
        default=1.0, ge=0.0, le=30.0, description="Backoff base; attempt n waits base * 2**(n+1)"
    )
    FETCH_USER_AGENT: str = Field(
        default="Mozilla/5.0 (compatible; LongtermWikiSourceFetcher/1.0)",
        description="User-Agent sent by the built-in fetcher",
    )
    MAX_CONTENT_CHARS: int = Field(
        default=100_000, ge=1000, description="Maximum characters of cleaned content kept"
    )
    SESSION_CACHE_CAPACITY: int = Field(
        default=500, ge=1, description="In-process LRU cache capacity (entries)"
    )
    ENABLE_RICH_FETCH: bool = Field(
        default=False,
        description="Try the Crawl4AI HTML-to-markdown strategy before the built-in fetcher",
    )
    RICH_FETCH_CIRCUIT_BREAKER_THRESHOLD: int = Field(
        default=3, ge=1, le=20, description="Rich fetch failures before skipping the strategy"
    )
    RICH_FETCH_CIRCUIT_BREAKER_TIMEOUT: int = Field(
        default=300, ge=10, le=3600, description="Seconds before the rich strategy is retried"
    )
    FETCH_CONCURRENCY: int = Field(
        default=5, ge=1, le=50, description="Batch size used by fetch_sources()"
    )
    FETCH_BATCH_DELAY_MS: int = Field(
        default=500, ge=0, description="Delay between fetch_sources() batches"
    )

    # Citation auditing
    AUDIT_PASS_THRESHOLD: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Verified fraction of checkable citations to pass"
    )
    AUDIT_CONCURRENCY: int = Field(
        default=3, ge=1, le=20, description="Maximum concurrent LLM verification calls"
    )
    AUDIT_DELAY_MS: int = Field(
        default=300, ge=0, description="Delay after each LLM verification call"
    )
    AUDIT_MAX_CLAIMS_PER_BATCH: int = Field(
        default=10, ge=1, le=50, description="Maximum claims verified in one LLM call"
    )

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8002, description="API port")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json/text)")

    # Development
    DEBUG: bool = Field(default=False, description="Debug mode")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @property
    def citation_llm_config(self) -> LLMConfig:
        """Get citation verification LLM configuration.

        Returns:
            LLMConfig for the per-citation verifier
        """
        return LLMConfig(
            provider=self.CITATION_LLM_PROVIDER,
            model=self.CITATION_LLM_MODEL,
            temperature=self.CITATION_LLM_TEMPERATURE,
            max_tokens=self.CITATION_LLM_MAX_TOKENS,
            timeout=self.CITATION_LLM_TIMEOUT,
        )


# Global settings instance
settings = Settings()
