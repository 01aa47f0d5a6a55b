"""Configuration management for the DocSync engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")
    SUPABASE_TIMEOUT_SECONDS: int = Field(
        default=10, description="PostgREST request timeout for store calls"
    )

    # Anthropic configuration (required)
    ANTHROPIC_API_KEY: str = Field(..., description="Anthropic API key")

    # Environment
    DOCSYNC_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Models
    CHAT_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for conversational turns"
    )
    DOCUMENT_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for streamed document generation"
    )
    IMPACT_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for the document impact oracle"
    )
    UTILITY_MODEL: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model for one-shot utility calls (request structuring, titles)",
    )

    # Generation limits
    CHAT_MAX_TOKENS: int = Field(default=4096, description="Max output tokens per chat turn")
    DOCUMENT_MAX_TOKENS: int = Field(
        default=8192, description="Max output tokens per generated document"
    )
    CHAT_HISTORY_LIMIT: int = Field(
        default=20, description="Number of recent messages sent to the provider"
    )

    # Token ledger
    TOKEN_FLUSH_DELAY_SECONDS: float = Field(
        default=2.0, description="Delay before batched token totals are persisted"
    )
    FREE_PLAN_TOKEN_LIMIT: int = Field(
        default=200_000, description="Default token limit for free-plan accounts"
    )

    # Rate limiting
    CHAT_RATE_LIMIT_PER_MINUTE: int = Field(
        default=20, description="Sustained chat requests per minute per user"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
