"""Application configuration using Pydantic Settings.

Environment variables are loaded with the ROUNDTABLE_ prefix, e.g.
ROUNDTABLE_LLM_API_URL, ROUNDTABLE_LLM_MODEL, ROUNDTABLE_REDIS_URL.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.constants import (
    DEFAULT_MAX_AUTO_ROUNDS,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_SUMMARY_MAX_CHARS,
    ModelBudgets,
    Timeouts,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Pattern: Pydantic Settings with Environment Variables
    """

    # Service configuration
    service_name: str = "agent-roundtable"
    port: int = 3001
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="CORS origins allowed to call the API",
    )

    # Language model completion endpoint
    llm_api_url: str = Field(
        default="http://localhost:8000/v1/chat/completions",
        description="Chat completion endpoint (full URL)",
    )
    llm_model: str = Field(default="default", description="Model name sent with every completion")

    # Persistence
    storage_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Key-value store used for warm-restart recovery",
    )
    redis_url: str = Field(default="redis://localhost:6379", description="Redis connection URL")

    # Orchestration
    max_concurrent_requests: int = Field(
        default=DEFAULT_MAX_CONCURRENT_REQUESTS,
        ge=1,
        description="Upper bound on in-flight model calls across all conversations",
    )
    max_auto_rounds: int = Field(
        default=DEFAULT_MAX_AUTO_ROUNDS,
        ge=0,
        description="Rounds of autonomous continuation per triggering message",
    )
    summary_max_chars: int = Field(
        default=DEFAULT_SUMMARY_MAX_CHARS,
        ge=1,
        description="Block summary length bound (enforced by truncation)",
    )

    # Model call budgets
    summarizer_max_tokens: int = Field(default=ModelBudgets.SUMMARIZER_MAX_TOKENS)
    summarizer_temperature: float = Field(default=ModelBudgets.SUMMARIZER_TEMPERATURE, ge=0.0, le=2.0)
    verifier_max_tokens: int = Field(default=ModelBudgets.VERIFIER_MAX_TOKENS)
    verifier_temperature: float = Field(default=ModelBudgets.VERIFIER_TEMPERATURE, ge=0.0, le=2.0)

    # Outbound HTTP
    http_timeout_seconds: float = Field(
        default=Timeouts.HTTP_DEFAULT,
        description="Timeout applied to model and agent endpoint calls",
    )
    verify_tls: bool = Field(
        default=False,
        description="Verify TLS certificates of model and agent endpoints",
    )

    model_config = SettingsConfigDict(
        env_prefix="ROUNDTABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()
