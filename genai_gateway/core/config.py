"""
Core configuration module for the GenAI Gateway.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the GENAI_GATEWAY_ prefix.

Invalid configuration (negative limits, thresholds out of range, empty
fallback chains) is rejected when Settings is constructed, never at call time.

Reference:
- GUIDELINES: Sinha pp. 193-195 - Pydantic BaseSettings pattern
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


# Logical request intents and their default ordered backend chains
INTENT_CONVERSATION = "conversation"
INTENT_TEXT = "text"
INTENT_SUMMARIZATION = "summarization"
INTENT_IMAGE = "image"
INTENT_EMBEDDING = "embedding"

DEFAULT_FALLBACK_CHAINS: dict[str, list[str]] = {
    INTENT_CONVERSATION: [
        "anthropic.claude-3-sonnet-20240229-v1:0",
        "anthropic.claude-3-haiku-20240307-v1:0",
    ],
    INTENT_TEXT: [
        "amazon.titan-text-express-v1",
        "amazon.titan-text-lite-v1",
    ],
    INTENT_SUMMARIZATION: [
        "cohere.command-text-v14",
        "cohere.command-light-text-v14",
    ],
    INTENT_IMAGE: ["stability.stable-diffusion-xl-v1"],
    INTENT_EMBEDDING: ["amazon.titan-embed-text-v1"],
}

DEFAULT_INTENT_OPERATIONS: dict[str, str] = {
    INTENT_CONVERSATION: "text_generation",
    INTENT_TEXT: "text_generation",
    INTENT_SUMMARIZATION: "summarization",
    INTENT_IMAGE: "image_generation",
    INTENT_EMBEDDING: "embedding",
}


class Settings(BaseSettings):
    """
    Gateway settings loaded from environment variables.

    All fields use the GENAI_GATEWAY_ prefix for environment variables.
    Example: GENAI_GATEWAY_DAILY_LIMIT=250
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="genai-gateway",
        description="Name of the service for logging and identification",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level for structured logging",
    )

    # =========================================================================
    # Circuit Breaker Configuration
    # =========================================================================
    circuit_breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Consecutive failures before a circuit opens "
        "(and successes needed to close it again)",
    )
    circuit_breaker_reset_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=3600.0,
        description="Seconds after the last failure before a trial call is allowed",
    )
    circuit_breaker_monitor_interval_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Background OPEN -> HALF_OPEN sweep interval (0 disables)",
    )

    # =========================================================================
    # Retry Policy Configuration
    # =========================================================================
    retry_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Additional attempts after the first failed call",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay for exponential backoff",
    )
    retry_max_delay_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound on a single backoff delay",
    )
    retry_jitter_seconds: float = Field(
        default=0.1,
        ge=0.0,
        description="Maximum random jitter added to each delay",
    )

    # =========================================================================
    # Response Cache Configuration
    # =========================================================================
    cache_enabled: bool = Field(
        default=True,
        description="Whether responses are cached by request fingerprint",
    )
    cache_ttl_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Cache entry time-to-live in seconds",
    )
    cache_max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of cached responses (LRU eviction)",
    )

    # =========================================================================
    # Cost Limits (USD)
    # =========================================================================
    daily_limit: Decimal = Field(
        default=Decimal("100"),
        gt=0,
        description="Hard daily spend limit",
    )
    monthly_limit: Decimal = Field(
        default=Decimal("2000"),
        gt=0,
        description="Hard monthly spend limit",
    )
    warning_threshold_percent: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="Percentage of a limit at which a cost warning is emitted",
    )

    # =========================================================================
    # Moderation Configuration
    # =========================================================================
    moderation_enabled: bool = Field(
        default=True,
        description="Whether moderate=True requests are checked at all",
    )
    moderation_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Flagged content above this confidence is rejected",
    )

    # =========================================================================
    # Fallback Chains
    # =========================================================================
    fallback_chains: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_FALLBACK_CHAINS.items()},
        description="Ordered backend ids per logical request intent",
    )
    intent_operations: dict[
        str, Literal["text_generation", "summarization", "image_generation", "embedding"]
    ] = Field(
        default_factory=lambda: dict(DEFAULT_INTENT_OPERATIONS),
        description="Operation recorded for requests built from each intent",
    )

    # =========================================================================
    # Batch Configuration
    # =========================================================================
    batch_max_concurrency: int = Field(
        default=10,
        ge=1,
        description="Maximum requests of one batch in flight at once",
    )

    # =========================================================================
    # Optional Infrastructure
    # =========================================================================
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for persisting the cost ledger across restarts",
    )
    tracing_enabled: bool = Field(
        default=False,
        description="Install an OpenTelemetry TracerProvider even without "
        "otlp_endpoint (spans then go to the console)",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP collector endpoint for traces (setting it enables tracing)",
    )

    model_config = {
        "env_prefix": "GENAI_GATEWAY_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Field Validators
    # =========================================================================
    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("Redis URL must start with redis:// or rediss://")
        return v

    @field_validator("fallback_chains")
    @classmethod
    def validate_fallback_chains(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Every intent needs at least one backend."""
        for intent, chain in v.items():
            if not chain:
                raise ValueError(f"Fallback chain for '{intent}' must not be empty")
        return v

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "Settings":
        """max delay below base delay would make backoff meaningless."""
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            )
        return self


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses functools.lru_cache to ensure only one Settings instance is created.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()
