"""
Configuration management for the AI Grader system.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration; the
API key alone is checked lazily so that offline commands keep working without it.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when required configuration (such as the LLM API key) is missing."""

    def __init__(self, message: str, setting: str | None = None):
        self.setting = setting
        super().__init__(message)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Out-of-range values
    will raise clear validation errors.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # LLM API Configuration
    # ==========================================================================
    llm_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI-compatible LLM endpoint",
    )

    llm_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai",
        description="Base URL for the OpenAI-compatible LLM endpoint",
    )

    llm_model: str = Field(
        default="gemini-3-flash-preview",
        description="Model to use for grading",
    )

    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Temperature for LLM generation (low values keep regrades reproducible)",
    )

    llm_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        le=600.0,
        description="Hard timeout for a single LLM call",
    )

    # ==========================================================================
    # Retry Configuration
    # ==========================================================================
    retry_max_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt for transient provider errors",
    )

    retry_initial_delay_ms: int = Field(
        default=2000,
        ge=0,
        description="Initial backoff delay in milliseconds, doubled on each retry",
    )

    # ==========================================================================
    # Grading Configuration
    # ==========================================================================
    default_max_score: float = Field(
        default=10.0,
        gt=0.0,
        description="Target scale for essays whose problem sets no custom max score",
    )

    regrade_concurrency: int = Field(
        default=1,
        ge=1,
        le=8,
        description="Maximum submissions graded at once during a batch regrade",
    )

    # ==========================================================================
    # Storage & Logging Configuration
    # ==========================================================================
    data_directory: Path = Field(
        default=Path("./data"),
        description="Directory holding problems.json and submissions.json",
    )

    log_level: str = Field(
        default="INFO",
        description="Log level for the ai_grader logger",
    )

    @field_validator("llm_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def require_api_key(self) -> str:
        """
        Return the configured API key.

        Raises:
            ConfigurationError: If no API key is configured.
        """
        if not self.llm_api_key:
            raise ConfigurationError(
                "LLM API key is not configured. Set the LLM_API_KEY environment variable.",
                setting="llm_api_key",
            )
        return self.llm_api_key


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()
