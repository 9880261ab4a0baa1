"""Settings and configuration management."""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Engine settings.

    Priority chain: init kwargs > env vars (BLUEPRINT_*) > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="BLUEPRINT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Sanitize sensitive data from logs")

    # HTTP (api_call / webhook steps, HTTP agent client)
    http_timeout_seconds: float = Field(
        30.0,
        description="Per-request timeout for step network calls in seconds",
    )
    http_connect_timeout_seconds: float = Field(10.0, description="Connect timeout in seconds")
    http_max_connections: int = Field(20, description="Maximum pooled HTTP connections")
    http_max_keepalive: int = Field(10, description="Maximum keep-alive HTTP connections")

    # Step defaults
    default_delay_ms: int = Field(1000, description="Delay used when a delay step has no duration")
    default_retry_attempts: int = Field(3, description="Attempts for retry steps without max_attempts")

    # AI agent collaborator
    agent_endpoint_url: str | None = Field(
        None, description="Endpoint invoked by the HTTP agent client"
    )
    agent_api_key: str | None = Field(None, description="Bearer token for the agent endpoint")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field("gpt-4o-mini", description="Model used by the OpenAI agent client")

    # Persistence
    database_path: Path = Field(
        Path("blueprint-runs.db"), description="SQLite file used by SQLiteRunStore"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @field_validator("log_format")
    @classmethod
    def _normalize_log_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in ("text", "json"):
            raise ValueError(f"Invalid log format: {value}")
        return fmt

    @property
    def has_agent_endpoint(self) -> bool:
        return bool(self.agent_endpoint_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
