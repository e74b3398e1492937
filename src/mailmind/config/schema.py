"""
Pydantic configuration schema for Mailmind.

This module defines all configuration models with validation.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# LLM Configuration
# =============================================================================


def _default_models() -> dict[str, str]:
    return {
        "openai": "gpt-4o",
        "anthropic": "claude-3-7-sonnet-20250219",
        "bedrock": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
        "google": "gemini-2.0-flash",
        "groq": "llama-3.3-70b-versatile",
        "openrouter": "anthropic/claude-3.7-sonnet",
        "ollama": "llama3.1",
    }


def _default_economy_models() -> dict[str, str]:
    return {
        "openai": "gpt-4o-mini",
        "anthropic": "claude-3-5-haiku-20241022",
        "bedrock": "us.anthropic.claude-3-5-haiku-20241022-v1:0",
        "google": "gemini-2.0-flash-lite",
        "groq": "llama-3.1-8b-instant",
        "openrouter": "google/gemini-2.0-flash-001",
    }


class BackupModelConfig(BaseModel):
    """Fixed fallback model for unavailable or throttled providers."""

    enabled: bool = False
    provider: str = "bedrock"
    model: str = "us.anthropic.claude-3-5-sonnet-20241022-v2:0"


class OpenRouterConfig(BaseModel):
    """Routing hints sent to the OpenRouter aggregator."""

    models: list[str] = Field(default_factory=lambda: ["anthropic/claude-3.7-sonnet"])
    order: list[str] = Field(default_factory=lambda: ["Amazon Bedrock", "Anthropic"])
    referer: str | None = None
    title: str | None = "Mailmind"


class LLMConfig(BaseModel):
    """Provider, model and fallback configuration for the completion engine."""

    model_config = ConfigDict(extra="allow")

    default_provider: str = "anthropic"
    default_models: dict[str, str] = Field(default_factory=_default_models)
    # Cheaper model per provider, used when a call opts into the economy tier
    economy_models: dict[str, str] = Field(default_factory=_default_economy_models)
    backup: BackupModelConfig = Field(default_factory=BackupModelConfig)
    openrouter: OpenRouterConfig = Field(default_factory=OpenRouterConfig)
    ollama_base_url: str = "http://localhost:11434"
    structured_attempts: int = Field(default=2, ge=1, le=5)
    telemetry: bool = True


# =============================================================================
# Sink Configuration
# =============================================================================


class UsageConfig(BaseModel):
    """Usage log configuration."""

    enable: bool = True
    path: str = "~/.mailmind/usage.jsonl"


class ErrorMessagesConfig(BaseModel):
    """User-visible error message store configuration."""

    path: str = "~/.mailmind/errors.json"


# =============================================================================
# Retry & Logging Configuration
# =============================================================================


class RetryConfig(BaseModel):
    """Defaults for call sites that opt into generic retries."""

    max_retries: int = Field(default=3, ge=0, le=10)
    delay_ms: int = Field(default=1000, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


# =============================================================================
# Root Configuration Model
# =============================================================================


class Config(BaseModel):
    """
    Root configuration model for Mailmind.

    Configuration can be loaded from a YAML file and environment
    variables, merged in order of priority.
    """

    model_config = ConfigDict(extra="allow")

    llm: LLMConfig = Field(default_factory=LLMConfig)
    usage: UsageConfig = Field(default_factory=UsageConfig)
    errors: ErrorMessagesConfig = Field(default_factory=ErrorMessagesConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
