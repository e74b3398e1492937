"""
Mailmind configuration.

Pydantic schema plus a YAML/environment loader.
"""

from mailmind.config.loader import (
    ConfigurationError,
    apply_env_overrides,
    clear_config_cache,
    deep_merge,
    get_config,
    load_config,
    load_yaml_file,
)
from mailmind.config.schema import (
    BackupModelConfig,
    Config,
    ErrorMessagesConfig,
    LLMConfig,
    LoggingConfig,
    OpenRouterConfig,
    RetryConfig,
    UsageConfig,
)

__all__ = [
    "Config",
    "LLMConfig",
    "BackupModelConfig",
    "OpenRouterConfig",
    "UsageConfig",
    "ErrorMessagesConfig",
    "RetryConfig",
    "LoggingConfig",
    "ConfigurationError",
    "load_config",
    "load_yaml_file",
    "get_config",
    "clear_config_cache",
    "deep_merge",
    "apply_env_overrides",
]
