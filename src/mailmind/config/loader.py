"""
Configuration loader for Mailmind.

Loads and merges configuration from multiple sources:
1. Default values
2. Global config (~/.mailmind/config.yaml)
3. Environment variables (MAILMIND_*)
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from mailmind.config.schema import Config
from mailmind.storage.paths import get_global_config_path


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed configuration dictionary.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return content


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge ``override`` into a copy of ``base``.

    Nested dicts are merged, everything else is replaced.
    """
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """
    Set a dot-separated key in a configuration dictionary.

    Creates intermediate dictionaries as needed.
    """
    keys = key_path.split(".")
    current = config

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value
    return config


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables follow the pattern:
    MAILMIND_<SECTION>_<KEY>=<value>
    MAILMIND_<SECTION>_<NESTED>_<KEY>=<value>

    e.g. MAILMIND_LLM_BACKUP_ENABLED=true sets llm.backup.enabled and
    MAILMIND_LLM_DEFAULT_PROVIDER=openai sets llm.default_provider.

    Args:
        config: Configuration dictionary to modify.

    Returns:
        Configuration with environment overrides applied.
    """
    prefix = "MAILMIND_"

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        # MAILMIND_HOME relocates the data directory, it is not a setting
        if key == "MAILMIND_HOME":
            continue

        parts = key[len(prefix) :].lower().split("_")
        config_key = _resolve_env_key(config, parts)
        config = set_nested_value(config, config_key, _parse_env_value(value))

    return config


def _resolve_env_key(config: dict[str, Any], parts: list[str]) -> str:
    """
    Map underscore-separated parts onto existing config keys.

    At each level the longest run of parts naming an existing key wins,
    so keys that contain underscores stay addressable. Unknown parts fall
    back to one key per part.
    """
    keys: list[str] = []
    current: Any = config
    i = 0
    while i < len(parts):
        match = None
        if isinstance(current, dict):
            for j in range(len(parts), i, -1):
                candidate = "_".join(parts[i:j])
                if candidate in current:
                    match = (candidate, j)
                    break
        if match is None:
            keys.append(parts[i])
            current = None
            i += 1
        else:
            keys.append(match[0])
            current = current[match[0]]
            i = match[1]
    return ".".join(keys)


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to the appropriate type.

    Args:
        value: String value from environment.

    Returns:
        Parsed value (bool, int, float, list or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    if re.match(r"^-?\d+$", value):
        return int(value)

    if re.match(r"^-?\d+\.\d+$", value):
        return float(value)

    # Comma-separated list
    if "," in value:
        return [item.strip() for item in value.split(",")]

    return value


def load_config(path: Path | None = None, skip_env: bool = False) -> Config:
    """
    Load and merge configuration from all sources.

    Args:
        path: Config file to load. Defaults to ~/.mailmind/config.yaml.
        skip_env: Skip environment variable overrides.

    Returns:
        Merged and validated Config object.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    config_dict = Config().model_dump()

    config_path = path or get_global_config_path()
    if config_path.exists():
        config_dict = deep_merge(config_dict, load_yaml_file(config_path))

    if not skip_env:
        config_dict = apply_env_overrides(config_dict)

    try:
        return Config.model_validate(config_dict)
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


# Singleton for cached config
_cached_config: Config | None = None


def get_config(reload: bool = False) -> Config:
    """
    Get the global configuration instance.

    Args:
        reload: Force reload configuration from disk.

    Returns:
        Config instance.
    """
    global _cached_config

    if _cached_config is None or reload:
        _cached_config = load_config()

    return _cached_config


def clear_config_cache() -> None:
    """Clear the cached configuration."""
    global _cached_config
    _cached_config = None
