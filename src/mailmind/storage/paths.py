"""
Path utilities for Mailmind.

Provides consistent path resolution for configuration and data files.
"""

import os
from pathlib import Path


def get_mailmind_home() -> Path:
    """
    Get the Mailmind home directory.

    Resolution order:
    1. MAILMIND_HOME environment variable
    2. Default: ~/.mailmind

    Returns:
        Path to the Mailmind home directory.
    """
    env_home = os.environ.get("MAILMIND_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".mailmind"


def get_global_config_path() -> Path:
    """
    Get the path to the global configuration file.

    Returns:
        Path to ~/.mailmind/config.yaml
    """
    return get_mailmind_home() / "config.yaml"


def get_secrets_dir() -> Path:
    """
    Get the secrets directory.

    Returns:
        Path to ~/.mailmind/secrets/
    """
    return get_mailmind_home() / "secrets"


def expand_path(path: str | Path) -> Path:
    """
    Expand a configured path.

    Paths starting with ``~/.mailmind`` are resolved against the Mailmind
    home directory so MAILMIND_HOME relocates them too.
    """
    raw = str(path)
    prefix = "~/.mailmind"
    if raw == prefix or raw.startswith(prefix + "/"):
        return get_mailmind_home() / raw[len(prefix) :].lstrip("/")
    return Path(raw).expanduser()
