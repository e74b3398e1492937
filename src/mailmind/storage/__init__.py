"""
Mailmind storage layer.

Path resolution for configuration, usage logs, error messages and secrets.
"""

from mailmind.storage.paths import (
    expand_path,
    get_global_config_path,
    get_mailmind_home,
    get_secrets_dir,
)

__all__ = [
    "expand_path",
    "get_mailmind_home",
    "get_global_config_path",
    "get_secrets_dir",
]
