"""
Mailmind secrets.

Encrypted storage for system provider API keys.
"""

from mailmind.secrets.manager import (
    PROVIDER_ENV_VARS,
    DecryptionError,
    ProviderKeyStore,
    SecretsError,
)

__all__ = [
    "PROVIDER_ENV_VARS",
    "DecryptionError",
    "ProviderKeyStore",
    "SecretsError",
]
