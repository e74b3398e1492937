"""
Provider key store for Mailmind.

System-level API keys used when a user has not configured their own key.
Keys are kept as individual Fernet-encrypted files; environment variables
always take priority over stored keys.
"""

import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecretsError(Exception):
    """Base exception for key store errors."""

    pass


class DecryptionError(SecretsError):
    """Failed to decrypt a stored key."""

    pass


# Environment variables consulted before the encrypted store
PROVIDER_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


class ProviderKeyStore:
    """
    Encrypted storage for system provider API keys.

    A master key in the secrets directory encrypts one ``<provider>.enc``
    file per provider.
    """

    def __init__(self, secrets_dir: Path | None = None):
        """
        Initialize the key store.

        Args:
            secrets_dir: Directory holding encrypted keys. Defaults to ~/.mailmind/secrets/
        """
        if secrets_dir is None:
            from mailmind.storage.paths import get_secrets_dir

            secrets_dir = get_secrets_dir()

        self.secrets_dir = Path(secrets_dir)
        self._fernet: Fernet | None = None

    def _ensure_secrets_dir(self) -> None:
        self.secrets_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        try:
            self.secrets_dir.chmod(0o700)
        except OSError:
            logger.warning(f"Could not set permissions on secrets directory: {self.secrets_dir}")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._ensure_secrets_dir()
            key_path = self.secrets_dir / "master.key"
            if key_path.exists():
                key = key_path.read_bytes()
            else:
                key = Fernet.generate_key()
                key_path.write_bytes(key)
                try:
                    key_path.chmod(0o600)
                except OSError:
                    logger.warning("Could not set permissions on master key file")
                logger.info("Generated new master key")
            self._fernet = Fernet(key)
        return self._fernet

    def _key_path(self, provider: str) -> Path:
        return self.secrets_dir / f"{provider.lower()}.enc"

    def set(self, provider: str, api_key: str) -> None:
        """Encrypt and store the API key for a provider."""
        encrypted = self._get_fernet().encrypt(api_key.encode())
        path = self._key_path(provider)
        path.write_bytes(encrypted)
        try:
            path.chmod(0o600)
        except OSError:
            logger.warning(f"Could not set permissions on key file: {provider}")
        logger.info(f"Stored API key for {provider}")

    def get(self, provider: str) -> str | None:
        """
        Return the stored key for a provider.

        Raises:
            DecryptionError: If the master key no longer matches.
        """
        path = self._key_path(provider)
        if not path.exists():
            return None

        try:
            return self._get_fernet().decrypt(path.read_bytes()).decode()
        except InvalidToken as e:
            raise DecryptionError(
                f"Failed to decrypt key for '{provider}'. Master key may have changed."
            ) from e

    def delete(self, provider: str) -> bool:
        """Delete a stored key. Returns False if none was stored."""
        path = self._key_path(provider)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted API key for {provider}")
            return True
        return False

    def list(self) -> list[str]:
        """List providers with a stored key."""
        if not self.secrets_dir.exists():
            return []
        return sorted(p.stem for p in self.secrets_dir.glob("*.enc") if p.is_file())

    def resolve(self, provider: str) -> str | None:
        """
        Resolve the system key for a provider.

        The provider's environment variable wins over the stored key.
        """
        env_var = PROVIDER_ENV_VARS.get(provider.lower())
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        return self.get(provider)
