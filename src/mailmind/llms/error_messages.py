"""
User-visible error messages.

When a provider call fails for a reason the user can fix (a bad key, an
empty balance), a message is stored against their email so the UI can
explain what went wrong. The latest message per kind wins.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from mailmind.llms.exceptions import ErrorKind

logger = logging.getLogger(__name__)


# Short explanations shown next to the raw provider message
ERROR_HINTS: dict[ErrorKind, str] = {
    ErrorKind.INCORRECT_API_KEY: "Your API key is incorrect. Update it in your AI settings.",
    ErrorKind.API_KEY_DEACTIVATED: "Your API key has been deactivated. Create a new key.",
    ErrorKind.INVALID_MODEL: "The selected model does not exist or your key cannot access it.",
    ErrorKind.INSUFFICIENT_BALANCE: "Your provider account balance is too low.",
    ErrorKind.OPENAI_RETRY_ERROR: "OpenAI kept rate limiting requests. Check your usage limits.",
}


@dataclass(frozen=True)
class UserErrorMessage:
    """A stored error message for one user and kind."""

    kind: ErrorKind
    message: str
    timestamp: datetime

    @property
    def hint(self) -> str:
        return ERROR_HINTS.get(self.kind, "")


class UserErrorSink(Protocol):
    """Destination for user-visible error messages."""

    async def add_user_error_message(self, email: str, kind: ErrorKind, message: str) -> None: ...


class InMemoryErrorMessageStore:
    """Error message store kept in process memory."""

    def __init__(self) -> None:
        self._messages: dict[str, dict[ErrorKind, UserErrorMessage]] = {}

    async def add_user_error_message(self, email: str, kind: ErrorKind, message: str) -> None:
        self._messages.setdefault(email, {})[kind] = UserErrorMessage(
            kind=kind, message=message, timestamp=datetime.now()
        )

    def get_user_error_messages(self, email: str) -> list[UserErrorMessage]:
        return sorted(self._messages.get(email, {}).values(), key=lambda m: m.timestamp)

    def clear_user_error_messages(self, email: str) -> bool:
        return self._messages.pop(email, None) is not None


class JsonErrorMessageStore:
    """
    Error message store backed by a JSON document.

    Layout: ``{email: {kind: {"message": ..., "timestamp": ...}}}``.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict[str, dict[str, Any]]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt error message store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, dict[str, dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    async def add_user_error_message(self, email: str, kind: ErrorKind, message: str) -> None:
        await asyncio.to_thread(self._add, email, kind, message)
        logger.debug(f"Stored {kind.value} error message for {email}")

    def _add(self, email: str, kind: ErrorKind, message: str) -> None:
        # Load and save under one lock so concurrent writers cannot drop entries
        with self._lock:
            data = self._load()
            data.setdefault(email, {})[kind.value] = {
                "message": message,
                "timestamp": datetime.now().isoformat(),
            }
            self._save(data)

    def get_user_error_messages(self, email: str) -> list[UserErrorMessage]:
        messages = []
        for kind_value, entry in self._load().get(email, {}).items():
            try:
                kind = ErrorKind(kind_value)
            except ValueError:
                logger.warning(f"Skipping unknown error kind '{kind_value}' for {email}")
                continue
            messages.append(
                UserErrorMessage(
                    kind=kind,
                    message=entry.get("message", ""),
                    timestamp=datetime.fromisoformat(entry["timestamp"]),
                )
            )
        return sorted(messages, key=lambda m: m.timestamp)

    def clear_user_error_messages(self, email: str) -> bool:
        with self._lock:
            data = self._load()
            if email not in data:
                return False
            del data[email]
            self._save(data)
        return True
