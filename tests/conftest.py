"""
Pytest configuration and fixtures for mailmind tests.
"""

import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from typer.testing import CliRunner

from mailmind.config import clear_config_cache
from mailmind.config.schema import LLMConfig
from mailmind.llms.engine import CompletionEngine
from mailmind.llms.error_messages import InMemoryErrorMessageStore
from mailmind.llms.models import ObjectResult, TextResult, TokenUsage, UserAIFields
from mailmind.llms.usage import InMemoryUsageRecorder
from mailmind.secrets import PROVIDER_ENV_VARS


class FakeAPIError(Exception):
    """Shaped like a provider SDK error: message, status code and provider."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 400,
        llm_provider: str | None = "openai",
        **attrs,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.llm_provider = llm_provider
        for key, value in attrs.items():
            setattr(self, key, value)


class ThrottlingException(Exception):
    """Named like the AWS SDK's throttling error."""


class RetryError(Exception):
    """Named like an SDK's retries-exhausted error."""

    def __init__(self, message: str, reason: str, last_error: Exception | None = None):
        super().__init__(message)
        self.reason = reason
        self.last_error = last_error


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Remove MAILMIND_* settings and provider keys from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("MAILMIND_") or key in PROVIDER_ENV_VARS.values():
            monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def mailmind_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Provide a mock ~/.mailmind directory via MAILMIND_HOME."""
    home = temp_dir / ".mailmind"
    home.mkdir()
    monkeypatch.setenv("MAILMIND_HOME", str(home))
    return home


@pytest.fixture
def provider_error() -> type[FakeAPIError]:
    """Factory for provider-shaped errors."""
    return FakeAPIError


@pytest.fixture
def throttling_error() -> type[ThrottlingException]:
    return ThrottlingException


@pytest.fixture
def retry_error() -> type[RetryError]:
    return RetryError


@pytest.fixture
def llm_config() -> LLMConfig:
    """Default LLM configuration."""
    return LLMConfig()


@pytest.fixture
def user_ai() -> UserAIFields:
    """A user with their own OpenAI key."""
    return UserAIFields(provider="openai", model="gpt-4o", api_key="sk-user")


@pytest.fixture
def backend() -> MagicMock:
    """A provider backend returning canned results."""
    backend = MagicMock()
    backend.generate_text = AsyncMock(
        return_value=TextResult(
            text="Hello there",
            usage=TokenUsage(prompt_tokens=12, completion_tokens=3, cost=0.0002),
            finish_reason="stop",
        )
    )
    backend.generate_object = AsyncMock(
        return_value=ObjectResult(object=None, usage=TokenUsage(prompt_tokens=20, completion_tokens=8))
    )
    return backend


@pytest.fixture
def usage_recorder() -> InMemoryUsageRecorder:
    return InMemoryUsageRecorder()


@pytest.fixture
def error_sink() -> InMemoryErrorMessageStore:
    return InMemoryErrorMessageStore()


@pytest.fixture
def engine(
    llm_config: LLMConfig,
    backend: MagicMock,
    usage_recorder: InMemoryUsageRecorder,
    error_sink: InMemoryErrorMessageStore,
) -> CompletionEngine:
    """Engine with a mocked backend and in-memory sinks."""
    return CompletionEngine(
        config=llm_config,
        backend=backend,
        usage_recorder=usage_recorder,
        error_sink=error_sink,
    )
