"""
Unit tests for CLI commands.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from mailmind import __version__
from mailmind.ai import CleanDecision
from mailmind.cli.app import app
from mailmind.llms import (
    CompletionEngine,
    ErrorKind,
    JsonErrorMessageStore,
    JsonlUsageRecorder,
    ObjectResult,
    StreamChunk,
    TextStream,
    TokenUsage,
    UsageRecord,
)
from mailmind.secrets import ProviderKeyStore


@pytest.fixture
def cli_engine(mailmind_home, engine: CompletionEngine):
    """Patch the CLI to use the test engine."""
    with patch("mailmind.cli.commands.run.create_engine", return_value=engine):
        yield engine


def test_version(cli_runner: CliRunner) -> None:
    """Test --version flag."""
    result = cli_runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_help(cli_runner: CliRunner) -> None:
    """Test --help flag."""
    result = cli_runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "mailmind" in result.stdout
    assert "run" in result.stdout
    assert "usage" in result.stdout
    assert "keys" in result.stdout


def test_config_show(cli_runner: CliRunner, mailmind_home) -> None:
    """Test config show command."""
    result = cli_runner.invoke(app, ["config", "show", "retry", "--json"])
    assert result.exit_code == 0
    assert '"max_retries": 3' in result.stdout


def test_config_show_unknown_section(cli_runner: CliRunner, mailmind_home) -> None:
    result = cli_runner.invoke(app, ["config", "show", "nope"])
    assert result.exit_code == 1


# =============================================================================
# run
# =============================================================================


def test_run_without_prompt(cli_runner: CliRunner) -> None:
    """Test run command without prompt shows error."""
    result = cli_runner.invoke(app, ["run"])
    assert result.exit_code != 0


def test_run(cli_runner: CliRunner, cli_engine, backend, usage_recorder) -> None:
    """Test run prints the completion and records usage."""
    result = cli_runner.invoke(
        app,
        ["run", "Say hi", "--provider", "openai", "--api-key", "sk-user", "--label", "Greeting"],
    )

    assert result.exit_code == 0
    assert "Hello there" in result.stdout
    record = usage_recorder.read_records()[0]
    assert record.label == "Greeting"
    assert record.email == "cli@localhost"


def test_run_json(cli_runner: CliRunner, cli_engine) -> None:
    result = cli_runner.invoke(app, ["run", "Say hi", "-p", "openai", "--api-key", "sk-user", "--json"])
    assert result.exit_code == 0
    assert '"text": "Hello there"' in result.stdout


def test_run_incorrect_key(cli_runner: CliRunner, cli_engine, backend, error_sink, provider_error) -> None:
    """Test a rejected key exits with code 3 and notifies the user."""
    backend.generate_text.side_effect = provider_error("Incorrect API key provided: sk-bad", status_code=401)

    result = cli_runner.invoke(
        app, ["run", "Say hi", "-p", "openai", "--api-key", "sk-bad", "-e", "user@example.com"]
    )

    assert result.exit_code == 3
    assert "Incorrect api key" in result.output
    kinds = [m.kind for m in error_sink.get_user_error_messages("user@example.com")]
    assert kinds == [ErrorKind.INCORRECT_API_KEY]


def test_run_missing_key(cli_runner: CliRunner, cli_engine) -> None:
    result = cli_runner.invoke(app, ["run", "Say hi", "-p", "openai"])
    assert result.exit_code == 1
    assert "No API key available" in result.output


def test_run_retries(cli_runner: CliRunner, cli_engine, backend, provider_error) -> None:
    """Test --retries repeats transient failures."""
    backend.generate_text.side_effect = [
        provider_error("Service Unavailable", status_code=503),
        backend.generate_text.return_value,
    ]

    with patch("mailmind.llms.retry._sleep", new=AsyncMock()):
        result = cli_runner.invoke(
            app, ["run", "Say hi", "-p", "openai", "--api-key", "sk-user", "--retries", "2"]
        )

    assert result.exit_code == 0
    assert backend.generate_text.await_count == 2


def test_run_stream(cli_runner: CliRunner, cli_engine, backend) -> None:
    async def chunks():
        yield StreamChunk(content="Hel")
        yield StreamChunk(content="lo", usage=TokenUsage(prompt_tokens=3, completion_tokens=1))

    backend.stream_text = MagicMock(return_value=TextStream(chunks()))

    result = cli_runner.invoke(app, ["run", "Say hi", "-p", "openai", "--api-key", "sk-user", "--stream"])

    assert result.exit_code == 0
    assert "Hello" in result.stdout
    assert "3 in, 1 out" in result.stdout


def test_run_stream_with_retries(cli_runner: CliRunner, cli_engine) -> None:
    result = cli_runner.invoke(
        app, ["run", "Say hi", "-p", "openai", "--api-key", "sk-user", "--stream", "-r", "2"]
    )
    assert result.exit_code == 1


# =============================================================================
# clean
# =============================================================================


def test_clean_without_key(cli_runner: CliRunner, cli_engine, backend, temp_dir) -> None:
    """Test clean fails with a configuration error when no key is available."""
    path = temp_dir / "promo.eml"
    path.write_text("From: deals@shop.example\nSubject: Sale\n\nEverything must go.\n")

    result = cli_runner.invoke(app, ["clean", str(path), "-p", "openai"])

    assert result.exit_code == 1
    assert "No API key available" in result.output
    backend.generate_object.assert_not_called()


def test_clean_with_system_key(
    cli_runner: CliRunner, cli_engine, backend, temp_dir, monkeypatch
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-system")
    cli_engine.key_store = ProviderKeyStore()
    path = temp_dir / "promo.eml"
    path.write_text("From: deals@shop.example\nSubject: Sale\n\nEverything must go.\n")
    backend.generate_object.return_value = ObjectResult(
        object=CleanDecision(reasoning="A promotion.", archive=True),
        usage=TokenUsage(prompt_tokens=50, completion_tokens=5),
    )

    result = cli_runner.invoke(app, ["clean", str(path), "-p", "openai"])

    assert result.exit_code == 0
    assert "archive" in result.stdout
    assert "A promotion." in result.stdout
    assert backend.generate_object.await_args.kwargs["model"].api_key == "sk-system"


def test_clean_missing_file(cli_runner: CliRunner, cli_engine, temp_dir) -> None:
    result = cli_runner.invoke(app, ["clean", str(temp_dir / "missing.eml")])
    assert result.exit_code == 1
    assert "File not found" in result.output


# =============================================================================
# usage / errors / keys
# =============================================================================


def test_usage_show_empty(cli_runner: CliRunner, mailmind_home) -> None:
    result = cli_runner.invoke(app, ["usage", "show"])
    assert result.exit_code == 0
    assert "No usage recorded" in result.stdout


def test_usage_summary(cli_runner: CliRunner, mailmind_home) -> None:
    recorder = JsonlUsageRecorder(mailmind_home / "usage.jsonl")
    for label in ("Clean", "Clean", "Reply"):
        asyncio.run(
            recorder.record(
                UsageRecord(
                    email="user@example.com",
                    provider="openai",
                    model="gpt-4o",
                    usage=TokenUsage(prompt_tokens=10, completion_tokens=2, cost=0.01),
                    label=label,
                )
            )
        )

    result = cli_runner.invoke(app, ["usage", "summary"])

    assert result.exit_code == 0
    assert "Total:" in result.stdout
    assert "3 requests" in result.stdout
    assert "$0.0300" in result.stdout


def test_errors_list_and_clear(cli_runner: CliRunner, mailmind_home) -> None:
    store = JsonErrorMessageStore(mailmind_home / "errors.json")
    asyncio.run(
        store.add_user_error_message("user@example.com", ErrorKind.INCORRECT_API_KEY, "bad key")
    )

    result = cli_runner.invoke(app, ["errors", "list", "user@example.com"])
    assert result.exit_code == 0
    assert "incorrect_api_key" in result.stdout

    result = cli_runner.invoke(app, ["errors", "clear", "user@example.com"])
    assert result.exit_code == 0
    assert store.get_user_error_messages("user@example.com") == []

    result = cli_runner.invoke(app, ["errors", "list", "user@example.com"])
    assert "No error messages" in result.stdout


def test_keys_lifecycle(cli_runner: CliRunner, mailmind_home) -> None:
    result = cli_runner.invoke(app, ["keys", "set", "openai", "--value", "sk-system"])
    assert result.exit_code == 0
    assert ProviderKeyStore().get("openai") == "sk-system"

    result = cli_runner.invoke(app, ["keys", "list"])
    assert result.exit_code == 0
    assert "stored" in result.stdout

    result = cli_runner.invoke(app, ["keys", "delete", "openai", "--yes"])
    assert result.exit_code == 0
    assert ProviderKeyStore().get("openai") is None


def test_keys_set_keyless_provider(cli_runner: CliRunner, mailmind_home) -> None:
    result = cli_runner.invoke(app, ["keys", "set", "ollama", "--value", "x"])
    assert result.exit_code == 1
