"""
Unit tests for the completion engine.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel

from mailmind.config.schema import BackupModelConfig, Config, LLMConfig
from mailmind.llms import (
    CompletionEngine,
    ConfigurationError,
    ErrorKind,
    JsonErrorMessageStore,
    JsonlUsageRecorder,
    ObjectRequest,
    ObjectResult,
    Provider,
    StreamChunk,
    StreamRequest,
    TextRequest,
    TextStream,
    TokenUsage,
    ToolRequest,
    ToolSpec,
    ToolStreamRequest,
    UserAIFields,
    create_engine,
)


class Summary(BaseModel):
    title: str


def _text_request(user_ai: UserAIFields, **kwargs) -> TextRequest:
    return TextRequest(
        prompt="Summarize this",
        user_ai=user_ai,
        user_email="user@example.com",
        usage_label="Summarize",
        **kwargs,
    )


async def _chunks(*chunks: StreamChunk, error: Exception | None = None):
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


# =============================================================================
# Call options
# =============================================================================


class TestCallOptions:
    """Tests for build_call_options."""

    def test_non_aggregator_has_no_options(self, engine):
        options = engine.build_call_options(Provider.OPENAI)
        assert options.headers is None
        assert options.provider_options is None

    def test_openrouter_routing(self):
        config = LLMConfig.model_validate(
            {
                "openrouter": {
                    "models": ["anthropic/claude-3.7-sonnet", "openai/gpt-4o"],
                    "order": ["Anthropic", "Amazon Bedrock"],
                    "referer": "https://mailmind.example",
                }
            }
        )
        engine = CompletionEngine(config=config, backend=MagicMock())

        options = engine.build_call_options(Provider.OPENROUTER)

        assert options.headers == {"HTTP-Referer": "https://mailmind.example", "X-Title": "Mailmind"}
        assert options.provider_options == {
            "openrouter": {
                "models": ["anthropic/claude-3.7-sonnet", "openai/gpt-4o"],
                "provider": {"order": ["Anthropic", "Amazon Bedrock"]},
            }
        }

    def test_economy_calls_route_freely(self, engine):
        options = engine.build_call_options(Provider.OPENROUTER, use_economy_model=True)
        assert options.headers == {"X-Title": "Mailmind"}
        assert options.provider_options is None


# =============================================================================
# generate_completion
# =============================================================================


class TestGenerateCompletion:
    """Tests for single-shot text generation."""

    @pytest.mark.asyncio
    async def test_records_usage(self, engine, backend, usage_recorder, user_ai):
        result = await engine.generate_completion(_text_request(user_ai))

        assert result.text == "Hello there"
        records = usage_recorder.read_records()
        assert len(records) == 1
        record = records[0]
        assert (record.email, record.provider, record.model, record.label) == (
            "user@example.com",
            "openai",
            "gpt-4o",
            "Summarize",
        )
        assert record.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_backend_call(self, engine, backend, user_ai):
        await engine.generate_completion(_text_request(user_ai))

        kwargs = backend.generate_text.await_args.kwargs
        assert kwargs["model"].litellm_model == "openai/gpt-4o"
        assert kwargs["model"].api_key == "sk-user"
        assert kwargs["payload"].prompt == "Summarize this"
        assert kwargs["provider_options"] is None
        assert kwargs["metadata"] == {"usage_label": "Summarize"}

    @pytest.mark.asyncio
    async def test_economy_model(self, engine, backend, usage_recorder, user_ai):
        await engine.generate_completion(_text_request(user_ai, use_economy_model=True))

        assert backend.generate_text.await_args.kwargs["model"].litellm_model == "openai/gpt-4o-mini"
        assert usage_recorder.read_records()[0].model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_openrouter_options_reach_backend(self, engine, backend):
        user_ai = UserAIFields(provider="openrouter", api_key="sk-or")
        await engine.generate_completion(_text_request(user_ai))

        kwargs = backend.generate_text.await_args.kwargs
        assert kwargs["provider_options"]["openrouter"]["provider"]["order"] == [
            "Amazon Bedrock",
            "Anthropic",
        ]
        assert kwargs["headers"] == {"X-Title": "Mailmind"}

    @pytest.mark.asyncio
    async def test_telemetry_off(self, backend, user_ai):
        engine = CompletionEngine(config=LLMConfig(telemetry=False), backend=backend)
        await engine.generate_completion(_text_request(user_ai))
        assert backend.generate_text.await_args.kwargs["metadata"] is None

    @pytest.mark.asyncio
    async def test_incorrect_key_notifies_user(
        self, engine, backend, error_sink, usage_recorder, user_ai, provider_error
    ):
        error = provider_error("Incorrect API key provided: sk-user", status_code=401)
        backend.generate_text.side_effect = error

        with pytest.raises(type(error)) as exc_info:
            await engine.generate_completion(_text_request(user_ai))

        assert exc_info.value is error
        messages = error_sink.get_user_error_messages("user@example.com")
        assert [m.kind for m in messages] == [ErrorKind.INCORRECT_API_KEY]
        assert usage_recorder.read_records() == []

    @pytest.mark.asyncio
    async def test_no_fallback_for_text(self, backend, user_ai, provider_error):
        engine = CompletionEngine(
            config=LLMConfig(backup=BackupModelConfig(enabled=True)), backend=backend
        )
        backend.generate_text.side_effect = provider_error("Service Unavailable", status_code=503)

        with pytest.raises(Exception, match="Service Unavailable"):
            await engine.generate_completion(_text_request(user_ai))

        assert backend.generate_text.await_count == 1

    @pytest.mark.asyncio
    async def test_resolution_failure(self, engine, backend, error_sink):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            await engine.generate_completion(_text_request(UserAIFields(provider="nope")))

        backend.generate_text.assert_not_called()
        assert error_sink.get_user_error_messages("user@example.com") == []


# =============================================================================
# generate_structured
# =============================================================================


class TestGenerateStructured:
    """Tests for structured generation."""

    def _request(self, user_ai):
        return ObjectRequest.build(
            schema=Summary,
            prompt="Title this",
            user_ai=user_ai,
            user_email="user@example.com",
            usage_label="Title",
        )

    @pytest.mark.asyncio
    async def test_passes_schema(self, engine, backend, user_ai):
        backend.generate_object.return_value = ObjectResult(
            object=Summary(title="Hi"), usage=TokenUsage(prompt_tokens=5, completion_tokens=2)
        )

        result = await engine.generate_structured(self._request(user_ai))

        assert result.object == Summary(title="Hi")
        assert backend.generate_object.await_args.kwargs["schema"] is Summary

    @pytest.mark.asyncio
    async def test_backup_model_on_service_unavailable(
        self, backend, usage_recorder, error_sink, user_ai, provider_error
    ):
        engine = CompletionEngine(
            config=LLMConfig(backup=BackupModelConfig(enabled=True)),
            backend=backend,
            usage_recorder=usage_recorder,
            error_sink=error_sink,
        )
        backend.generate_object.side_effect = [
            provider_error("Service Unavailable", status_code=503),
            ObjectResult(object=Summary(title="Hi"), usage=TokenUsage(prompt_tokens=5)),
        ]

        result = await engine.generate_structured(self._request(user_ai))

        assert result.object.title == "Hi"
        assert backend.generate_object.await_count == 2
        backup_model = backend.generate_object.await_args_list[1].kwargs["model"]
        assert backup_model.litellm_model == "bedrock/us.anthropic.claude-3-5-sonnet-20241022-v2:0"
        assert [r.provider for r in usage_recorder.read_records()] == ["bedrock"]
        assert error_sink.get_user_error_messages("user@example.com") == []

    @pytest.mark.asyncio
    async def test_backup_disabled(self, engine, backend, error_sink, user_ai, provider_error):
        backend.generate_object.side_effect = provider_error("Service Unavailable", status_code=503)

        with pytest.raises(Exception, match="Service Unavailable"):
            await engine.generate_structured(self._request(user_ai))

        assert backend.generate_object.await_count == 1
        assert error_sink.get_user_error_messages("user@example.com") == []


# =============================================================================
# Tools
# =============================================================================


class TestTools:
    """Tests for tool generation."""

    @pytest.fixture
    def tools(self) -> dict[str, ToolSpec]:
        return {
            "archive": ToolSpec(description="Archive the thread", execute=lambda: "archived"),
            "label": ToolSpec(
                description="Label the thread",
                parameters={"type": "object", "properties": {"name": {"type": "string"}}},
            ),
        }

    @pytest.mark.asyncio
    async def test_tool_choice_required(self, engine, backend, user_ai, tools):
        request = ToolRequest.build(
            tools=tools,
            prompt="Triage",
            max_steps=3,
            user_ai=user_ai,
            user_email="user@example.com",
            usage_label="Triage",
        )

        await engine.generate_with_tools(request)

        kwargs = backend.generate_text.await_args.kwargs
        assert kwargs["tool_choice"] == "required"
        assert kwargs["max_steps"] == 3
        assert kwargs["tools"] is tools

    @pytest.mark.asyncio
    async def test_stream_with_tools(self, engine, backend, user_ai, tools):
        backend.stream_text = MagicMock(return_value=TextStream(_chunks(StreamChunk(content="ok"))))
        request = ToolStreamRequest(
            tools=tools,
            prompt="Triage",
            user_ai=user_ai,
            user_email="user@example.com",
            usage_label="Triage",
        )

        stream = await engine.stream_with_tools(request)

        assert await stream.text() == "ok"
        kwargs = backend.stream_text.call_args.kwargs
        assert kwargs["tool_choice"] == "required"
        assert kwargs["tools"] is tools


# =============================================================================
# Streaming
# =============================================================================


class TestStreamCompletion:
    """Tests for streaming generation."""

    def _request(self, user_ai, on_finish=None):
        return StreamRequest(
            prompt="Write a reply",
            user_ai=user_ai,
            user_email="user@example.com",
            usage_label="Reply",
            on_finish=on_finish,
        )

    @pytest.mark.asyncio
    async def test_usage_after_consumption(self, engine, backend, usage_recorder, user_ai):
        backend.stream_text = MagicMock(
            return_value=TextStream(
                _chunks(
                    StreamChunk(content="Hel"),
                    StreamChunk(content="lo"),
                    StreamChunk(usage=TokenUsage(prompt_tokens=10, completion_tokens=2)),
                )
            )
        )
        on_finish = AsyncMock()

        stream = await engine.stream_completion(self._request(user_ai, on_finish))
        assert usage_recorder.read_records() == []

        parts = [chunk.content async for chunk in stream]

        assert "".join(parts) == "Hello"
        on_finish.assert_awaited_once_with("Hello")
        records = usage_recorder.read_records()
        assert len(records) == 1
        assert records[0].usage.total_tokens == 12
        assert records[0].label == "Reply"

    @pytest.mark.asyncio
    async def test_stream_error_is_handled(self, engine, backend, error_sink, user_ai, provider_error):
        error = provider_error("Your credit balance is too low", status_code=400, llm_provider="anthropic")
        backend.stream_text = MagicMock(
            return_value=TextStream(_chunks(StreamChunk(content="Hi"), error=error))
        )
        on_finish = AsyncMock()

        stream = await engine.stream_completion(self._request(user_ai, on_finish))
        with pytest.raises(type(error)):
            await stream.text()

        on_finish.assert_not_awaited()
        messages = error_sink.get_user_error_messages("user@example.com")
        assert [m.kind for m in messages] == [ErrorKind.INSUFFICIENT_BALANCE]

    @pytest.mark.asyncio
    async def test_setup_failure(self, engine, backend):
        backend.stream_text = MagicMock()
        with pytest.raises(ConfigurationError):
            await engine.stream_completion(self._request(UserAIFields(provider="openai")))
        backend.stream_text.assert_not_called()


# =============================================================================
# create_engine
# =============================================================================


class TestCreateEngine:
    def test_file_backed_sinks(self, mailmind_home, backend):
        engine = create_engine(Config(), backend=backend)

        assert isinstance(engine.usage_recorder, JsonlUsageRecorder)
        assert engine.usage_recorder.path == mailmind_home.resolve() / "usage.jsonl"
        assert isinstance(engine.error_sink, JsonErrorMessageStore)
        assert engine.key_store.secrets_dir == mailmind_home.resolve() / "secrets"
        assert engine.backend is backend

    @pytest.mark.asyncio
    async def test_system_key(self, mailmind_home, backend, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-system")
        engine = create_engine(Config(), backend=backend)

        await engine.generate_completion(_text_request(UserAIFields()))

        model = backend.generate_text.await_args.kwargs["model"]
        assert model.api_key == "sk-system"
        assert model.litellm_model == "anthropic/claude-3-7-sonnet-20250219"
