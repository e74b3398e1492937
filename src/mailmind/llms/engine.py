"""
Completion engine for Mailmind.

Every operation follows the same steps: resolve the model, build the
provider call options, call the backend, record usage on success. On
failure the error is classified, the user is notified where a message
helps them, and the error is re-raised.
"""

import logging
from dataclasses import dataclass
from typing import Any

from mailmind.config.loader import get_config
from mailmind.config.schema import Config, LLMConfig
from mailmind.llms.backend import LiteLLMBackend, ProviderBackend
from mailmind.llms.error_messages import (
    InMemoryErrorMessageStore,
    JsonErrorMessageStore,
    UserErrorSink,
)
from mailmind.llms.exceptions import handle_error
from mailmind.llms.fallback import with_backup_model
from mailmind.llms.models import (
    CompletionRequest,
    ObjectRequest,
    ObjectResult,
    PromptInput,
    Provider,
    ResolvedModel,
    StreamFinish,
    StreamRequest,
    TextRequest,
    TextResult,
    TokenUsage,
    ToolRequest,
    ToolStreamRequest,
    ToolSpec,
    UsageRecord,
)
from mailmind.llms.resolver import resolve_model
from mailmind.llms.stream import TextStream
from mailmind.llms.usage import InMemoryUsageRecorder, JsonlUsageRecorder, UsageRecorder
from mailmind.secrets import ProviderKeyStore
from mailmind.storage.paths import expand_path

logger = logging.getLogger(__name__)


@dataclass
class CallOptions:
    """Provider-specific options attached to a backend call."""

    headers: dict[str, str] | None = None
    provider_options: dict[str, dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "headers": self.headers,
            "provider_options": self.provider_options,
            "metadata": self.metadata,
        }


class CompletionEngine:
    """
    Runs completions for users against their configured provider.

    Text and streaming calls fail straight through. Structured and tool
    calls retry once on the backup model when the provider is unavailable
    or throttling and the backup model is enabled.
    """

    def __init__(
        self,
        config: LLMConfig,
        backend: ProviderBackend | None = None,
        usage_recorder: UsageRecorder | None = None,
        error_sink: UserErrorSink | None = None,
        key_store: ProviderKeyStore | None = None,
    ):
        """
        Initialize the engine.

        Args:
            config: LLM configuration.
            backend: Provider backend. Defaults to LiteLLM.
            usage_recorder: Usage sink. Defaults to in-memory.
            error_sink: User error message sink. Defaults to in-memory.
            key_store: System key store for users without their own key.
        """
        self.config = config
        self.backend = backend or LiteLLMBackend(structured_attempts=config.structured_attempts)
        self.usage_recorder = usage_recorder or InMemoryUsageRecorder()
        self.error_sink = error_sink or InMemoryErrorMessageStore()
        self.key_store = key_store

    # -------------------------------------------------------------------------
    # Resolution & options
    # -------------------------------------------------------------------------

    def resolve(self, request: CompletionRequest) -> ResolvedModel:
        return resolve_model(
            request.user_ai,
            request.use_economy_model,
            config=self.config,
            key_store=self.key_store,
        )

    def build_call_options(self, provider: Provider, use_economy_model: bool = False) -> CallOptions:
        """
        Build headers and provider options for a call.

        Aggregator calls identify the app via headers. Unless the economy
        model is used, they also carry the preferred upstream models and
        vendor order; economy calls let the aggregator route freely.
        """
        options = CallOptions()
        if not provider.is_aggregator:
            return options

        openrouter = self.config.openrouter
        headers = {}
        if openrouter.referer:
            headers["HTTP-Referer"] = openrouter.referer
        if openrouter.title:
            headers["X-Title"] = openrouter.title
        options.headers = headers or None

        if not use_economy_model:
            options.provider_options = {
                provider.value: {
                    "models": list(openrouter.models),
                    "provider": {"order": list(openrouter.order)},
                }
            }
        return options

    def _call_kwargs(self, request: CompletionRequest, resolved: ResolvedModel) -> dict[str, Any]:
        options = self.build_call_options(resolved.provider, request.use_economy_model)
        if self.config.telemetry:
            options.metadata = {"usage_label": request.usage_label}
        return options.as_kwargs()

    async def _record_usage(
        self,
        request: CompletionRequest,
        resolved: ResolvedModel,
        usage: TokenUsage,
    ) -> None:
        await self.usage_recorder.record(
            UsageRecord(
                email=request.user_email,
                provider=resolved.provider.value,
                model=resolved.model_id,
                usage=usage,
                label=request.usage_label,
            )
        )

    async def _handle_error(self, error: Exception, request: CompletionRequest) -> None:
        await handle_error(error, request.user_email, self.error_sink)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def generate_completion(self, request: TextRequest) -> TextResult:
        """Single-shot text generation."""
        try:
            resolved = self.resolve(request)
            logger.info(f"[{request.usage_label}] Completing with {resolved.callable_model.litellm_model}")
            result = await self.backend.generate_text(
                model=resolved.callable_model,
                payload=PromptInput(prompt=request.prompt, system=request.system),
                **self._call_kwargs(request, resolved),
            )
            await self._record_usage(request, resolved, result.usage)
            return result
        except Exception as error:
            await self._handle_error(error, request)
            raise

    async def generate_structured(self, request: ObjectRequest) -> ObjectResult:
        """Generation validated against ``request.schema``, with backup-model fallback."""
        return await with_backup_model(self._generate_structured, request, self.config.backup)

    async def _generate_structured(self, request: ObjectRequest) -> ObjectResult:
        try:
            resolved = self.resolve(request)
            logger.info(
                f"[{request.usage_label}] Generating {request.schema.__name__} "
                f"with {resolved.callable_model.litellm_model}"
            )
            result = await self.backend.generate_object(
                model=resolved.callable_model,
                payload=request.payload,
                schema=request.schema,
                **self._call_kwargs(request, resolved),
            )
            await self._record_usage(request, resolved, result.usage)
            return result
        except Exception as error:
            await self._handle_error(error, request)
            raise

    async def generate_with_tools(self, request: ToolRequest) -> TextResult:
        """
        Generation where the model must call a tool at every step.

        Bounded by ``request.max_steps``; tool calls and their results are
        returned alongside the final text. Falls back to the backup model.
        """
        return await with_backup_model(self._generate_with_tools, request, self.config.backup)

    async def _generate_with_tools(self, request: ToolRequest) -> TextResult:
        try:
            resolved = self.resolve(request)
            logger.info(
                f"[{request.usage_label}] Running {len(request.tools)} tools "
                f"with {resolved.callable_model.litellm_model}"
            )
            result = await self.backend.generate_text(
                model=resolved.callable_model,
                payload=request.payload,
                tools=request.tools,
                tool_choice="required",
                max_steps=request.max_steps,
                **self._call_kwargs(request, resolved),
            )
            await self._record_usage(request, resolved, result.usage)
            return result
        except Exception as error:
            await self._handle_error(error, request)
            raise

    async def stream_completion(self, request: StreamRequest) -> TextStream:
        """
        Start a streaming generation.

        Usage is recorded and ``request.on_finish`` is awaited once the
        stream has been fully consumed, never per chunk. There is no
        backup-model fallback since tokens may already have been delivered.
        """
        return await self._start_stream(request)

    async def stream_with_tools(self, request: ToolStreamRequest) -> TextStream:
        """Streaming generation where the model must call one of the given tools at every step."""
        return await self._start_stream(
            request, tools=request.tools, tool_choice="required", max_steps=request.max_steps
        )

    async def _start_stream(
        self,
        request: StreamRequest | ToolStreamRequest,
        tools: dict[str, ToolSpec] | None = None,
        tool_choice: str | None = None,
        max_steps: int | None = None,
    ) -> TextStream:
        try:
            resolved = self.resolve(request)
            logger.info(f"[{request.usage_label}] Streaming with {resolved.callable_model.litellm_model}")
            stream = self.backend.stream_text(
                model=resolved.callable_model,
                payload=PromptInput(prompt=request.prompt, system=request.system),
                tools=tools,
                tool_choice=tool_choice,
                max_steps=max_steps,
                **self._call_kwargs(request, resolved),
            )
        except Exception as error:
            await self._handle_error(error, request)
            raise

        async def on_finish(summary: StreamFinish) -> None:
            await self._record_usage(request, resolved, summary.usage)
            if request.on_finish is not None:
                await request.on_finish(summary.text)

        async def on_error(error: Exception) -> None:
            await self._handle_error(error, request)

        stream.add_finish_hook(on_finish)
        stream.add_error_hook(on_error)
        return stream


def create_engine(config: Config | None = None, backend: ProviderBackend | None = None) -> CompletionEngine:
    """
    Create an engine wired to the file-backed usage log, error message
    store and system key store.

    Args:
        config: Configuration. Loaded from disk and environment if omitted.
        backend: Provider backend. Defaults to LiteLLM.
    """
    config = config or get_config()
    return CompletionEngine(
        config=config.llm,
        backend=backend,
        usage_recorder=JsonlUsageRecorder(expand_path(config.usage.path), enable=config.usage.enable),
        error_sink=JsonErrorMessageStore(expand_path(config.errors.path)),
        key_store=ProviderKeyStore(),
    )
