"""
Provider backend for Mailmind.

The completion engine talks to providers through three operations:
``generate_text``, ``generate_object`` and ``stream_text``. The default
backend implements them on top of LiteLLM.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import litellm
from litellm import acompletion, completion_cost
from pydantic import BaseModel, ValidationError

from mailmind.llms.exceptions import ProviderValidationError, ToolExecutionError
from mailmind.llms.models import (
    CallableModel,
    Message,
    MessagesInput,
    ObjectResult,
    PromptInput,
    PromptPayload,
    StreamChunk,
    TextResult,
    TokenUsage,
    ToolCall,
    ToolCallResult,
    ToolSpec,
)
from mailmind.llms.stream import TextStream

logger = logging.getLogger(__name__)

# Drop parameters a provider does not support instead of failing
litellm.drop_params = True


class ProviderBackend(Protocol):
    """Operations the completion engine needs from a provider SDK."""

    async def generate_text(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        tools: dict[str, ToolSpec] | None = None,
        tool_choice: str | None = None,
        max_steps: int | None = None,
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TextResult: ...

    async def generate_object(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        schema: type[BaseModel],
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ObjectResult: ...

    def stream_text(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        tools: dict[str, ToolSpec] | None = None,
        tool_choice: str | None = None,
        max_steps: int | None = None,
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TextStream: ...


def to_litellm_messages(payload: PromptPayload) -> list[dict[str, Any]]:
    """Convert a prompt payload to LiteLLM chat messages."""
    if isinstance(payload, PromptInput):
        messages = []
        if payload.system:
            messages.append(Message.system(payload.system).to_dict())
        messages.append(Message.user(payload.prompt).to_dict())
        return messages

    if isinstance(payload, MessagesInput):
        return [m.to_dict() if isinstance(m, Message) else dict(m) for m in payload.messages]

    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def _strip_code_fence(content: str) -> str:
    """Some models wrap JSON in a markdown code fence."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _parse_arguments(name: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': {e}", tool_name=name) from e
    if not isinstance(arguments, dict):
        raise ToolExecutionError(f"Arguments for tool '{name}' must be an object", tool_name=name)
    return arguments


def _parse_tool_calls(raw_calls: Any) -> list[ToolCall]:
    calls = []
    for index, raw in enumerate(raw_calls or []):
        name = raw.function.name
        calls.append(
            ToolCall(
                id=raw.id or f"call_{index}",
                name=name,
                arguments=_parse_arguments(name, raw.function.arguments),
            )
        )
    return calls


def _assistant_tool_message(content: str | None, calls: list[ToolCall]) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in calls
        ],
    }


async def execute_tools(tools: dict[str, ToolSpec], calls: list[ToolCall]) -> list[ToolCallResult]:
    """
    Execute the tool calls requested by the model.

    Calls to tools without an ``execute`` function produce no result.

    Raises:
        ToolExecutionError: If the model called an unknown tool or a tool failed.
    """
    results = []
    for call in calls:
        spec = tools.get(call.name)
        if spec is None:
            raise ToolExecutionError(f"Model called unknown tool '{call.name}'", tool_name=call.name)
        if spec.execute is None:
            continue

        logger.debug(f"Executing tool {call}")
        try:
            result = await spec.run(call.arguments)
        except ValidationError as e:
            raise ToolExecutionError(
                f"Invalid arguments for tool '{call.name}': {e}", tool_name=call.name
            ) from e
        except Exception as e:
            raise ToolExecutionError(f"Tool '{call.name}' failed: {e}", tool_name=call.name) from e
        results.append(ToolCallResult(tool_call_id=call.id, name=call.name, result=result))
    return results


class LiteLLMBackend:
    """
    Provider backend using LiteLLM.

    Provider options keyed by the resolved provider are sent in the request
    body, headers as extra HTTP headers.
    """

    def __init__(self, structured_attempts: int = 2):
        """
        Args:
            structured_attempts: Generations allowed for structured output
                before giving up on schema validation.
        """
        self.structured_attempts = max(structured_attempts, 1)

    def _request_kwargs(
        self,
        model: CallableModel,
        provider_options: dict[str, dict[str, Any]] | None,
        headers: dict[str, str] | None,
        metadata: dict[str, Any] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": model.litellm_model}
        if model.api_key:
            kwargs["api_key"] = model.api_key
        if model.api_base:
            kwargs["api_base"] = model.api_base

        extra_body = (provider_options or {}).get(model.provider)
        if extra_body:
            kwargs["extra_body"] = extra_body
        if headers:
            kwargs["extra_headers"] = headers
        if metadata:
            kwargs["metadata"] = metadata
        return kwargs

    def _response_usage(self, response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage()

        try:
            cost = completion_cost(completion_response=response)
        except Exception:
            cost = 0.0

        return TokenUsage(
            prompt_tokens=usage.prompt_tokens or 0,
            completion_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
            cost=cost or 0.0,
        )

    def _stream_usage(self, chunk: Any, model: CallableModel) -> TokenUsage | None:
        usage = getattr(chunk, "usage", None)
        if usage is None or not (usage.prompt_tokens or usage.completion_tokens):
            return None

        prompt_tokens = usage.prompt_tokens or 0
        completion_tokens = usage.completion_tokens or 0
        try:
            prompt_cost, completion_cost_usd = litellm.cost_per_token(
                model=model.litellm_model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )
            cost = prompt_cost + completion_cost_usd
        except Exception:
            cost = 0.0

        return TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage.total_tokens or 0,
            cost=cost,
        )

    async def generate_text(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        tools: dict[str, ToolSpec] | None = None,
        tool_choice: str | None = None,
        max_steps: int | None = None,
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TextResult:
        """
        Generate text, running the tool loop when tools are given.

        Each step sends the conversation so far; executed tool results are
        appended before the next step. The loop ends when the model stops
        calling tools, calls a tool without ``execute``, or ``max_steps``
        steps have run.
        """
        messages = to_litellm_messages(payload)
        kwargs = self._request_kwargs(model, provider_options, headers, metadata)
        if tools:
            kwargs["tools"] = [spec.to_litellm(name) for name, spec in tools.items()]
            if tool_choice:
                kwargs["tool_choice"] = tool_choice

        steps_allowed = max(max_steps or 1, 1)
        usage = TokenUsage()
        all_calls: list[ToolCall] = []
        all_results: list[ToolCallResult] = []

        step = 0
        while True:
            step += 1
            response = await acompletion(messages=messages, **kwargs)
            usage = usage + self._response_usage(response)

            choice = response.choices[0]
            content = choice.message.content
            calls = _parse_tool_calls(getattr(choice.message, "tool_calls", None)) if tools else []

            if calls:
                all_calls.extend(calls)
                results = await execute_tools(tools or {}, calls)
                all_results.extend(results)

                if len(results) == len(calls) and step < steps_allowed:
                    messages = [
                        *messages,
                        _assistant_tool_message(content, calls),
                        *(result.to_message() for result in results),
                    ]
                    continue

            return TextResult(
                text=content or "",
                usage=usage,
                finish_reason=choice.finish_reason,
                tool_calls=all_calls,
                tool_results=all_results,
                steps=step,
            )

    async def generate_object(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        schema: type[BaseModel],
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ObjectResult:
        """
        Generate an object validated against ``schema``.

        The schema is sent as the response format. Output that fails
        validation is shown back to the model for another attempt.

        Raises:
            ProviderValidationError: If no attempt produced a valid object.
        """
        messages = to_litellm_messages(payload)
        kwargs = self._request_kwargs(model, provider_options, headers, metadata)
        kwargs["response_format"] = schema

        usage = TokenUsage()
        last_error: ValidationError | None = None

        for attempt in range(1, self.structured_attempts + 1):
            response = await acompletion(messages=messages, **kwargs)
            usage = usage + self._response_usage(response)
            content = response.choices[0].message.content or ""

            try:
                return ObjectResult(
                    object=schema.model_validate_json(_strip_code_fence(content)),
                    usage=usage,
                )
            except ValidationError as e:
                last_error = e
                logger.debug(f"Attempt {attempt} did not match {schema.__name__}: {e}")
                messages = [
                    *messages,
                    {"role": "assistant", "content": content},
                    {
                        "role": "user",
                        "content": (
                            f"Your response did not match the required JSON schema:\n{e}\n"
                            "Reply again with only the corrected JSON."
                        ),
                    },
                ]

        raise ProviderValidationError(
            f"{model.litellm_model} returned invalid {schema.__name__} "
            f"after {self.structured_attempts} attempts: {last_error}",
            attempts=self.structured_attempts,
        ) from last_error

    def stream_text(
        self,
        *,
        model: CallableModel,
        payload: PromptPayload,
        tools: dict[str, ToolSpec] | None = None,
        tool_choice: str | None = None,
        max_steps: int | None = None,
        provider_options: dict[str, dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TextStream:
        """Start a streaming generation. Nothing is sent until the stream is iterated."""
        kwargs = self._request_kwargs(model, provider_options, headers, metadata)
        if tools:
            kwargs["tools"] = [spec.to_litellm(name) for name, spec in tools.items()]
            if tool_choice:
                kwargs["tool_choice"] = tool_choice

        chunks = self._stream_chunks(
            model, to_litellm_messages(payload), kwargs, tools, max(max_steps or 1, 1)
        )
        return TextStream(chunks, model=model.litellm_model)

    async def _stream_chunks(
        self,
        model: CallableModel,
        messages: list[dict[str, Any]],
        kwargs: dict[str, Any],
        tools: dict[str, ToolSpec] | None,
        steps_allowed: int,
    ) -> AsyncIterator[StreamChunk]:
        for step in range(1, steps_allowed + 1):
            response = await acompletion(
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
                **kwargs,
            )

            parts: list[str] = []
            pending: dict[int, dict[str, str]] = {}

            async for chunk in response:
                usage = self._stream_usage(chunk, model)
                if not chunk.choices:
                    if usage is not None:
                        yield StreamChunk(model=model.litellm_model, usage=usage)
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                for raw in getattr(delta, "tool_calls", None) or []:
                    entry = pending.setdefault(raw.index or 0, {"id": "", "name": "", "arguments": ""})
                    if raw.id:
                        entry["id"] = raw.id
                    if raw.function is not None:
                        if raw.function.name:
                            entry["name"] = raw.function.name
                        if raw.function.arguments:
                            entry["arguments"] += raw.function.arguments

                content = delta.content or ""
                if content:
                    parts.append(content)
                if content or choice.finish_reason or usage is not None:
                    yield StreamChunk(
                        content=content,
                        finish_reason=choice.finish_reason,
                        model=model.litellm_model,
                        usage=usage,
                    )

            if not tools or not pending:
                return

            calls = [
                ToolCall(
                    id=entry["id"] or f"call_{index}",
                    name=entry["name"],
                    arguments=_parse_arguments(entry["name"], entry["arguments"]),
                )
                for index, entry in sorted(pending.items())
            ]
            results = await execute_tools(tools, calls)
            yield StreamChunk(model=model.litellm_model, tool_calls=calls, tool_results=results)

            if len(results) < len(calls) or step == steps_allowed:
                return

            messages = [
                *messages,
                _assistant_tool_message("".join(parts) or None, calls),
                *(result.to_message() for result in results),
            ]
