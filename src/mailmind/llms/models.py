"""
LLM data models for Mailmind.

Defines the user-facing request types, resolved models, usage and
result types shared by the completion engine and its backends.
"""

import dataclasses
import inspect
import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class Provider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    BEDROCK = "bedrock"
    GOOGLE = "google"
    GROQ = "groq"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"

    @property
    def litellm_prefix(self) -> str:
        """Model prefix LiteLLM uses to route to this provider."""
        return _LITELLM_PREFIXES.get(self, self.value)

    @property
    def is_aggregator(self) -> bool:
        """Whether this provider routes requests to upstream vendors."""
        return self is Provider.OPENROUTER

    @property
    def requires_api_key(self) -> bool:
        """Bedrock uses AWS credentials and Ollama runs locally."""
        return self not in (Provider.BEDROCK, Provider.OLLAMA)


_LITELLM_PREFIXES = {
    Provider.GOOGLE: "gemini",
    Provider.OLLAMA: "ollama_chat",
}


class MessageRole(str, Enum):
    """Valid message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class Message:
    """Conversation message."""

    role: str
    content: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to LiteLLM-compatible dict."""
        result: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM.value, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER.value, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT.value, content=content)


# =============================================================================
# User configuration & resolved models
# =============================================================================


@dataclass(frozen=True)
class UserAIFields:
    """
    Per-user LLM preferences.

    ``provider`` and ``model`` may be None to fall back to the system
    defaults. ``api_key`` is the user's own key, if any.
    """

    provider: str | None = None
    model: str | None = None
    api_key: str | None = None


@dataclass(frozen=True)
class CallableModel:
    """Everything a backend needs to address one model."""

    provider: str
    litellm_model: str
    api_key: str | None = None
    api_base: str | None = None


@dataclass(frozen=True)
class ResolvedModel:
    """Concrete provider/model selected for a single call."""

    provider: Provider
    model_id: str
    callable_model: CallableModel


# =============================================================================
# Prompt payloads
# =============================================================================


@dataclass(frozen=True)
class PromptInput:
    """A prompt with an optional system instruction."""

    prompt: str
    system: str | None = None

    def __post_init__(self) -> None:
        if not self.prompt:
            raise ValueError("prompt cannot be empty")


@dataclass(frozen=True)
class MessagesInput:
    """A full conversation, system turns included."""

    messages: tuple[Message | dict[str, Any], ...]

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("messages cannot be empty")
        # Accept any sequence but store an immutable copy
        object.__setattr__(self, "messages", tuple(self.messages))


PromptPayload = PromptInput | MessagesInput


def build_payload(
    prompt: str | None = None,
    system: str | None = None,
    messages: Sequence[Message | dict[str, Any]] | None = None,
) -> PromptPayload:
    """
    Build the prompt payload for structured and tool requests.

    Exactly one of ``prompt`` (optionally with ``system``) or ``messages``
    must be given.

    Raises:
        ValueError: If both or neither are given.
    """
    if messages is not None:
        if prompt is not None or system is not None:
            raise ValueError("Pass either prompt/system or messages, not both")
        return MessagesInput(tuple(messages))

    if prompt is None:
        raise ValueError("Either prompt or messages is required")

    return PromptInput(prompt=prompt, system=system)


# =============================================================================
# Tools
# =============================================================================


@dataclass(frozen=True)
class ToolSpec:
    """
    A capability the model may invoke during generation.

    ``parameters`` is either a JSON schema dict or a pydantic model class.
    Tools without ``execute`` end the tool loop once called; their calls
    are still returned to the caller.
    """

    description: str
    parameters: dict[str, Any] | type[BaseModel] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    execute: Callable[..., Any] | None = None

    def json_schema(self) -> dict[str, Any]:
        if isinstance(self.parameters, dict):
            return self.parameters
        return self.parameters.model_json_schema()

    def to_litellm(self, name: str) -> dict[str, Any]:
        """Tool definition in the OpenAI function format LiteLLM expects."""
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }

    async def run(self, arguments: dict[str, Any]) -> Any:
        """Validate arguments (for pydantic parameters) and execute the tool."""
        if self.execute is None:
            raise RuntimeError("Tool has no execute function")

        if not isinstance(self.parameters, dict):
            arguments = self.parameters.model_validate(arguments).model_dump()

        result = self.execute(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]

    def __str__(self) -> str:
        return f"{self.name}({', '.join(f'{k}={v}' for k, v in self.arguments.items())})"


@dataclass(frozen=True)
class ToolCallResult:
    """Output of an executed tool call."""

    tool_call_id: str
    name: str
    result: Any

    def to_message(self) -> dict[str, Any]:
        content = self.result if isinstance(self.result, str) else json.dumps(self.result, default=str)
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": content}


# =============================================================================
# Requests
# =============================================================================


FinishCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True, kw_only=True)
class CompletionRequest:
    """Fields shared by every completion request."""

    user_ai: UserAIFields
    user_email: str
    usage_label: str
    use_economy_model: bool = False

    def with_user_ai(self, user_ai: UserAIFields):
        """Copy of this request targeting a different provider/model."""
        return dataclasses.replace(self, user_ai=user_ai)


@dataclass(frozen=True, kw_only=True)
class TextRequest(CompletionRequest):
    """Single-shot text generation."""

    prompt: str
    system: str | None = None


@dataclass(frozen=True, kw_only=True)
class ObjectRequest(CompletionRequest):
    """Generation validated against a pydantic schema."""

    schema: type[BaseModel]
    payload: PromptPayload

    def __post_init__(self) -> None:
        if not isinstance(self.payload, (PromptInput, MessagesInput)):
            raise TypeError("payload must be a PromptInput or MessagesInput")

    @classmethod
    def build(
        cls,
        *,
        schema: type[BaseModel],
        prompt: str | None = None,
        system: str | None = None,
        messages: Sequence[Message | dict[str, Any]] | None = None,
        **common: Any,
    ) -> "ObjectRequest":
        return cls(schema=schema, payload=build_payload(prompt, system, messages), **common)


@dataclass(frozen=True, kw_only=True)
class StreamRequest(CompletionRequest):
    """Streaming text generation."""

    prompt: str
    system: str | None = None
    on_finish: FinishCallback | None = None


@dataclass(frozen=True, kw_only=True)
class ToolRequest(CompletionRequest):
    """Generation where the model must call at least one tool per step."""

    tools: dict[str, ToolSpec]
    payload: PromptPayload
    max_steps: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.payload, (PromptInput, MessagesInput)):
            raise TypeError("payload must be a PromptInput or MessagesInput")
        if not self.tools:
            raise ValueError("tools cannot be empty")

    @classmethod
    def build(
        cls,
        *,
        tools: dict[str, ToolSpec],
        prompt: str | None = None,
        system: str | None = None,
        messages: Sequence[Message | dict[str, Any]] | None = None,
        max_steps: int | None = None,
        **common: Any,
    ) -> "ToolRequest":
        return cls(
            tools=tools,
            payload=build_payload(prompt, system, messages),
            max_steps=max_steps,
            **common,
        )


@dataclass(frozen=True, kw_only=True)
class ToolStreamRequest(CompletionRequest):
    """Streaming variant of tool generation."""

    tools: dict[str, ToolSpec]
    prompt: str
    system: str | None = None
    max_steps: int | None = None
    on_finish: FinishCallback | None = None

    def __post_init__(self) -> None:
        if not self.tools:
            raise ValueError("tools cannot be empty")


# =============================================================================
# Usage & results
# =============================================================================


@dataclass
class TokenUsage:
    """Token usage and cost for one call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def __post_init__(self) -> None:
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cost=self.cost + other.cost,
        )

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class UsageRecord:
    """One successful call's usage, tagged for accounting."""

    email: str
    provider: str
    model: str
    usage: TokenUsage
    label: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "email": self.email,
            "provider": self.provider,
            "model": self.model,
            "label": self.label,
            "usage": self.usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageRecord":
        return cls(
            email=data["email"],
            provider=data["provider"],
            model=data["model"],
            label=data["label"],
            usage=TokenUsage(**data.get("usage", {})),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class TextResult:
    """Result of text or tool generation."""

    text: str
    usage: TokenUsage
    finish_reason: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolCallResult] = field(default_factory=list)
    steps: int = 1


@dataclass
class ObjectResult:
    """Result of structured generation."""

    object: Any
    usage: TokenUsage


@dataclass
class StreamChunk:
    """Single chunk from a streaming response."""

    content: str = ""
    finish_reason: str | None = None
    model: str | None = None
    usage: TokenUsage | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolCallResult] = field(default_factory=list)


@dataclass
class StreamFinish:
    """Summary handed to stream completion hooks."""

    text: str
    usage: TokenUsage
    finish_reason: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolCallResult] = field(default_factory=list)
