"""
Mailmind LLM layer.

Model resolution, the completion engine, provider error classification,
backup-model fallback and opt-in retries.
"""

from mailmind.llms.backend import LiteLLMBackend, ProviderBackend
from mailmind.llms.engine import CallOptions, CompletionEngine, create_engine
from mailmind.llms.error_messages import (
    InMemoryErrorMessageStore,
    JsonErrorMessageStore,
    UserErrorMessage,
    UserErrorSink,
)
from mailmind.llms.exceptions import (
    ConfigurationError,
    ErrorKind,
    LLMError,
    ProviderAuthError,
    ProviderQuotaError,
    ProviderTransientError,
    ProviderValidationError,
    ToolExecutionError,
    UnclassifiedError,
    classify_error,
    error_category,
    handle_error,
    NOTIFIED_KINDS,
    is_transient_error,
)
from mailmind.llms.fallback import FALLBACK_KINDS, with_backup_model
from mailmind.llms.models import (
    Message,
    ObjectRequest,
    ObjectResult,
    Provider,
    ResolvedModel,
    StreamChunk,
    StreamRequest,
    TextRequest,
    TextResult,
    TokenUsage,
    ToolCall,
    ToolCallResult,
    ToolRequest,
    ToolSpec,
    ToolStreamRequest,
    UsageRecord,
    UserAIFields,
)
from mailmind.llms.resolver import resolve_model
from mailmind.llms.retry import with_retry
from mailmind.llms.stream import TextStream
from mailmind.llms.usage import InMemoryUsageRecorder, JsonlUsageRecorder, UsageRecorder

__all__ = [
    # Engine
    "CompletionEngine",
    "CallOptions",
    "create_engine",
    "resolve_model",
    "with_backup_model",
    "with_retry",
    "FALLBACK_KINDS",
    # Backends
    "ProviderBackend",
    "LiteLLMBackend",
    "TextStream",
    # Models
    "Provider",
    "UserAIFields",
    "ResolvedModel",
    "Message",
    "TextRequest",
    "ObjectRequest",
    "StreamRequest",
    "StreamChunk",
    "ToolRequest",
    "ToolStreamRequest",
    "ToolSpec",
    "ToolCall",
    "ToolCallResult",
    "TextResult",
    "ObjectResult",
    "TokenUsage",
    "UsageRecord",
    # Errors
    "ErrorKind",
    "LLMError",
    "ConfigurationError",
    "ProviderAuthError",
    "ProviderQuotaError",
    "ProviderTransientError",
    "ProviderValidationError",
    "ToolExecutionError",
    "UnclassifiedError",
    "classify_error",
    "error_category",
    "handle_error",
    "is_transient_error",
    "NOTIFIED_KINDS",
    # Sinks
    "UsageRecorder",
    "InMemoryUsageRecorder",
    "JsonlUsageRecorder",
    "UserErrorSink",
    "UserErrorMessage",
    "InMemoryErrorMessageStore",
    "JsonErrorMessageStore",
]
