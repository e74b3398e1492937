"""
Provider error classification for Mailmind.

Provider SDKs raise errors of many shapes. They are normalised into a
ProviderErrorInfo and matched against an ordered list of rules; the first
matching rule decides the ErrorKind.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mailmind.config.loader import ConfigurationError as ConfigFileError

if TYPE_CHECKING:
    from mailmind.llms.error_messages import UserErrorSink

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Known provider failure kinds."""

    INCORRECT_API_KEY = "incorrect_api_key"
    API_KEY_DEACTIVATED = "api_key_deactivated"
    INVALID_MODEL = "invalid_model"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    OPENAI_RETRY_ERROR = "openai_retry_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AWS_THROTTLING = "aws_throttling"
    UNCLASSIFIED = "unclassified"


# =============================================================================
# Exception taxonomy
# =============================================================================

# Provider SDK errors propagate unchanged. ProviderAuthError, ProviderQuotaError,
# ProviderTransientError and UnclassifiedError are category markers returned by
# error_category() and are never raised here. ConfigurationError,
# ProviderValidationError and ToolExecutionError are raised.


class LLMError(Exception):
    """Base exception for the LLM layer."""

    pass


class ConfigurationError(LLMError, ConfigFileError):
    """Bad or missing model configuration. Fatal, never retried."""

    pass


class ProviderAuthError(LLMError):
    """Incorrect or deactivated API key."""

    pass


class ProviderQuotaError(LLMError):
    """The provider account has run out of balance."""

    pass


class ProviderTransientError(LLMError):
    """Unavailable, throttled or rate limited. Eligible for fallback and retry."""

    pass


class ProviderValidationError(LLMError):
    """Structured output never matched the requested schema."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ToolExecutionError(LLMError):
    """The model called a tool that does not exist or whose arguments are unusable."""

    def __init__(self, message: str, tool_name: str | None = None):
        super().__init__(message)
        self.tool_name = tool_name


class UnclassifiedError(LLMError):
    """A provider failure that matches no known kind."""

    pass


ERROR_CATEGORIES: dict[ErrorKind, type[LLMError]] = {
    ErrorKind.INCORRECT_API_KEY: ProviderAuthError,
    ErrorKind.API_KEY_DEACTIVATED: ProviderAuthError,
    ErrorKind.INVALID_MODEL: ConfigurationError,
    ErrorKind.INSUFFICIENT_BALANCE: ProviderQuotaError,
    ErrorKind.OPENAI_RETRY_ERROR: ProviderTransientError,
    ErrorKind.SERVICE_UNAVAILABLE: ProviderTransientError,
    ErrorKind.AWS_THROTTLING: ProviderTransientError,
    ErrorKind.UNCLASSIFIED: UnclassifiedError,
}


def error_category(kind: ErrorKind) -> type[LLMError]:
    """Map an ErrorKind onto the exception taxonomy."""
    return ERROR_CATEGORIES[kind]


# =============================================================================
# Normalised error representation
# =============================================================================

# Exception class names that identify a provider call failure on their own
_PROVIDER_ERROR_NAMES = {"ThrottlingException", "RetryError", "APICallError"}


def _iter_chain(error: BaseException) -> Iterator[BaseException]:
    """
    Yield the error and everything it explicitly wraps, each once.

    Implicit ``__context__`` is not followed: an error raised while
    handling another one is not caused by it.
    """
    seen: set[int] = set()
    pending: list[BaseException] = [error]

    while pending:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        for attr in ("last_error", "original_exception"):
            wrapped = getattr(current, attr, None)
            if isinstance(wrapped, BaseException):
                pending.append(wrapped)
        if current.__cause__ is not None:
            pending.append(current.__cause__)


def _status_code(error: BaseException) -> int | None:
    for candidate in (
        getattr(error, "status_code", None),
        getattr(error, "status", None),
        getattr(getattr(error, "response", None), "status_code", None),
    ):
        if isinstance(candidate, int):
            return candidate
    return None


def _looks_like_provider_error(error: BaseException) -> bool:
    return (
        type(error).__name__ in _PROVIDER_ERROR_NAMES
        or getattr(error, "llm_provider", None) is not None
        or _status_code(error) is not None
    )


@dataclass(frozen=True)
class ProviderErrorInfo:
    """Flattened view of a provider error and its cause chain."""

    message: str
    names: tuple[str, ...]
    messages: tuple[str, ...]
    status_codes: tuple[int, ...]
    providers: tuple[str, ...]
    reasons: tuple[str, ...]

    @classmethod
    def from_exception(cls, error: BaseException) -> "ProviderErrorInfo | None":
        """
        Normalise an exception.

        Returns:
            None when nothing in the chain originates from a provider call.
        """
        chain = list(_iter_chain(error))
        if not any(_looks_like_provider_error(e) for e in chain):
            return None

        messages: list[str] = []
        for e in chain:
            for text in (str(e), getattr(e, "message", None)):
                if isinstance(text, str) and text and text not in messages:
                    messages.append(text)

        return cls(
            message=str(error),
            names=tuple(type(e).__name__ for e in chain),
            messages=tuple(messages),
            status_codes=tuple(code for e in chain if (code := _status_code(e)) is not None),
            providers=tuple(
                str(p).lower() for e in chain if (p := getattr(e, "llm_provider", None))
            ),
            reasons=tuple(str(r) for e in chain if (r := getattr(e, "reason", None))),
        )

    def has_name(self, *names: str) -> bool:
        return any(name in self.names for name in names)

    def has_message(self, *fragments: str) -> bool:
        lowered = [m.lower() for m in self.messages]
        return any(fragment.lower() in m for fragment in fragments for m in lowered)

    def has_status(self, *codes: int) -> bool:
        return any(code in self.status_codes for code in codes)

    def from_provider(self, provider: str) -> bool:
        return provider in self.providers

    def has_reason(self, reason: str) -> bool:
        return reason in self.reasons


# =============================================================================
# Classification rules
# =============================================================================


def is_incorrect_api_key(info: ProviderErrorInfo) -> bool:
    return info.has_message("Incorrect API key provided")


def is_invalid_model(info: ProviderErrorInfo) -> bool:
    return info.has_message("does not exist or you do not have access to it")


def is_api_key_deactivated(info: ProviderErrorInfo) -> bool:
    return info.has_message("this API key has been deactivated")


def is_openai_retry_error(info: ProviderErrorInfo) -> bool:
    # OpenAI's SDK retries 429s itself before giving up
    if info.has_name("RetryError") and info.has_reason("maxRetriesExceeded"):
        return True
    return info.from_provider("openai") and info.has_status(429)


def is_insufficient_balance(info: ProviderErrorInfo) -> bool:
    return info.has_message("Your credit balance is too low")


def is_service_unavailable(info: ProviderErrorInfo) -> bool:
    return info.has_status(503) or info.has_name("ServiceUnavailableError")


def is_aws_throttling(info: ProviderErrorInfo) -> bool:
    return info.has_name("ThrottlingException") or info.has_message(
        "ThrottlingException",
        "Too many requests, please wait before trying again",
    )


# Order matters: specific provider rules before generic status checks
ERROR_RULES: list[tuple[ErrorKind, Callable[[ProviderErrorInfo], bool]]] = [
    (ErrorKind.INCORRECT_API_KEY, is_incorrect_api_key),
    (ErrorKind.INVALID_MODEL, is_invalid_model),
    (ErrorKind.API_KEY_DEACTIVATED, is_api_key_deactivated),
    (ErrorKind.OPENAI_RETRY_ERROR, is_openai_retry_error),
    (ErrorKind.INSUFFICIENT_BALANCE, is_insufficient_balance),
    (ErrorKind.SERVICE_UNAVAILABLE, is_service_unavailable),
    (ErrorKind.AWS_THROTTLING, is_aws_throttling),
]


def classify_info(info: ProviderErrorInfo) -> ErrorKind:
    """Return the kind of the first matching rule."""
    for kind, predicate in ERROR_RULES:
        if predicate(info):
            return kind
    return ErrorKind.UNCLASSIFIED


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an exception into an ErrorKind.

    Args:
        error: The exception raised by a provider call.

    Returns:
        The matching kind, or UNCLASSIFIED for anything that is not a
        recognised provider error.
    """
    info = ProviderErrorInfo.from_exception(error)
    if info is None:
        return ErrorKind.UNCLASSIFIED
    return classify_info(info)


TRANSIENT_KINDS = frozenset(
    kind for kind, category in ERROR_CATEGORIES.items() if category is ProviderTransientError
)


def is_transient_error(error: BaseException) -> bool:
    """``retry_if`` predicate for with_retry: unavailable, throttled or rate limited."""
    return classify_error(error) in TRANSIENT_KINDS


# Kinds the user can act on. Transient kinds are never notified.
NOTIFIED_KINDS = frozenset(
    {
        ErrorKind.INCORRECT_API_KEY,
        ErrorKind.INVALID_MODEL,
        ErrorKind.API_KEY_DEACTIVATED,
        ErrorKind.OPENAI_RETRY_ERROR,
        ErrorKind.INSUFFICIENT_BALANCE,
    }
)


async def handle_error(
    error: BaseException,
    user_email: str,
    sink: "UserErrorSink",
) -> ErrorKind | None:
    """
    Record a user-visible message for a provider error the user can fix.

    The caller must re-raise ``error`` afterwards; this never swallows it.
    A failure to store the message is logged and does not replace the
    original error.

    Returns:
        The classified kind, or None when the error did not come from a
        provider call.
    """
    info = ProviderErrorInfo.from_exception(error)
    if info is None:
        logger.debug(f"Not a provider error for {user_email}: {type(error).__name__}: {error}")
        return None

    kind = classify_info(info)
    logger.warning(f"Provider error {kind.value} for {user_email}: {info.message}")
    if kind not in NOTIFIED_KINDS:
        return kind

    try:
        await sink.add_user_error_message(user_email, kind, info.message)
    except Exception as sink_error:
        logger.error(f"Could not store {kind.value} message for {user_email}: {sink_error}")

    return kind
