"""
Generic bounded retry for Mailmind.

Call sites opt in explicitly; the completion engine never retries on
its own.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Attempt {retry_state.attempt_number}: operation failed ({error}). Retrying...")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_if: Callable[[BaseException], bool],
    max_retries: int,
    delay_ms: int,
) -> T:
    """
    Call ``operation`` until it succeeds or attempts run out.

    A failure is retried only if ``retry_if`` accepts it, after waiting
    ``delay_ms`` milliseconds. Other failures, and the failure of the
    last attempt, are re-raised unchanged.

    Args:
        operation: Zero-argument callable returning an awaitable, e.g. a
            coroutine function or a lambda wrapping one.
        retry_if: Predicate deciding whether a failure is retryable.
        max_retries: Total number of attempts. Values below 1 mean one attempt.
        delay_ms: Fixed delay between attempts.

    Returns:
        The result of the first successful attempt.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(max_retries, 1)),
        wait=wait_fixed(delay_ms / 1000),
        retry=retry_if_exception(retry_if),
        before_sleep=_log_retry,
        sleep=_sleep,
        reraise=True,
    ):
        with attempt:
            return await operation()
