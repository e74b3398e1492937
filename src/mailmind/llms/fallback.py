"""
Backup-model fallback for Mailmind.

When a provider is unavailable or throttling, a call is repeated once
against a fixed backup model. There is no fallback chain: a failure of
the backup attempt propagates as is.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from mailmind.config.schema import BackupModelConfig
from mailmind.llms.exceptions import ErrorKind, classify_error
from mailmind.llms.models import CompletionRequest, UserAIFields

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=CompletionRequest)
ResultT = TypeVar("ResultT")

# Failures that switch to the backup model
FALLBACK_KINDS = frozenset({ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.AWS_THROTTLING})


def backup_user_ai(user_ai: UserAIFields, backup: BackupModelConfig) -> UserAIFields:
    """The backup provider/model, keeping the user's API key."""
    return UserAIFields(provider=backup.provider, model=backup.model, api_key=user_ai.api_key)


async def with_backup_model(
    operation: Callable[[RequestT], Awaitable[ResultT]],
    request: RequestT,
    backup: BackupModelConfig,
) -> ResultT:
    """
    Run ``operation`` and retry it once on the backup model if needed.

    The retry happens only when the backup model is enabled and the first
    failure is a service-unavailable or throttling error. Every other
    failure is re-raised unchanged.

    Args:
        operation: The completion operation to run.
        request: Its request; only ``user_ai`` changes for the retry.
        backup: Backup model configuration.

    Returns:
        The result of the first successful call.
    """
    try:
        return await operation(request)
    except Exception as error:
        if not backup.enabled:
            raise
        kind = classify_error(error)
        if kind not in FALLBACK_KINDS:
            raise
        logger.warning(
            f"{kind.value} for {request.user_email}, "
            f"retrying with backup model {backup.provider}/{backup.model}"
        )

    # Outside the except block so the backup's own errors are not chained
    # to the primary failure
    return await operation(request.with_user_ai(backup_user_ai(request.user_ai, backup)))
