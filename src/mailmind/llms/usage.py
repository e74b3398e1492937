"""
Usage recording for Mailmind.

Every successful completion produces one UsageRecord tagged with the
user's email, provider, model and a caller-chosen label. Records are
append-only.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from mailmind.llms.models import TokenUsage, UsageRecord

logger = logging.getLogger(__name__)


class UsageRecordError(Exception):
    """Raised when a usage record cannot be written."""

    pass


class UsageRecorder(Protocol):
    """Append-only sink for usage records."""

    async def record(self, record: UsageRecord) -> None: ...


class InMemoryUsageRecorder:
    """Usage recorder kept in process memory."""

    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    async def record(self, record: UsageRecord) -> None:
        self.records.append(record)

    def read_records(self, email: str | None = None) -> list[UsageRecord]:
        return [r for r in self.records if email is None or r.email == email]


class JsonlUsageRecorder:
    """
    Usage recorder writing JSON Lines.

    One line per record; existing lines are never rewritten.
    """

    def __init__(self, path: str | Path, enable: bool = True):
        self.path = Path(path).expanduser()
        self.enable = enable
        self._lock = threading.Lock()

    async def record(self, record: UsageRecord) -> None:
        """
        Append a record.

        Raises:
            UsageRecordError: If the log file cannot be written.
        """
        if not self.enable:
            return

        try:
            await asyncio.to_thread(self._append, json.dumps(record.to_dict()) + "\n")
        except OSError as e:
            raise UsageRecordError(f"Cannot write usage log {self.path}: {e}") from e

        logger.debug(
            f"Recorded usage for {record.email} ({record.provider}/{record.model}, "
            f"{record.label}): {record.usage.total_tokens} tokens, ${record.usage.cost:.6f}"
        )

    def _append(self, line: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)

    def read_records(self, email: str | None = None) -> list[UsageRecord]:
        """Read records, optionally only those of one user."""
        if not self.path.exists():
            return []

        records = []
        with self.path.open(encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = UsageRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed usage line {line_number}: {e}")
                    continue
                if email is None or record.email == email:
                    records.append(record)
        return records


# =============================================================================
# Summaries
# =============================================================================


@dataclass
class UsageTotals:
    """Aggregated usage for one grouping key."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0

    def add(self, usage: TokenUsage) -> None:
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_cost += usage.cost
        self.request_count += 1


@dataclass
class UsageSummary:
    """Usage grouped by model and by label."""

    by_model: dict[str, UsageTotals] = field(default_factory=dict)
    by_label: dict[str, UsageTotals] = field(default_factory=dict)
    total: UsageTotals = field(default_factory=UsageTotals)


def summarize(records: list[UsageRecord]) -> UsageSummary:
    """
    Aggregate records per ``provider/model`` and per label.

    Args:
        records: Records to aggregate.

    Returns:
        The usage summary.
    """
    summary = UsageSummary()
    for record in records:
        model_key = f"{record.provider}/{record.model}"
        summary.by_model.setdefault(model_key, UsageTotals()).add(record.usage)
        summary.by_label.setdefault(record.label, UsageTotals()).add(record.usage)
        summary.total.add(record.usage)
    return summary
