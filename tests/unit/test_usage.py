"""
Unit tests for usage recording.
"""

import asyncio
from datetime import datetime

import pytest

from mailmind.llms.models import TokenUsage, UsageRecord
from mailmind.llms.usage import (
    InMemoryUsageRecorder,
    JsonlUsageRecorder,
    UsageRecordError,
    summarize,
)


def _record(email="a@example.com", provider="openai", model="gpt-4o", label="Clean", cost=0.01):
    return UsageRecord(
        email=email,
        provider=provider,
        model=model,
        usage=TokenUsage(prompt_tokens=100, completion_tokens=20, cost=cost),
        label=label,
        timestamp=datetime(2025, 3, 1, 12, 0, 0),
    )


class TestJsonlUsageRecorder:
    """Tests for the JSON Lines recorder."""

    @pytest.mark.asyncio
    async def test_appends_records(self, temp_dir):
        recorder = JsonlUsageRecorder(temp_dir / "logs" / "usage.jsonl")

        await recorder.record(_record())
        await recorder.record(_record(email="b@example.com", label="Summarize"))

        lines = (temp_dir / "logs" / "usage.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert recorder.read_records() == [_record(), _record(email="b@example.com", label="Summarize")]

    @pytest.mark.asyncio
    async def test_filter_by_email(self, temp_dir):
        recorder = JsonlUsageRecorder(temp_dir / "usage.jsonl")
        await recorder.record(_record())
        await recorder.record(_record(email="b@example.com"))

        assert [r.email for r in recorder.read_records("b@example.com")] == ["b@example.com"]

    @pytest.mark.asyncio
    async def test_disabled_writes_nothing(self, temp_dir):
        path = temp_dir / "usage.jsonl"
        recorder = JsonlUsageRecorder(path, enable=False)

        await recorder.record(_record())

        assert not path.exists()
        assert recorder.read_records() == []

    @pytest.mark.asyncio
    async def test_skips_malformed_lines(self, temp_dir):
        path = temp_dir / "usage.jsonl"
        recorder = JsonlUsageRecorder(path)
        await recorder.record(_record())
        with path.open("a") as f:
            f.write("not json\n\n{\"email\": \"x\"}\n")

        assert recorder.read_records() == [_record()]

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, temp_dir):
        # A directory where the log file should be
        path = temp_dir / "usage.jsonl"
        path.mkdir()

        with pytest.raises(UsageRecordError):
            await JsonlUsageRecorder(path).record(_record())

    @pytest.mark.asyncio
    async def test_concurrent_records(self, temp_dir):
        recorder = JsonlUsageRecorder(temp_dir / "usage.jsonl")
        emails = [f"user{i}@example.com" for i in range(20)]

        await asyncio.gather(*(recorder.record(_record(email=email)) for email in emails))

        assert sorted(r.email for r in recorder.read_records()) == sorted(emails)


class TestInMemoryUsageRecorder:
    @pytest.mark.asyncio
    async def test_records(self):
        recorder = InMemoryUsageRecorder()
        await recorder.record(_record())
        await recorder.record(_record(email="b@example.com"))
        assert len(recorder.read_records()) == 2
        assert len(recorder.read_records("a@example.com")) == 1


class TestSummarize:
    """Tests for usage summaries."""

    def test_groups_by_model_and_label(self):
        summary = summarize(
            [
                _record(),
                _record(label="Summarize", cost=0.02),
                _record(provider="anthropic", model="claude-3-5-haiku-20241022"),
            ]
        )

        assert summary.total.request_count == 3
        assert summary.total.total_cost == pytest.approx(0.04)
        assert summary.by_model["openai/gpt-4o"].request_count == 2
        assert summary.by_model["anthropic/claude-3-5-haiku-20241022"].prompt_tokens == 100
        assert summary.by_label["Clean"].request_count == 2
        assert summary.by_label["Summarize"].total_cost == pytest.approx(0.02)

    def test_empty(self):
        summary = summarize([])
        assert summary.by_model == {}
        assert summary.total.request_count == 0
