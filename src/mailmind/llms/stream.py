"""
Stream handle returned by streaming completions.

Wraps a backend's chunk generator and fires completion hooks exactly
once, after the last chunk has been consumed.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from mailmind.llms.models import StreamChunk, StreamFinish, TokenUsage, ToolCall, ToolCallResult

logger = logging.getLogger(__name__)

FinishHook = Callable[[StreamFinish], Awaitable[None]]
ErrorHook = Callable[[Exception], Awaitable[object]]


class TextStream:
    """
    Live token stream.

    Iterate with ``async for chunk in stream`` or call ``await stream.text()``
    to consume everything. A stream can be consumed only once.
    """

    def __init__(self, chunks: AsyncIterator[StreamChunk], model: str | None = None):
        self.model = model
        self._chunks = chunks
        self._finish_hooks: list[FinishHook] = []
        self._error_hooks: list[ErrorHook] = []
        self._parts: list[str] = []
        self._usage = TokenUsage()
        self._finish_reason: str | None = None
        self._tool_calls: list[ToolCall] = []
        self._tool_results: list[ToolCallResult] = []
        self._started = False
        self._finished = False

    def add_finish_hook(self, hook: FinishHook) -> None:
        """Register a coroutine called with the StreamFinish summary."""
        self._finish_hooks.append(hook)

    def add_error_hook(self, hook: ErrorHook) -> None:
        """Register a coroutine called when the stream raises."""
        self._error_hooks.append(hook)

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def text_so_far(self) -> str:
        return "".join(self._parts)

    @property
    def usage(self) -> TokenUsage:
        return self._usage

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self._tool_calls)

    @property
    def tool_results(self) -> list[ToolCallResult]:
        return list(self._tool_results)

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._started:
            raise RuntimeError("TextStream can only be consumed once")
        self._started = True
        return self._consume()

    async def _consume(self) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._chunks:
                self._collect(chunk)
                yield chunk
        except Exception as error:
            for hook in self._error_hooks:
                await hook(error)
            raise

        self._finished = True
        summary = StreamFinish(
            text=self.text_so_far,
            usage=self._usage,
            finish_reason=self._finish_reason,
            tool_calls=list(self._tool_calls),
            tool_results=list(self._tool_results),
        )
        for hook in self._finish_hooks:
            await hook(summary)

    def _collect(self, chunk: StreamChunk) -> None:
        if chunk.content:
            self._parts.append(chunk.content)
        if chunk.usage is not None:
            self._usage = self._usage + chunk.usage
        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason
        self._tool_calls.extend(chunk.tool_calls)
        self._tool_results.extend(chunk.tool_results)

    async def text(self) -> str:
        """Consume the whole stream and return the generated text."""
        if not self._started:
            async for _ in self:
                pass
        elif not self._finished:
            raise RuntimeError("TextStream is already being consumed")
        return self.text_so_far
