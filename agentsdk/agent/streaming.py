"""Streaming: engine events → agent events over a bounded, cancellable stream."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import Any

from ..config import StreamConfig
from ..context import CallContext
from ..errors import AgentSDKError, EngineError, RunCancelledError
from ..infra.logging import get_logger
from ..tools import ToolRegistry
from ..types import (
    AgentEventType,
    AgentStreamEvent,
    EngineRequest,
    GenerateOptions,
    Memory,
    Message,
    ReasoningEngine,
    StreamEvent,
    StreamEventType,
    Tool,
    ToolCall,
    ToolCallEvent,
    ToolCallStatus,
)
from .history import ToolCallHistory
from .loop import ToolDispatcher, as_registry, build_messages, engine_name, final_round_request

logger = get_logger(__name__)

_CONTENT_TYPES = {
    StreamEventType.MESSAGE_START,
    StreamEventType.CONTENT_DELTA,
    StreamEventType.CONTENT_COMPLETE,
    StreamEventType.MESSAGE_STOP,
}


def translate_event(event: StreamEvent) -> AgentStreamEvent:
    """Map one engine event to a new agent event. The input is never modified."""
    metadata = {**event.metadata, "source_event": str(event.type)}
    if event.type in _CONTENT_TYPES:
        return AgentStreamEvent(AgentEventType.CONTENT, content=event.content, metadata=metadata)
    if event.type == StreamEventType.THINKING:
        return AgentStreamEvent(AgentEventType.THINKING, thinking=event.content, metadata=metadata)
    if event.type == StreamEventType.TOOL_USE:
        call = event.tool_call
        return AgentStreamEvent(
            AgentEventType.TOOL_CALL,
            tool_call=ToolCallEvent(
                id=call.id if call else "",
                name=call.name if call else "",
                arguments=call.arguments if call else "",
                status=ToolCallStatus.RECEIVED,
            ),
            metadata=metadata,
        )
    if event.type == StreamEventType.TOOL_RESULT:
        call = event.tool_call
        return AgentStreamEvent(
            AgentEventType.TOOL_RESULT,
            tool_call=ToolCallEvent(
                id=call.id if call else "",
                name=call.name if call else "",
                arguments=call.arguments if call else "",
                result=event.content,
                status=ToolCallStatus.COMPLETED,
            ),
            metadata=metadata,
        )
    return AgentStreamEvent(
        AgentEventType.ERROR, content=event.content, error=event.error, metadata=metadata
    )


_END = object()


def _retrieve(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class AgentEventStream:
    """
    Single-producer event stream backed by a bounded queue.

    A full queue blocks the producer. ``cancel()`` stops the producer at its
    next send; ``wait()`` returns the final answer or raises the terminal error.
    """

    def __init__(self, buffer_size: int = 100, cancel_event: asyncio.Event | None = None) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=buffer_size)
        self._cancel = cancel_event or asyncio.Event()
        self._closed = False
        self._ended = False
        self._completed = False
        self._content_length = 0
        self._task: asyncio.Task | None = None

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    @property
    def pending(self) -> int:
        """Events buffered and not yet consumed."""
        return self._queue.qsize()

    def start(self, producer: Callable[[AgentEventStream], Awaitable[str]]) -> AgentEventStream:
        """Run ``producer`` as the stream's worker task."""
        if self._task is not None:
            raise RuntimeError("stream already started")
        self._task = asyncio.create_task(self._drive(producer))
        self._task.add_done_callback(_retrieve)
        return self

    async def _drive(self, producer: Callable[[AgentEventStream], Awaitable[str]]) -> str:
        try:
            return await producer(self)
        except RunCancelledError:
            logger.info("stream_cancelled")
            raise
        except Exception as e:
            logger.warning("stream_failed", error=str(e))
            try:
                if not self._completed:
                    await self.send_complete(had_error=True)
                await self.send(AgentStreamEvent(AgentEventType.ERROR, content=str(e), error=e))
            except RunCancelledError:
                pass
            raise
        finally:
            await self.close()

    async def send(self, event: AgentStreamEvent) -> None:
        if self._closed:
            raise RuntimeError("send on closed stream")
        if self._cancel.is_set():
            raise RunCancelledError()
        if event.type == AgentEventType.CONTENT:
            self._content_length += len(event.content)
        try:
            self._queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass
        put = asyncio.ensure_future(self._queue.put(event))
        cancelled = asyncio.ensure_future(self._cancel.wait())
        try:
            done, _ = await asyncio.wait({put, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not put.done():
                put.cancel()
        if put not in done:
            raise RunCancelledError()

    async def send_complete(self, had_error: bool = False, **metadata: Any) -> None:
        if self._completed:
            return
        self._completed = True
        await self.send(AgentStreamEvent(
            AgentEventType.COMPLETE,
            metadata={
                "total_content_length": self._content_length,
                "had_error": had_error,
                **metadata,
            },
        ))

    async def close(self) -> None:
        """Idempotent end-of-stream marker."""
        if self._closed:
            return
        self._closed = True
        if self._cancel.is_set():
            try:
                self._queue.put_nowait(_END)
            except asyncio.QueueFull:
                pass
            return
        put = asyncio.ensure_future(self._queue.put(_END))
        cancelled = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({put, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not put.done():
                put.cancel()

    def cancel(self) -> None:
        self._cancel.set()

    async def wait(self) -> str:
        if self._task is None:
            raise RuntimeError("stream not started")
        return await self._task

    async def aclose(self) -> None:
        """Cancel the worker and wait for it to stop."""
        self.cancel()
        if self._task is not None:
            await asyncio.wait({self._task})

    async def collect(self) -> list[AgentStreamEvent]:
        return [e async for e in self]

    def __aiter__(self) -> AsyncIterator[AgentStreamEvent]:
        return self

    async def __anext__(self) -> AgentStreamEvent:
        if self._ended or self._cancel.is_set():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._ended = True
            raise StopAsyncIteration
        return item


async def _next_event(iterator: AsyncIterator[StreamEvent]) -> StreamEvent | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


class StreamTranslator:
    """Runs the round structure of the tool loop over ``engine.stream`` and feeds a stream."""

    def __init__(
        self,
        engine: ReasoningEngine,
        options: GenerateOptions | None = None,
        memory: Memory | None = None,
        config: StreamConfig | None = None,
    ) -> None:
        self.engine = engine
        self.options = options or GenerateOptions()
        self.memory = memory if memory is not None else self.options.memory
        self.config = config or StreamConfig()

    async def run(
        self,
        history: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None,
        ctx: CallContext,
        stream: AgentEventStream,
        max_rounds: int | None = None,
        send_complete: bool = True,
        finalize: Callable[[str], Awaitable[str]] | None = None,
    ) -> str:
        """
        Stream one run and return its final answer.

        ``finalize`` sees the terminal text before any of it is replayed; when
        it changes the text, the captured deltas are replaced by one content
        event carrying the new text. With intermediate messages enabled the
        deltas are already out, so only the returned answer changes.
        """
        rounds = max_rounds if max_rounds is not None else self.options.max_rounds
        if rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        registry = as_registry(tools)
        offered = registry.list()
        dispatcher = ToolDispatcher(registry, ToolCallHistory(), self.memory)
        conversation = build_messages(self.options, history)

        round_index = 0
        while True:
            final = round_index >= rounds
            ctx.check("stream")
            if final:
                logger.info("forcing_final_round", max_rounds=rounds)
                request = final_round_request(conversation, self.options)
            else:
                request = EngineRequest(
                    messages=list(conversation), tools=offered, options=self.options
                )
            text, calls, captured = await self._stream_round(request, ctx, stream)

            if final or not calls:
                if calls:
                    logger.warning("final_round_tool_calls_ignored", count=len(calls))
                if finalize is not None:
                    finished = await finalize(text)
                    if finished != text:
                        text = finished
                        captured = [] if self.config.include_intermediate_messages else [
                            AgentStreamEvent(AgentEventType.CONTENT, content=text)
                        ]
                for event in captured:
                    await stream.send(event)
                if send_complete:
                    await stream.send_complete(rounds=round_index + 1)
                return text

            outcomes = []
            for call in calls:
                await stream.send(AgentStreamEvent(
                    AgentEventType.TOOL_CALL,
                    tool_call=ToolCallEvent(
                        id=call.id,
                        name=call.name,
                        arguments=call.arguments,
                        status=ToolCallStatus.EXECUTING,
                    ),
                ))
                outcome = await dispatcher.execute(call, ctx)
                await stream.send(AgentStreamEvent(
                    AgentEventType.TOOL_RESULT,
                    tool_call=ToolCallEvent(
                        id=call.id,
                        name=call.name,
                        arguments=call.arguments,
                        result=outcome.result,
                        status=outcome.status,
                    ),
                ))
                outcomes.append(outcome)
            await dispatcher.record_round(text, calls, outcomes, conversation, ctx)
            round_index += 1

    async def _stream_round(
        self,
        request: EngineRequest,
        ctx: CallContext,
        stream: AgentEventStream,
    ) -> tuple[str, list[ToolCall], list[AgentStreamEvent]]:
        """Consume one engine round. Returns its text, tool calls and captured content events."""
        cfg = self.config
        parts: list[str] = []
        captured: list[AgentStreamEvent] = []
        calls: dict[str, ToolCall] = {}
        complete_text: str | None = None
        saw_delta = False

        try:
            iterator = aiter(self.engine.stream(request, ctx))
        except AgentSDKError:
            raise
        except Exception as e:
            raise EngineError(engine_name(self.engine), str(e), cause=e) from e

        while True:
            try:
                event = await ctx.wait_guarded(_next_event(iterator), operation="engine stream")
            except AgentSDKError:
                raise
            except Exception as e:
                raise EngineError(engine_name(self.engine), str(e), cause=e) from e
            if event is None:
                break

            translated = translate_event(event)
            if event.type == StreamEventType.CONTENT_DELTA:
                saw_delta = True
                parts.append(event.content)
                if cfg.include_intermediate_messages:
                    await stream.send(translated)
                else:
                    captured.append(translated)
            elif event.type == StreamEventType.CONTENT_COMPLETE:
                complete_text = event.content
            elif event.type == StreamEventType.THINKING:
                if cfg.include_thinking:
                    await stream.send(translated)
            elif event.type == StreamEventType.TOOL_USE:
                if event.tool_call is not None:
                    calls[event.tool_call.id] = event.tool_call
                if cfg.include_tool_progress:
                    await stream.send(translated)
            elif event.type == StreamEventType.TOOL_RESULT:
                await stream.send(translated)
            elif event.type == StreamEventType.ERROR:
                aclose = getattr(iterator, "aclose", None)
                if aclose is not None:
                    await aclose()
                cause = event.error or RuntimeError(event.content or "engine stream error")
                raise EngineError(engine_name(self.engine), str(cause), cause=cause)

        if not saw_delta and complete_text:
            parts = [complete_text]
            content = AgentStreamEvent(
                AgentEventType.CONTENT,
                content=complete_text,
                metadata={"source_event": str(StreamEventType.CONTENT_COMPLETE)},
            )
            if cfg.include_intermediate_messages:
                await stream.send(content)
            else:
                captured.append(content)

        return "".join(parts), list(calls.values()), captured
