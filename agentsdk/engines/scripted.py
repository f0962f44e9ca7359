"""
Scripted engine for tests and demos.

Each call consumes the next scripted item:

* ``str``: a plain answer
* ``EngineResponse``: content and/or tool calls
* ``list[StreamEvent]``: exact events for ``stream``; folded into a response for ``complete``
* ``Exception``: raised from the call

When the script runs out the ``default`` item is replayed.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Iterable
from typing import Any, Union

from ..context import CallContext
from ..types import (
    EngineRequest,
    EngineResponse,
    StreamEvent,
    StreamEventType,
    ToolCall,
)
from .base import BaseEngine, RetryConfig

ScriptItem = Union[str, EngineResponse, list[StreamEvent], Exception]


def tool_call(name: str, arguments: dict[str, Any] | str | None = None, id: str | None = None) -> ToolCall:
    args = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
    return ToolCall(id=id or f"call_{uuid.uuid4().hex[:8]}", name=name, arguments=args)


def tool_response(*calls: ToolCall, content: str = "") -> EngineResponse:
    return EngineResponse(content=content, tool_calls=list(calls))


def text_events(*chunks: str, calls: Iterable[ToolCall] = ()) -> list[StreamEvent]:
    """A well-formed streamed round: start, one delta per chunk, tool uses, stop."""
    events = [StreamEvent(StreamEventType.MESSAGE_START)]
    events.extend(StreamEvent(StreamEventType.CONTENT_DELTA, content=c) for c in chunks)
    events.extend(StreamEvent(StreamEventType.TOOL_USE, tool_call=c) for c in calls)
    events.append(StreamEvent(StreamEventType.MESSAGE_STOP))
    return events


def _fold(events: list[StreamEvent]) -> EngineResponse:
    content = "".join(e.content for e in events if e.type == StreamEventType.CONTENT_DELTA)
    if not content:
        content = next(
            (e.content for e in events if e.type == StreamEventType.CONTENT_COMPLETE), ""
        )
    calls = [e.tool_call for e in events if e.type == StreamEventType.TOOL_USE and e.tool_call]
    thinking = "".join(e.content for e in events if e.type == StreamEventType.THINKING)
    return EngineResponse(content=content, tool_calls=calls, thinking=thinking)


class ScriptedEngine(BaseEngine):
    name = "scripted"

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        default: ScriptItem = "",
        delay: float = 0.0,
        retry: RetryConfig | None = None,
    ) -> None:
        super().__init__(retry=retry or RetryConfig(max_retries=0))
        self._script: list[ScriptItem] = list(script)
        self.default = default
        self.delay = delay
        self.requests: list[EngineRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def push(self, *items: ScriptItem) -> None:
        self._script.extend(items)

    def _next(self, request: EngineRequest) -> ScriptItem:
        self.requests.append(request)
        return self._script.pop(0) if self._script else self.default

    async def _do_complete(self, request: EngineRequest, ctx: CallContext) -> EngineResponse:
        item = self._next(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return EngineResponse(content=item)
        if isinstance(item, list):
            return _fold(item)
        return item

    async def _do_stream(self, request: EngineRequest, ctx: CallContext) -> AsyncIterator[StreamEvent]:
        item = self._next(request)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            events = text_events(item) if item else text_events()
        elif isinstance(item, EngineResponse):
            events = [StreamEvent(StreamEventType.MESSAGE_START)]
            if item.thinking:
                events.append(StreamEvent(StreamEventType.THINKING, content=item.thinking))
            if item.content:
                events.append(StreamEvent(StreamEventType.CONTENT_DELTA, content=item.content))
            events.extend(StreamEvent(StreamEventType.TOOL_USE, tool_call=c) for c in item.tool_calls)
            events.append(StreamEvent(StreamEventType.MESSAGE_STOP))
        else:
            events = item
        for event in events:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield event
