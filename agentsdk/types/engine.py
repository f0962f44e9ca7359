"""Reasoning-engine types. The engine is an opaque, round-granular capability."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..config import LLMConfig
from ..structured import ResponseFormat
from .events import StreamEvent, TokenUsage
from .messages import Message, ToolCall
from .tools import Tool

if TYPE_CHECKING:
    from ..context import CallContext


@dataclass
class GenerateOptions:
    system_message: str | None = None
    response_format: ResponseFormat | None = None
    llm_config: LLMConfig = field(default_factory=LLMConfig)
    max_rounds: int = 2
    memory: Any | None = None


@dataclass
class EngineRequest:
    messages: list[Message]
    tools: list[Tool] = field(default_factory=list)
    options: GenerateOptions = field(default_factory=GenerateOptions)


@dataclass
class EngineResponse:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)


@runtime_checkable
class ReasoningEngine(Protocol):
    name: str

    async def complete(self, request: EngineRequest, ctx: CallContext) -> EngineResponse: ...
    def stream(self, request: EngineRequest, ctx: CallContext) -> AsyncIterator[StreamEvent]: ...
