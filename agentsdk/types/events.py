"""Event types: engine-level stream events and the agent-level events they become."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .messages import ToolCall
from .tools import ToolCallStatus


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class StreamEventType(StrEnum):
    MESSAGE_START = "message_start"
    CONTENT_DELTA = "content_delta"
    CONTENT_COMPLETE = "content_complete"
    MESSAGE_STOP = "message_stop"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    content: str = ""
    tool_call: ToolCall | None = None
    error: Exception | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class AgentEventType(StrEnum):
    CONTENT = "content"
    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ToolCallEvent:
    id: str
    name: str
    arguments: str = ""
    result: str = ""
    status: ToolCallStatus = ToolCallStatus.RECEIVED


@dataclass(frozen=True)
class AgentStreamEvent:
    type: AgentEventType
    content: str = ""
    tool_call: ToolCallEvent | None = None
    thinking: str = ""
    error: Exception | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
