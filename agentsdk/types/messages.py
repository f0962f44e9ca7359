"""Message types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: str = "system"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: str = "user"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssistantMessage:
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    role: str = "assistant"
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolMessage:
    content: str
    tool_call_id: str
    role: str = "tool"
    metadata: Mapping[str, Any] = field(default_factory=dict)


Message = SystemMessage | UserMessage | AssistantMessage | ToolMessage
