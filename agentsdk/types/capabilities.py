"""Capabilities consumed by the agent: memory, guardrails, external tool servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .messages import Message

if TYPE_CHECKING:
    from ..context import CallContext


@runtime_checkable
class Memory(Protocol):
    async def add_message(self, message: Message, ctx: CallContext) -> None: ...
    async def get_messages(self, ctx: CallContext) -> list[Message]: ...


@runtime_checkable
class Guardrail(Protocol):
    name: str

    async def process_input(self, text: str, ctx: CallContext) -> str: ...
    async def process_output(self, text: str, ctx: CallContext) -> str: ...


@dataclass
class MCPToolInfo:
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass
class MCPCallResult:
    content: str
    is_error: bool = False


@runtime_checkable
class MCPServer(Protocol):
    """An external tool-protocol server."""

    async def list_tools(self) -> list[MCPToolInfo]: ...
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> MCPCallResult: ...
    async def close(self) -> None: ...
