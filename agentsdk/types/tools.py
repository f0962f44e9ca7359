"""Tool types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .messages import ToolCall

if TYPE_CHECKING:
    from ..context import CallContext


@runtime_checkable
class ToolSchema(Protocol):
    def parse(self, raw: Any) -> Any: ...
    def to_json_schema(self) -> dict: ...


@runtime_checkable
class Tool(Protocol):
    """A named capability the engine may request. Raise to report failure."""

    name: str
    description: str

    def parameters_schema(self) -> dict[str, Any]: ...
    async def execute(self, arguments: str, ctx: CallContext) -> str: ...


class ToolCallStatus(StrEnum):
    RECEIVED = "received"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ToolOutcome:
    call: ToolCall
    result: str
    error: Exception | None = None
    duration_ms: int = 0

    @property
    def status(self) -> ToolCallStatus:
        return ToolCallStatus.ERROR if self.error else ToolCallStatus.COMPLETED
