"""Tool registry and define_tool helper."""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import BaseModel

from ..context import CallContext
from ..errors import (
    DeadlineExceededError,
    RecursionLimitError,
    RunCancelledError,
    ToolExecutionError,
    ToolNotFoundError,
)
from ..infra.logging import get_logger
from ..types import Tool, ToolCall, ToolOutcome, ToolSchema
from .schema import DictSchema, PydanticSchema, describe_parameters

logger = get_logger(__name__)

# Raised inside a tool, these abort the run instead of being folded into text.
FATAL_TOOL_ERRORS = (RecursionLimitError, RunCancelledError, DeadlineExceededError)


class FunctionTool:
    """Tool backed by a plain (sync or async) callable ``fn(parsed_input, ctx)``."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: ToolSchema,
        fn: Callable[..., Any],
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = parameters
        self._fn = fn

    def parameters_schema(self) -> dict[str, Any]:
        return self.parameters.to_json_schema()

    async def execute(self, arguments: str, ctx: CallContext) -> str:
        try:
            raw = json.loads(arguments) if arguments and arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolExecutionError(self.name, f"invalid arguments: {e}", e) from e
        parsed = self.parameters.parse(raw)
        result = self._fn(parsed, ctx)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, str):
            return result
        if isinstance(result, BaseModel):
            return result.model_dump_json()
        return json.dumps(result)

    def __repr__(self) -> str:
        return f"FunctionTool({self.name!r})"


def define_tool(
    name: str,
    description: str,
    parameters: type[BaseModel] | ToolSchema | dict[str, Any],
    execute: Callable[..., Any | Awaitable[Any]],
) -> FunctionTool:
    if isinstance(parameters, dict):
        schema: ToolSchema = DictSchema(parameters)
    elif isinstance(parameters, type) and issubclass(parameters, BaseModel):
        schema = PydanticSchema(parameters)
    else:
        schema = parameters
    return FunctionTool(name=name, description=description, parameters=schema, fn=execute)


class ToolRegistry:
    """Name → tool map. Later registrations replace earlier ones with the same name."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.debug("tool_replaced", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def merged(self, extra: Iterable[Tool]) -> ToolRegistry:
        """New registry with this registry's tools plus ``extra``."""
        reg = ToolRegistry(self._tools.values())
        for t in extra:
            reg.register(t)
        return reg

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, call: ToolCall, ctx: CallContext) -> ToolOutcome:
        """Run one call. Missing tools and tool failures become ``Error: ...`` results."""
        t0 = time.monotonic()
        tool = self._tools.get(call.name)
        if tool is None:
            err = ToolNotFoundError(call.name)
            logger.warning("tool_not_found", tool=call.name)
            return ToolOutcome(call=call, result=f"Error: {err.message}", error=err)
        try:
            result = await tool.execute(call.arguments, ctx)
        except FATAL_TOOL_ERRORS:
            raise
        except Exception as e:
            logger.warning("tool_execution_failed", tool=call.name, error=str(e))
            return ToolOutcome(
                call=call,
                result=f"Error: {e}",
                error=e,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
        return ToolOutcome(
            call=call, result=result, duration_ms=int((time.monotonic() - t0) * 1000)
        )


__all__ = [
    "FunctionTool",
    "define_tool",
    "ToolRegistry",
    "FATAL_TOOL_ERRORS",
    "PydanticSchema",
    "DictSchema",
    "describe_parameters",
]
