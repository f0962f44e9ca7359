"""
Pytest Configuration and Fixtures
"""

import pytest
from pydantic import BaseModel

from agentsdk.context import CallContext
from agentsdk.tools import ToolRegistry, define_tool


class EchoInput(BaseModel):
    text: str


def make_echo_tool(calls: list | None = None, name: str = "echo"):
    """Tool that answers ``echo: <text>`` and records every input."""

    async def _echo(inp: EchoInput, ctx: CallContext) -> str:
        if calls is not None:
            calls.append(inp.text)
        return f"echo: {inp.text}"

    return define_tool(name, "Echo the given text back", EchoInput, _echo)


def make_failing_tool(message: str = "boom", name: str = "fail"):
    async def _fail(inp: dict, ctx: CallContext) -> str:
        raise ValueError(message)

    return define_tool(name, "Always fails", {"type": "object", "properties": {}}, _fail)


@pytest.fixture
def ctx() -> CallContext:
    return CallContext()


@pytest.fixture
def echo_calls() -> list:
    return []


@pytest.fixture
def registry(echo_calls) -> ToolRegistry:
    return ToolRegistry([make_echo_tool(echo_calls), make_failing_tool()])
