"""Unit tests for the bounded tool-calling loop."""

import asyncio

import pytest
from pydantic import BaseModel

from agentsdk.agent.loop import FINAL_ROUND_INSTRUCTION, ToolCallingLoop
from agentsdk.config import AgentConfig
from agentsdk.context import CallContext
from agentsdk.engines import ScriptedEngine
from agentsdk.engines.scripted import tool_call, tool_response
from agentsdk.errors import EngineError, RecursionLimitError, RunCancelledError
from agentsdk.memory import ConversationMemory
from agentsdk.structured import ResponseFormat
from agentsdk.tools import ToolRegistry, define_tool
from agentsdk.types import (
    AssistantMessage,
    GenerateOptions,
    SystemMessage,
    ToolMessage,
    UserMessage,
)


def tool_messages(request) -> list[ToolMessage]:
    return [m for m in request.messages if isinstance(m, ToolMessage)]


class TestDefaults:
    def test_default_max_rounds_is_two(self):
        assert GenerateOptions().max_rounds == 2
        assert AgentConfig().max_rounds == 2


class TestToolCallingLoop:
    async def test_answer_without_tools(self, ctx, registry):
        engine = ScriptedEngine(["hello"])
        result = await ToolCallingLoop(engine).run([UserMessage("hi")], registry, ctx)

        assert result.answer == "hello"
        assert result.engine_calls == 1
        assert result.tool_rounds == 0
        assert not result.forced_final
        assert len(engine.requests[0].tools) == 2

    async def test_tool_round_then_answer(self, ctx, registry, echo_calls):
        engine = ScriptedEngine([
            tool_response(tool_call("echo", {"text": "hi"}, id="c1")),
            "done",
        ])
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx)

        assert result.answer == "done"
        assert engine.calls == 2
        assert echo_calls == ["hi"]
        second = engine.requests[1]
        assistant = [m for m in second.messages if isinstance(m, AssistantMessage)]
        assert assistant[0].tool_calls[0].id == "c1"
        results = tool_messages(second)
        assert results[0].content == "echo: hi"
        assert results[0].tool_call_id == "c1"
        assert results[0].metadata["tool_name"] == "echo"

    async def test_system_message_prepended(self, ctx):
        engine = ScriptedEngine(["ok"])
        options = GenerateOptions(system_message="be brief")
        await ToolCallingLoop(engine, options).run([UserMessage("q")], [], ctx)

        first = engine.requests[0].messages[0]
        assert isinstance(first, SystemMessage)
        assert first.content == "be brief"

    async def test_engine_calls_bounded_by_max_rounds_plus_one(self, ctx, registry):
        engine = ScriptedEngine(
            default=tool_response(tool_call("echo", {"text": "x"}), content="still working")
        )
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx)

        assert engine.calls == 3
        assert result.forced_final
        assert result.answer == "still working"
        last = engine.requests[-1]
        assert last.tools == []
        assert isinstance(last.messages[-1], SystemMessage)
        assert last.messages[-1].content == FINAL_ROUND_INSTRUCTION

    async def test_max_rounds_override(self, ctx, registry):
        engine = ScriptedEngine(default=tool_response(tool_call("echo", {"text": "x"})))
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx, max_rounds=4)

        assert engine.calls == 5
        assert result.tool_rounds == 4

    async def test_invalid_max_rounds(self, ctx):
        with pytest.raises(ValueError):
            await ToolCallingLoop(ScriptedEngine()).run([UserMessage("q")], [], ctx, max_rounds=0)

    async def test_unknown_tool_folded_into_result(self, ctx, registry):
        engine = ScriptedEngine([tool_response(tool_call("missing")), "ok"])
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx)

        assert result.answer == "ok"
        assert tool_messages(engine.requests[1])[0].content == "Error: tool not found: missing"

    async def test_tool_failure_folded_into_result(self, ctx, registry):
        engine = ScriptedEngine([tool_response(tool_call("fail")), "recovered"])
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx)

        assert result.answer == "recovered"
        assert tool_messages(engine.requests[1])[0].content == "Error: boom"

    async def test_all_calls_of_a_round_run_in_order(self, ctx, registry, echo_calls):
        engine = ScriptedEngine([
            tool_response(tool_call("echo", {"text": "a"}), tool_call("echo", {"text": "b"})),
            "done",
        ])
        await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx)

        assert echo_calls == ["a", "b"]
        assert [m.content for m in tool_messages(engine.requests[1])] == ["echo: a", "echo: b"]

    async def test_repeated_call_warning(self, ctx, registry):
        same = lambda: tool_response(tool_call("echo", {"text": "a"}))  # noqa: E731
        engine = ScriptedEngine([same(), same(), same(), "final"])
        result = await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx, max_rounds=4)

        assert result.answer == "final"
        results = [m.content for m in tool_messages(engine.requests[3])]
        assert results[0] == "echo: a"
        assert results[1] == "echo: a"
        assert results[2].startswith("echo: a")
        assert "[WARNING: This is call #3 to echo" in results[2]

    async def test_final_round_tool_calls_ignored(self, ctx, registry, echo_calls):
        engine = ScriptedEngine(default=tool_response(tool_call("echo", {"text": "x"})))
        await ToolCallingLoop(engine).run([UserMessage("q")], registry, ctx, max_rounds=1)

        assert engine.calls == 2
        assert echo_calls == ["x"]

    async def test_rounds_recorded_in_memory(self, ctx, registry):
        memory = ConversationMemory()
        engine = ScriptedEngine([tool_response(tool_call("echo", {"text": "m"}), content="thinking"), "ok"])
        await ToolCallingLoop(engine, memory=memory).run([UserMessage("q")], registry, ctx)

        stored = await memory.get_messages(ctx)
        assert isinstance(stored[0], AssistantMessage)
        assert stored[0].content == "thinking"
        assert isinstance(stored[1], ToolMessage)
        assert stored[1].metadata["tool_name"] == "echo"

    async def test_engine_error_propagates(self, ctx):
        engine = ScriptedEngine([RuntimeError("down")])
        with pytest.raises(EngineError, match="down"):
            await ToolCallingLoop(engine).run([UserMessage("q")], [], ctx)

    async def test_recursion_limit_in_tool_aborts_run(self, ctx):
        async def deep(inp, c):
            raise RecursionLimitError(6, 5, "child")

        tools = ToolRegistry([define_tool("deep", "Delegates", {}, deep)])
        engine = ScriptedEngine([tool_response(tool_call("deep")), "unreachable"])
        with pytest.raises(RecursionLimitError):
            await ToolCallingLoop(engine).run([UserMessage("q")], tools, ctx)
        assert engine.calls == 1

    async def test_cancelled_before_start(self):
        event = asyncio.Event()
        event.set()
        engine = ScriptedEngine(["never"])
        with pytest.raises(RunCancelledError):
            await ToolCallingLoop(engine).run(
                [UserMessage("q")], [], CallContext().with_cancel_event(event)
            )
        assert engine.calls == 0

    async def test_structured_payload_extracted(self, ctx):
        class Answer(BaseModel):
            value: int

        options = GenerateOptions(response_format=ResponseFormat.from_model(Answer))
        engine = ScriptedEngine(['Here you go: {"value": 42}'])
        result = await ToolCallingLoop(engine, options).run([UserMessage("q")], [], ctx)

        assert result.payload == {"value": 42}

    async def test_no_payload_without_response_format(self, ctx):
        engine = ScriptedEngine(['{"value": 1}'])
        result = await ToolCallingLoop(engine).run([UserMessage("q")], [], ctx)
        assert result.payload is None
