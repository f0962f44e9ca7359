"""Unit tests for sub-agent delegation and recursion guards."""

import json

import pytest

from agentsdk.agent import Agent, AgentTool, detect_cycles, tree_depth
from agentsdk.config import AgentConfig
from agentsdk.context import CallContext
from agentsdk.engines import ScriptedEngine
from agentsdk.engines.scripted import tool_call, tool_response
from agentsdk.errors import RecursionLimitError, ToolExecutionError, ValidationError
from agentsdk.types import ToolMessage, UserMessage


def chain(length: int) -> Agent:
    """``length`` agents, each the only sub-agent of the one before it."""
    agent = Agent(ScriptedEngine(["leaf"]), name=f"a{length - 1}")
    for i in range(length - 2, -1, -1):
        agent = Agent(ScriptedEngine(), name=f"a{i}", sub_agents=[agent])
    return agent


def nested_ctx(depth: int) -> CallContext:
    ctx = CallContext()
    for i in range(depth):
        ctx = ctx.with_sub_agent(f"p{i}", f"s{i}")
    return ctx


class TestTreeValidation:
    def test_depth_at_limit_accepted(self):
        root = chain(6)
        assert tree_depth(root) == 5

    def test_depth_over_limit_rejected(self):
        with pytest.raises(RecursionLimitError) as exc:
            chain(7)
        assert exc.value.depth == 6
        assert exc.value.max_depth == 5

    def test_cycle_through_shared_name(self):
        engine = ScriptedEngine()
        b = Agent(engine, name="B", sub_agents=[Agent(engine, name="A")])
        with pytest.raises(ValidationError, match="circular dependency detected: A -> B -> A"):
            Agent(engine, name="A", sub_agents=[b])

    def test_cycle_added_later_is_rolled_back(self):
        engine = ScriptedEngine()
        a = Agent(engine, name="A")
        b = Agent(engine, name="B")
        a.add_sub_agent(b)
        with pytest.raises(ValidationError, match="circular"):
            b.add_sub_agent(a)
        assert b.sub_agents == ()
        assert a.has_sub_agent("B")

    def test_shared_sub_agent_is_not_a_cycle(self):
        engine = ScriptedEngine()
        shared = Agent(engine, name="shared")
        left = Agent(engine, name="left", sub_agents=[shared])
        right = Agent(engine, name="right", sub_agents=[shared])
        root = Agent(engine, name="root", sub_agents=[left, right])
        detect_cycles(root)
        assert tree_depth(root) == 2

    def test_shared_sub_agents_measured_once(self):
        class Node:
            def __init__(self, name, child=None):
                self.name = name
                self.children = [child, child] if child else []
                self.reads = 0

            @property
            def sub_agents(self):
                self.reads += 1
                return self.children

        nodes = [Node("n40")]
        for i in range(39, -1, -1):
            nodes.append(Node(f"n{i}", nodes[-1]))

        assert tree_depth(nodes[-1]) == 40
        assert all(n.reads == 1 for n in nodes)

    def test_sub_agent_needs_name(self):
        engine = ScriptedEngine()
        with pytest.raises(ValidationError, match="name"):
            Agent(engine, name="root", sub_agents=[Agent(engine)])

    def test_self_reference(self):
        engine = ScriptedEngine()
        a = Agent(engine, name="A")
        with pytest.raises(ValidationError, match="A -> A"):
            a.add_sub_agent(a)


class TestCallContextRecursion:
    def test_with_sub_agent_increments_depth(self):
        parent = CallContext(tenant_id="org").with_sub_agent("root", "child")
        child = parent.with_sub_agent("child", "grandchild")

        assert parent.depth == 1
        assert child.depth == 2
        assert child.recursion.parent_name == "child"
        assert child.recursion.invocation_id != parent.recursion.invocation_id
        assert child.tenant_id == "org"

    def test_sub_agent_deadline(self):
        ctx = CallContext().with_sub_agent("root", "child", timeout=10)
        assert 0 < ctx.remaining() <= 10


class TestAgentTool:
    async def test_sub_agent_called_as_tool(self, ctx):
        child_engine = ScriptedEngine(["4"])
        child = Agent(child_engine, name="math", description="Does arithmetic")
        parent_engine = ScriptedEngine([
            tool_response(tool_call("math", {"query": "2+2"})),
            "the answer is 4",
        ])
        parent = Agent(parent_engine, name="boss", sub_agents=[child])

        assert await parent.run("what is 2+2?", ctx) == "the answer is 4"
        offered = {t.name: t for t in parent_engine.requests[0].tools}
        assert offered["math"].description == "Does arithmetic"
        child_input = [m for m in child_engine.requests[0].messages if isinstance(m, UserMessage)]
        assert child_input[-1].content == "2+2"
        results = [m for m in parent_engine.requests[1].messages if isinstance(m, ToolMessage)]
        assert results[0].content == "4"

    async def test_context_argument_appended(self, ctx):
        child_engine = ScriptedEngine(["ok"])
        tool = AgentTool(Agent(child_engine, name="helper"), parent_name="boss")
        await tool.execute(json.dumps({"query": "summarize", "context": "short"}), ctx)

        content = child_engine.requests[0].messages[-1].content
        assert content == "summarize\n\nContext: short"

    async def test_plain_text_arguments_used_as_query(self, ctx):
        child_engine = ScriptedEngine(["ok"])
        tool = AgentTool(Agent(child_engine, name="helper"), parent_name="boss")
        await tool.execute("just do it", ctx)
        assert child_engine.requests[0].messages[-1].content == "just do it"

    async def test_missing_query(self, ctx):
        tool = AgentTool(Agent(ScriptedEngine(), name="helper"), parent_name="boss")
        with pytest.raises(ToolExecutionError):
            await tool.execute("{}", ctx)

    async def test_depth_limit_checked_per_call(self):
        child_engine = ScriptedEngine(["never"])
        tool = AgentTool(Agent(child_engine, name="helper"), parent_name="boss")

        with pytest.raises(RecursionLimitError):
            await tool.execute('{"query": "go"}', nested_ctx(5))
        assert child_engine.calls == 0

        assert await tool.execute('{"query": "go"}', nested_ctx(4)) == "never"

    async def test_sub_agent_sees_incremented_depth(self, ctx):
        seen = []

        class Probe:
            name = "probe"
            capabilities = "records depth"
            sub_agents = ()
            is_remote = False
            engine = object()

            async def run(self, input_text, c=None):
                seen.append(c.depth)
                return "ok"

        tool = AgentTool(Probe(), parent_name="boss")
        await tool.execute('{"query": "x"}', nested_ctx(2))
        assert seen == [3]

    async def test_recursion_limit_aborts_parent_run(self):
        child = Agent(ScriptedEngine(["never"]), name="helper")
        parent_engine = ScriptedEngine([tool_response(tool_call("helper", {"query": "x"})), "done"])
        parent = Agent(parent_engine, name="boss", sub_agents=[child])

        with pytest.raises(RecursionLimitError):
            await parent.run("go", nested_ctx(5))

    async def test_sub_agent_timeout_becomes_tool_error(self, ctx):
        child = Agent(ScriptedEngine(["late"], delay=0.5), name="slow")
        parent_engine = ScriptedEngine([tool_response(tool_call("slow", {"query": "x"})), "fallback"])
        parent = Agent(
            parent_engine,
            AgentConfig(sub_agent_timeout=0.05),
            name="boss",
            sub_agents=[child],
        )

        assert await parent.run("go", ctx) == "fallback"
        results = [m for m in parent_engine.requests[1].messages if isinstance(m, ToolMessage)]
        assert results[0].content == "Error: sub-agent slow timed out after 0.05s"
