"""Integration tests for the Agent facade."""

import json

import pytest
from pydantic import BaseModel

from agentsdk.agent import Agent, PlanStatus
from agentsdk.config import AgentConfig
from agentsdk.context import CallContext
from agentsdk.engines import ScriptedEngine
from agentsdk.engines.scripted import tool_call, tool_response
from agentsdk.errors import GuardrailError, ValidationError
from agentsdk.guardrails import KeywordGuardrail
from agentsdk.structured import ResponseFormat
from agentsdk.tools import define_tool
from agentsdk.types import AgentEventType, AssistantMessage, MCPCallResult, MCPToolInfo, ToolMessage

from tests.conftest import make_echo_tool

PLAN = json.dumps({
    "description": "Echo it",
    "steps": [{"toolName": "echo", "description": "say hi", "parameters": {"text": "hi"}}],
})


class UpperServer:
    async def list_tools(self):
        return [MCPToolInfo("upper", "Upper-cases text")]

    async def call_tool(self, name, arguments):
        return MCPCallResult(arguments["text"].upper())

    async def close(self):
        pass


class TestAgentConstruction:
    def test_requires_engine_or_remote(self):
        with pytest.raises(ValidationError):
            Agent()

    def test_not_both_engine_and_remote(self):
        with pytest.raises(ValidationError):
            Agent(ScriptedEngine(), remote="http://example.invalid")

    def test_keyword_overrides_config(self):
        config = AgentConfig(name="from-config", max_rounds=4)
        agent = Agent(ScriptedEngine(), config, name="override")

        assert agent.name == "override"
        assert agent.config.max_rounds == 4
        assert config.name == "from-config"

    def test_invalid_config_value(self):
        with pytest.raises(ValidationError):
            Agent(ScriptedEngine(), max_rounds=0)

    def test_capabilities(self):
        assert Agent(ScriptedEngine(), description="Finds things").capabilities == "Finds things"
        assert Agent(ScriptedEngine(), system_prompt="You are terse.").capabilities == (
            "Agent with system prompt: You are terse."
        )
        assert Agent(ScriptedEngine()).capabilities == "A general-purpose AI agent"
        assert Agent(remote="http://peer:8000").capabilities == "Remote agent at http://peer:8000"

    def test_sub_agent_lookup(self):
        engine = ScriptedEngine()
        child = Agent(engine, name="child")
        parent = Agent(engine, name="parent", sub_agents=[child])

        assert parent.get_sub_agent("child") is child
        assert parent.has_sub_agent("child")
        assert parent.get_sub_agent("nobody") is None
        assert "sub_agents=1" in repr(parent)


class TestAgentRun:
    async def test_memory_carries_conversation(self, ctx):
        engine = ScriptedEngine(["first answer", "second answer"])
        agent = Agent(engine, system_prompt="sys")
        await agent.run("one", ctx)
        await agent.run("two", ctx)

        contents = [m.content for m in engine.requests[1].messages]
        assert contents == ["sys", "one", "first answer", "two"]

    async def test_conversations_are_separate(self):
        engine = ScriptedEngine(["a", "b"])
        agent = Agent(engine)
        await agent.run("one", CallContext(conversation_id="x"))
        await agent.run("two", CallContext(conversation_id="y"))

        assert [m.content for m in engine.requests[1].messages] == ["two"]

    async def test_tool_rounds_kept_in_memory(self, ctx):
        engine = ScriptedEngine([tool_response(tool_call("echo", {"text": "m"})), "done"])
        agent = Agent(engine, tools=[make_echo_tool()])
        await agent.run("go", ctx)

        stored = await agent.memory.get_messages(ctx)
        assert isinstance(stored[1], AssistantMessage) and stored[1].tool_calls
        assert isinstance(stored[2], ToolMessage) and stored[2].content == "echo: m"
        assert stored[-1].content == "done"

    async def test_org_id_becomes_tenant(self):
        seen = []

        async def who(inp, c):
            seen.append(c.tenant_id)
            return "ok"

        engine = ScriptedEngine([tool_response(tool_call("who")), "done"] * 2)
        agent = Agent(engine, tools=[define_tool("who", "Tenant", {}, who)], org_id="acme")
        await agent.run("go")
        await agent.run("go", CallContext(tenant_id="explicit"))

        assert seen == ["acme", "explicit"]

    async def test_input_guardrail_redacts(self, ctx):
        engine = ScriptedEngine(["ok"])
        agent = Agent(engine, guardrails=[KeywordGuardrail(["password"])])
        await agent.run("my password is 123", ctx)

        assert engine.requests[0].messages[-1].content == "my [REDACTED] is 123"

    async def test_output_guardrail_blocks(self, ctx):
        engine = ScriptedEngine(["the password is 123"])
        agent = Agent(engine, guardrails=[KeywordGuardrail(["password"], block=True)])

        with pytest.raises(GuardrailError):
            await agent.run("tell me", ctx)
        assert engine.calls == 1

    async def test_mcp_server_tools_offered(self, ctx):
        engine = ScriptedEngine([tool_response(tool_call("upper", {"text": "loud"})), "done"])
        agent = Agent(engine, mcp_servers=[UpperServer()])
        await agent.run("shout", ctx)

        assert [t.name for t in engine.requests[0].tools] == ["upper"]
        results = [m for m in engine.requests[1].messages if isinstance(m, ToolMessage)]
        assert results[0].content == "LOUD"

    async def test_structured_result(self, ctx):
        class Verdict(BaseModel):
            ok: bool

        engine = ScriptedEngine(['```json\n{"ok": true}\n```'])
        agent = Agent(engine, response_format=ResponseFormat.from_model(Verdict))
        result = await agent.run_with_result("check", ctx)

        assert result.payload == {"ok": True}
        assert engine.requests[0].options.response_format.name == "Verdict"

    async def test_stream_and_run_agree(self, ctx):
        engine = ScriptedEngine([tool_response(tool_call("echo", {"text": "s"})), "streamed"])
        agent = Agent(engine, tools=[make_echo_tool()])
        stream = agent.run_stream("go", ctx)
        events = await stream.collect()

        assert await stream.wait() == "streamed"
        assert events[-1].type == AgentEventType.COMPLETE
        assert (await agent.memory.get_messages(ctx))[-1].content == "streamed"


class TestAgentPlans:
    @pytest.fixture
    def engine(self):
        return ScriptedEngine()

    @pytest.fixture
    def agent(self, engine, echo_calls):
        return Agent(engine, tools=[make_echo_tool(echo_calls)], require_plan_approval=True)

    async def test_run_returns_plan_for_approval(self, agent, engine, echo_calls, ctx):
        engine.push(PLAN)
        message = await agent.run("say hi", ctx)

        assert message.startswith("I've created an execution plan for your request:\n\n# Execution Plan: Echo it")
        assert message.endswith("Do you approve this plan? You can modify it if needed.")
        assert echo_calls == []
        plans = await agent.list_plans()
        assert len(plans) == 1 and plans[0].status == PlanStatus.PENDING_APPROVAL

    async def test_approve_runs_plan(self, agent, engine, echo_calls, ctx):
        engine.push(PLAN)
        await agent.run("say hi", ctx)
        task_id = (await agent.list_plans())[0].task_id

        transcript = await agent.approve_plan(task_id, ctx)

        assert transcript == "Executing plan: Echo it\n\nStep 1: say hi\nResult: echo: hi\n\n"
        assert echo_calls == ["hi"]
        status = await agent.plan_status(task_id)
        assert status.status == PlanStatus.COMPLETED
        assert status.execution_result == transcript

    async def test_modify_and_cancel_messages(self, agent, engine, ctx):
        engine.push(PLAN, PLAN.replace("Echo it", "Echo better"))
        plan = await agent.generate_plan("say hi", ctx)

        updated = await agent.modify_plan(plan.task_id, "be better", ctx)
        assert updated.startswith("I've updated the execution plan based on your feedback:")
        assert "Echo better" in updated

        assert await agent.cancel_plan(plan.task_id, ctx) == (
            "Plan cancelled. What would you like to do instead?"
        )

    async def test_cancel_after_approval(self, agent, engine, ctx):
        engine.push(PLAN)
        plan = await agent.generate_plan("say hi", ctx)
        await agent.approve_plan(plan.task_id, ctx)

        message = await agent.cancel_plan(plan.task_id, ctx)
        assert "completed" in message
        assert (await agent.get_plan(plan.task_id)).status == PlanStatus.COMPLETED

    async def test_streamed_plan(self, agent, engine, ctx):
        engine.push(PLAN)
        stream = agent.run_stream("say hi", ctx)
        events = await stream.collect()

        assert events[0].type == AgentEventType.CONTENT
        assert events[0].content.startswith("I've created an execution plan")
        assert events[-1].type == AgentEventType.COMPLETE

    async def test_no_tools_skips_planning(self, engine, ctx):
        agent = Agent(engine, require_plan_approval=True)
        engine.push("direct answer")
        assert await agent.run("hello", ctx) == "direct answer"
        assert await agent.list_plans() == []
