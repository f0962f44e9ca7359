"""Agent: engine, memory, tools and sub-agents behind one facade."""

from __future__ import annotations

from collections.abc import Iterable

from ..config import AgentConfig, RemoteAgentConfig, build_config
from ..context import CallContext
from ..errors import ValidationError
from ..guardrails import GuardrailChain
from ..infra.logging import get_logger
from ..memory import ConversationMemory
from ..remote.client import RemoteAgentClient
from ..structured import ResponseFormat
from ..tools import ToolRegistry
from ..tools.mcp import collect_mcp_tools
from ..types import (
    AgentEventType,
    AgentStreamEvent,
    AssistantMessage,
    GenerateOptions,
    Guardrail,
    MCPServer,
    Memory,
    ReasoningEngine,
    Tool,
    UserMessage,
)
from .delegation import AgentTool, agent_identity, validate_agent_tree
from .loop import LoopResult, ToolCallingLoop, as_registry
from .plan import ExecutionPlan, ExecutionPlanner, PlanStatusReport, format_execution_plan
from .streaming import AgentEventStream, StreamTranslator

logger = get_logger(__name__)

PLAN_CREATED = (
    "I've created an execution plan for your request:\n\n{plan}\n"
    "Do you approve this plan? You can modify it if needed."
)
PLAN_UPDATED = (
    "I've updated the execution plan based on your feedback:\n\n{plan}\n"
    "Do you approve this plan? You can modify it further if needed."
)
PLAN_CANCELLED = "Plan cancelled. What would you like to do instead?"
PLAN_NOT_CANCELLED = "Plan {task_id} is already {status} and can no longer be cancelled."


class Agent:
    """
    Runs requests through the bounded tool-calling loop.

    Sub-agents are offered to the engine as tools named after them. With
    ``require_plan_approval`` a tool-using request first produces an
    execution plan that must be approved before anything runs. With
    ``remote`` the agent is a proxy for an agent served elsewhere.
    """

    def __init__(
        self,
        engine: ReasoningEngine | None = None,
        config: AgentConfig | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        system_prompt: str | None = None,
        memory: Memory | None = None,
        tools: ToolRegistry | Iterable[Tool] | None = None,
        sub_agents: Iterable[Agent] = (),
        guardrails: GuardrailChain | Iterable[Guardrail] | None = None,
        mcp_servers: Iterable[MCPServer] = (),
        remote: RemoteAgentConfig | str | None = None,
        response_format: ResponseFormat | None = None,
        max_rounds: int | None = None,
        require_plan_approval: bool | None = None,
        org_id: str | None = None,
    ) -> None:
        overrides = {
            "name": name,
            "description": description,
            "system_prompt": system_prompt,
            "max_rounds": max_rounds,
            "require_plan_approval": require_plan_approval,
            "org_id": org_id,
        }
        values = (config or AgentConfig()).model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        self.config: AgentConfig = build_config(AgentConfig, **values)
        self.engine = engine
        self.memory: Memory = memory if memory is not None else ConversationMemory()
        self.tools = as_registry(tools)
        self.guardrails = (
            guardrails if isinstance(guardrails, GuardrailChain) else GuardrailChain(guardrails or ())
        )
        self.mcp_servers = list(mcp_servers)
        self.response_format = response_format
        self._sub_agents: list[Agent] = list(sub_agents)
        self._remote = RemoteAgentClient(remote) if remote is not None else None
        self.planner = ExecutionPlanner(engine, self.options) if engine is not None else None

        if self._remote is not None:
            if engine is not None:
                raise ValidationError("an agent is either local (engine) or remote (url), not both")
            if self._sub_agents:
                raise ValidationError("remote agents cannot have sub-agents")
        elif engine is None:
            raise ValidationError("agent requires a reasoning engine or a remote url")
        if self._sub_agents:
            validate_agent_tree(self)

    @classmethod
    def remote(cls, url: str, name: str | None = None, **config: object) -> Agent:
        return cls(remote=RemoteAgentConfig(url=url, **config), name=name)

    # -- Properties --

    @property
    def name(self) -> str | None:
        return self.config.name

    @property
    def is_remote(self) -> bool:
        return self._remote is not None

    @property
    def remote_client(self) -> RemoteAgentClient | None:
        return self._remote

    @property
    def sub_agents(self) -> tuple[Agent, ...]:
        return tuple(self._sub_agents)

    @property
    def capabilities(self) -> str:
        if self.config.description:
            return self.config.description
        if self._remote is not None:
            return f"Remote agent at {self._remote.url}"
        if self.config.system_prompt:
            return f"Agent with system prompt: {self.config.system_prompt[:100]}"
        return "A general-purpose AI agent"

    @property
    def options(self) -> GenerateOptions:
        return GenerateOptions(
            system_message=self.config.system_prompt,
            response_format=self.response_format,
            llm_config=self.config.llm,
            max_rounds=self.config.max_rounds,
            memory=self.memory,
        )

    def get_sub_agent(self, name: str) -> Agent | None:
        return next((a for a in self._sub_agents if a.name == name), None)

    def has_sub_agent(self, name: str) -> bool:
        return self.get_sub_agent(name) is not None

    def add_sub_agent(self, agent: Agent) -> None:
        """Attach a sub-agent; the tree is re-validated and the change undone if invalid."""
        if self._remote is not None:
            raise ValidationError("remote agents cannot have sub-agents")
        self._sub_agents.append(agent)
        try:
            validate_agent_tree(self)
        except Exception:
            self._sub_agents.pop()
            raise

    # -- Running --

    def _context(self, ctx: CallContext | None) -> CallContext:
        ctx = ctx or CallContext()
        if ctx.tenant_id is None and self.config.org_id:
            ctx = ctx.with_tenant(self.config.org_id)
        return ctx

    def _agent_tools(self) -> list[AgentTool]:
        parent = agent_identity(self)
        return [
            AgentTool(sub, parent_name=parent, timeout=self.config.sub_agent_timeout)
            for sub in self._sub_agents
        ]

    async def collect_tools(self) -> ToolRegistry:
        """Registered tools plus sub-agent tools plus tools of reachable MCP servers."""
        extra: list[Tool] = list(self._agent_tools())
        if self.mcp_servers:
            extra.extend(await collect_mcp_tools(self.mcp_servers))
        return self.tools.merged(extra)

    async def _begin(self, input_text: str, ctx: CallContext) -> tuple[str, ToolRegistry]:
        text = await self.guardrails.process_input(input_text, ctx)
        await self.memory.add_message(UserMessage(content=text), ctx)
        return text, await self.collect_tools()

    def _wants_plan(self, tools: ToolRegistry) -> bool:
        return self.config.require_plan_approval and len(tools) > 0

    async def _plan_message(self, text: str, tools: ToolRegistry, ctx: CallContext) -> str:
        assert self.planner is not None
        plan = await self.planner.generate(text, tools.list(), ctx)
        message = PLAN_CREATED.format(plan=format_execution_plan(plan))
        await self.memory.add_message(
            AssistantMessage(content=message, metadata={"plan_id": plan.task_id}), ctx
        )
        return message

    async def run(
        self,
        input_text: str,
        ctx: CallContext | None = None,
        *,
        auth_token: str | None = None,
    ) -> str:
        """
        Answer one request.

        ``auth_token`` is only used by remote agents, where it is sent as a
        bearer token.
        """
        ctx = self._context(ctx)
        if self._remote is not None:
            return await self._remote.run(input_text, ctx, auth_token=auth_token)
        text, tools = await self._begin(input_text, ctx)
        if self._wants_plan(tools):
            return await self._plan_message(text, tools, ctx)
        result = await self._loop(tools, ctx)
        return result.answer

    async def run_with_result(self, input_text: str, ctx: CallContext | None = None) -> LoopResult:
        """Like ``run`` but returns the loop result, including any structured payload."""
        ctx = self._context(ctx)
        if self._remote is not None:
            raise ValidationError("run_with_result is only available on local agents")
        _, tools = await self._begin(input_text, ctx)
        return await self._loop(tools, ctx)

    async def _loop(self, tools: ToolRegistry, ctx: CallContext) -> LoopResult:
        assert self.engine is not None
        history = await self.memory.get_messages(ctx)
        loop = ToolCallingLoop(self.engine, self.options, self.memory)
        result = await loop.run(history, tools, ctx)
        result.answer = await self.guardrails.process_output(result.answer, ctx)
        await self.memory.add_message(AssistantMessage(content=result.answer), ctx)
        logger.info(
            "agent_run_finished",
            agent=self.name,
            engine_calls=result.engine_calls,
            forced_final=result.forced_final,
        )
        return result

    def run_stream(self, input_text: str, ctx: CallContext | None = None) -> AgentEventStream:
        """
        Start a streamed run and return its event stream immediately.

        Must be called from a running event loop. Iterate the stream for
        events; ``await stream.wait()`` for the final answer.
        """
        ctx = self._context(ctx)
        stream = AgentEventStream(self.config.stream.buffer_size, cancel_event=ctx.cancel_event)
        ctx = ctx.with_cancel_event(stream.cancel_event)

        async def produce(s: AgentEventStream) -> str:
            if self._remote is not None:
                answer = await self._remote.run(input_text, ctx)
                await s.send(AgentStreamEvent(AgentEventType.CONTENT, content=answer))
                await s.send_complete()
                return answer
            text, tools = await self._begin(input_text, ctx)
            if self._wants_plan(tools):
                answer = await self._plan_message(text, tools, ctx)
                await s.send(AgentStreamEvent(AgentEventType.CONTENT, content=answer))
                await s.send_complete()
                return answer
            assert self.engine is not None
            history = await self.memory.get_messages(ctx)
            translator = StreamTranslator(self.engine, self.options, self.memory, self.config.stream)

            async def guard(answer: str) -> str:
                return await self.guardrails.process_output(answer, ctx)

            answer = await translator.run(history, tools, ctx, s, send_complete=False, finalize=guard)
            if answer:
                await self.memory.add_message(AssistantMessage(content=answer), ctx)
            await s.send_complete()
            return answer

        return stream.start(produce)

    # -- Execution plans --

    def _require_planner(self) -> ExecutionPlanner:
        if self.planner is None:
            raise ValidationError("execution plans are only available on local agents")
        return self.planner

    async def generate_plan(self, input_text: str, ctx: CallContext | None = None) -> ExecutionPlan:
        planner = self._require_planner()
        ctx = self._context(ctx)
        tools = await self.collect_tools()
        return await planner.generate(input_text, tools.list(), ctx)

    async def approve_plan(self, task_id: str, ctx: CallContext | None = None) -> str:
        """Approve and execute a plan; returns the execution transcript."""
        planner = self._require_planner()
        ctx = self._context(ctx)
        report = await planner.approve(task_id, await self.collect_tools(), ctx)
        await self.memory.add_message(
            AssistantMessage(content=report.transcript, metadata={"plan_id": task_id}), ctx
        )
        return report.transcript

    async def modify_plan(self, task_id: str, feedback: str, ctx: CallContext | None = None) -> str:
        planner = self._require_planner()
        ctx = self._context(ctx)
        tools = await self.collect_tools()
        plan = await planner.modify(task_id, feedback, tools.list(), ctx)
        message = PLAN_UPDATED.format(plan=format_execution_plan(plan))
        await self.memory.add_message(
            AssistantMessage(content=message, metadata={"plan_id": task_id}), ctx
        )
        return message

    async def cancel_plan(self, task_id: str, ctx: CallContext | None = None) -> str:
        planner = self._require_planner()
        ctx = self._context(ctx)
        if await planner.cancel(task_id):
            message = PLAN_CANCELLED
        else:
            status = (await planner.status(task_id)).status
            message = PLAN_NOT_CANCELLED.format(task_id=task_id, status=status)
        await self.memory.add_message(
            AssistantMessage(content=message, metadata={"plan_id": task_id}), ctx
        )
        return message

    async def plan_status(self, task_id: str) -> PlanStatusReport:
        return await self._require_planner().status(task_id)

    async def get_plan(self, task_id: str) -> ExecutionPlan:
        return await self._require_planner().get(task_id)

    async def list_plans(self) -> list[ExecutionPlan]:
        return await self._require_planner().list()

    # -- Lifecycle --

    async def aclose(self) -> None:
        if self._remote is not None:
            await self._remote.close()

    def __repr__(self) -> str:
        kind = "remote" if self.is_remote else "local"
        return f"Agent(name={self.name!r}, {kind}, sub_agents={len(self._sub_agents)})"
