"""Sub-agent delegation: agents exposed as tools, plus static and per-call recursion guards."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any, Protocol

from ..context import (
    DEFAULT_SUB_AGENT_TIMEOUT,
    MAX_RECURSION_DEPTH,
    CallContext,
    validate_recursion_depth,
)
from ..errors import DeadlineExceededError, RecursionLimitError, ToolExecutionError, ValidationError
from ..infra.logging import get_logger

logger = get_logger(__name__)


class Delegate(Protocol):
    name: str | None

    @property
    def sub_agents(self) -> Sequence[Delegate]: ...
    @property
    def is_remote(self) -> bool: ...
    @property
    def engine(self) -> Any: ...
    @property
    def capabilities(self) -> str: ...
    async def run(self, input_text: str, ctx: CallContext | None = None) -> str: ...


def agent_identity(agent: Delegate) -> str:
    return agent.name or f"agent@{id(agent):x}"


def detect_cycles(root: Delegate) -> None:
    """Depth-first search with visited / on-stack sets; an edge into the stack is a cycle."""
    visited: set[str] = set()
    on_stack: set[str] = set()

    def visit(agent: Delegate, path: list[str]) -> None:
        key = agent_identity(agent)
        if key in on_stack:
            cycle = " -> ".join([*path[path.index(key):], key])
            raise ValidationError(f"circular dependency detected: {cycle}")
        if key in visited:
            return
        visited.add(key)
        on_stack.add(key)
        for sub in agent.sub_agents:
            visit(sub, [*path, key])
        on_stack.discard(key)

    visit(root, [])


def tree_depth(agent: Delegate) -> int:
    """
    Longest root-to-leaf path, counted in edges. Call only on acyclic trees.

    Shared sub-agents are measured once.
    """
    depths: dict[int, int] = {}

    def measure(node: Delegate) -> int:
        key = id(node)
        if key not in depths:
            subs = node.sub_agents
            depths[key] = 1 + max(measure(sub) for sub in subs) if subs else 0
        return depths[key]

    return measure(agent)


def validate_components(root: Delegate) -> None:
    seen: set[int] = set()

    def visit(agent: Delegate, is_root: bool) -> None:
        if id(agent) in seen:
            return
        seen.add(id(agent))
        if not is_root and not agent.name:
            raise ValidationError("sub-agents must have a name")
        if not agent.is_remote and agent.engine is None:
            raise ValidationError(f"agent {agent_identity(agent)} has no reasoning engine")
        for sub in agent.sub_agents:
            visit(sub, False)

    visit(root, True)


def validate_agent_tree(root: Delegate, max_depth: int = MAX_RECURSION_DEPTH) -> None:
    detect_cycles(root)
    depth = tree_depth(root)
    if depth > max_depth:
        raise RecursionLimitError(depth, max_depth, agent_identity(root))
    validate_components(root)


_AGENT_TOOL_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The task or question for the agent"},
        "context": {"type": "string", "description": "Optional background for the task"},
    },
    "required": ["query"],
}


class AgentTool:
    """Exposes a sub-agent to its parent's engine as a tool named after the sub-agent."""

    def __init__(
        self,
        agent: Delegate,
        parent_name: str,
        timeout: float = DEFAULT_SUB_AGENT_TIMEOUT,
        max_depth: int = MAX_RECURSION_DEPTH,
    ) -> None:
        if not agent.name:
            raise ValidationError("sub-agents must have a name")
        self.agent = agent
        self.name = agent.name
        self.description = agent.capabilities
        self.parent_name = parent_name
        self.timeout = timeout
        self.max_depth = max_depth

    def parameters_schema(self) -> dict[str, Any]:
        return _AGENT_TOOL_SCHEMA

    @staticmethod
    def _query(arguments: str) -> str:
        try:
            data = json.loads(arguments)
        except (json.JSONDecodeError, TypeError):
            return arguments
        if not isinstance(data, dict):
            return arguments
        query = str(data.get("query") or data.get("input") or "")
        if data.get("context"):
            query = f"{query}\n\nContext: {data['context']}"
        return query

    async def execute(self, arguments: str, ctx: CallContext) -> str:
        sub_ctx = ctx.with_sub_agent(self.parent_name, self.name, self.timeout)
        validate_recursion_depth(sub_ctx, self.max_depth)
        query = self._query(arguments)
        if not query:
            raise ToolExecutionError(self.name, "query is required")
        logger.info(
            "sub_agent_invoked",
            parent=self.parent_name,
            sub_agent=self.name,
            depth=sub_ctx.depth,
            invocation_id=sub_ctx.recursion.invocation_id if sub_ctx.recursion else None,
        )
        try:
            return await sub_ctx.wait_guarded(
                self.agent.run(query, sub_ctx), operation=f"sub-agent {self.name}"
            )
        except DeadlineExceededError as e:
            remaining = ctx.remaining()
            if remaining is not None and remaining <= 0:
                raise
            raise ToolExecutionError(
                self.name, f"sub-agent {self.name} timed out after {self.timeout}s", e
            ) from e
