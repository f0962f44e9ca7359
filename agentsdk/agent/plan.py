"""
Execution plans: generate a multi-step tool plan, hold it for human approval,
then run it step by step.

Lifecycle:

    draft → pending_approval → approved → executing → completed | failed
                     │  ▲
                     │  └── modify
                     └────→ cancelled

Plans live in a per-agent ``PlanStore`` guarded by a reader/writer lock;
engine calls and step execution always happen outside the lock.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..context import CallContext
from ..errors import (
    AgentSDKError,
    EngineError,
    PlanNotFoundError,
    PlanParseError,
    PlanStateError,
)
from ..infra.logging import get_logger
from ..structured import find_json_object
from ..sync import RWLock
from ..tools import FATAL_TOOL_ERRORS, ToolRegistry, describe_parameters
from ..types import (
    EngineRequest,
    GenerateOptions,
    ReasoningEngine,
    Tool,
    UserMessage,
)
from .loop import engine_name

logger = get_logger(__name__)

T = TypeVar("T")


class PlanStatus(StrEnum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.PENDING_APPROVAL, PlanStatus.CANCELLED}),
    PlanStatus.PENDING_APPROVAL: frozenset(
        {PlanStatus.PENDING_APPROVAL, PlanStatus.APPROVED, PlanStatus.CANCELLED}
    ),
    PlanStatus.APPROVED: frozenset({PlanStatus.EXECUTING}),
    PlanStatus.EXECUTING: frozenset({PlanStatus.COMPLETED, PlanStatus.FAILED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.FAILED: frozenset(),
    PlanStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class ExecutionStep:
    tool_name: str
    input: str = ""
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def arguments(self) -> str:
        """Tool arguments: the parameters as JSON when present, else the raw input."""
        if self.parameters:
            return json.dumps(self.parameters)
        return self.input


@dataclass
class ExecutionPlan:
    description: str
    steps: list[ExecutionStep]
    task_id: str = field(default_factory=lambda: f"plan_{uuid.uuid4().hex[:12]}")
    status: PlanStatus = PlanStatus.DRAFT
    user_approved: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    execution_result: str | None = None

    def transition(self, target: PlanStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise PlanStateError(self.task_id, self.status, target)
        self.status = target
        self.updated_at = datetime.now(timezone.utc)

    def snapshot(self) -> ExecutionPlan:
        return replace(self, steps=list(self.steps))


@dataclass(frozen=True)
class StepResult:
    index: int
    step: ExecutionStep
    output: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ExecutionReport:
    task_id: str
    transcript: str
    results: list[StepResult]

    @property
    def succeeded(self) -> bool:
        return all(r.ok for r in self.results)


@dataclass(frozen=True)
class PlanStatusReport:
    task_id: str
    status: PlanStatus
    transcript: str
    execution_result: str | None = None


def format_execution_plan(plan: ExecutionPlan) -> str:
    out = [
        f"# Execution Plan: {plan.description}\n\n",
        f"Task ID: {plan.task_id}\n",
        f"Status: {plan.status}\n\n",
    ]
    for i, step in enumerate(plan.steps, 1):
        out.append(f"## Step {i}: {step.description}\n")
        out.append(f"Tool: {step.tool_name}\n")
        if step.input:
            out.append(f"Input: {step.input}\n")
        if step.parameters:
            out.append("Parameters:\n")
            out.extend(f"- {k}: {v}\n" for k, v in step.parameters.items())
        out.append("\n")
    return "".join(out)


# -- Prompting & parsing --

_PLAN_LAYOUT = """{
  "description": "short summary of the whole plan",
  "steps": [
    {
      "toolName": "name of the tool to call",
      "description": "what this step does",
      "input": "primary input for the tool",
      "parameters": {"parameter_name": "value"}
    }
  ]
}"""


def describe_tools(tools: Iterable[Tool]) -> str:
    lines = []
    for t in tools:
        lines.append(f"- {t.name}: {t.description}")
        params = describe_parameters(t.parameters_schema())
        if params:
            lines.append("  Parameters:")
            lines.extend(f"  - {p}" for p in params)
    return "\n".join(lines) or "(no tools available)"


def build_plan_prompt(request: str, tools: Iterable[Tool]) -> str:
    return (
        "Create an execution plan for the user request below, using only the tools listed.\n\n"
        f"Available tools:\n{describe_tools(tools)}\n\n"
        f"User request: {request}\n\n"
        "Respond with a single JSON object in this layout and nothing else:\n"
        f"{_PLAN_LAYOUT}\n"
    )


def build_modify_prompt(plan: ExecutionPlan, feedback: str, tools: Iterable[Tool]) -> str:
    return (
        "Revise the execution plan below according to the user's feedback, "
        "using only the tools listed.\n\n"
        f"Available tools:\n{describe_tools(tools)}\n\n"
        f"Current plan:\n{format_execution_plan(plan)}\n"
        f"User feedback: {feedback}\n\n"
        "Respond with a single JSON object in this layout and nothing else:\n"
        f"{_PLAN_LAYOUT}\n"
    )


class _StepPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tool_name: str = Field(
        min_length=1, validation_alias=AliasChoices("toolName", "tool_name", "tool")
    )
    description: str = ""
    input: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("input", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else json.dumps(v)

    @field_validator("parameters", mode="before")
    @classmethod
    def _default_parameters(cls, v: Any) -> Any:
        return {} if v is None else v


class _PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""
    steps: list[_StepPayload]


def parse_plan(text: str) -> tuple[str, list[ExecutionStep]]:
    """Parse the first balanced JSON object of an engine reply into plan parts."""
    raw = find_json_object(text)
    if raw is None:
        raise PlanParseError("no JSON object found in plan response", raw=text)
    try:
        payload = _PlanPayload.model_validate_json(raw)
    except PydanticValidationError as e:
        raise PlanParseError(f"invalid plan structure: {e}", raw=text, cause=e) from e
    steps = [
        ExecutionStep(
            tool_name=s.tool_name,
            input=s.input,
            description=s.description,
            parameters=dict(s.parameters),
        )
        for s in payload.steps
    ]
    return payload.description, steps


# -- Store --


class PlanStore:
    """task_id → plan. Reads share the lock; mutations take it exclusively."""

    def __init__(self) -> None:
        self._plans: dict[str, ExecutionPlan] = {}
        self._lock = RWLock()

    async def add(self, plan: ExecutionPlan) -> None:
        async with self._lock.write():
            self._plans[plan.task_id] = plan

    async def get(self, task_id: str) -> ExecutionPlan:
        async with self._lock.read():
            return self._require(task_id).snapshot()

    async def list(self) -> list[ExecutionPlan]:
        async with self._lock.read():
            return [p.snapshot() for p in self._plans.values()]

    async def view(self, task_id: str, fn: Callable[[ExecutionPlan], T]) -> T:
        async with self._lock.read():
            return fn(self._require(task_id))

    async def update(self, task_id: str, fn: Callable[[ExecutionPlan], T]) -> T:
        async with self._lock.write():
            return fn(self._require(task_id))

    def _require(self, task_id: str) -> ExecutionPlan:
        plan = self._plans.get(task_id)
        if plan is None:
            raise PlanNotFoundError(task_id)
        return plan


# -- Generation & execution --


class PlanGenerator:
    def __init__(self, engine: ReasoningEngine, options: GenerateOptions | None = None) -> None:
        self.engine = engine
        self.options = options or GenerateOptions()

    async def generate(
        self, request: str, tools: Iterable[Tool], ctx: CallContext
    ) -> tuple[str, list[ExecutionStep]]:
        return parse_plan(await self._ask(build_plan_prompt(request, tools), ctx))

    async def revise(
        self, plan: ExecutionPlan, feedback: str, tools: Iterable[Tool], ctx: CallContext
    ) -> tuple[str, list[ExecutionStep]]:
        return parse_plan(await self._ask(build_modify_prompt(plan, feedback, tools), ctx))

    async def _ask(self, prompt: str, ctx: CallContext) -> str:
        request = EngineRequest(messages=[UserMessage(content=prompt)], tools=[], options=self.options)
        try:
            response = await ctx.wait_guarded(
                self.engine.complete(request, ctx), operation="plan generation"
            )
        except AgentSDKError:
            raise
        except Exception as e:
            raise EngineError(engine_name(self.engine), str(e), cause=e) from e
        return response.content


class PlanExecutor:
    """Runs every step in order; a failed step is recorded and execution continues."""

    async def execute(
        self, plan: ExecutionPlan, registry: ToolRegistry, ctx: CallContext
    ) -> ExecutionReport:
        if not plan.user_approved:
            raise PlanStateError(
                plan.task_id, plan.status, PlanStatus.EXECUTING, "plan has not been approved"
            )
        out = [f"Executing plan: {plan.description}\n\n"]
        results: list[StepResult] = []
        for i, step in enumerate(plan.steps, 1):
            out.append(f"Step {i}: {step.description}\n")
            result = await self._run_step(i, step, registry, ctx)
            if result.ok:
                out.append(f"Result: {result.output}\n\n")
            else:
                out.append(f"Error: {result.error}\n\n")
            results.append(result)
        return ExecutionReport(task_id=plan.task_id, transcript="".join(out), results=results)

    @staticmethod
    async def _run_step(
        index: int, step: ExecutionStep, registry: ToolRegistry, ctx: CallContext
    ) -> StepResult:
        tool = registry.get(step.tool_name)
        if tool is None:
            logger.warning("plan_step_tool_missing", tool=step.tool_name, step=index)
            return StepResult(index, step, error=f"Tool '{step.tool_name}' not found")
        try:
            output = await ctx.wait_guarded(
                tool.execute(step.arguments(), ctx),
                operation=f"plan step {index}",
                cancel_pending=False,
            )
        except FATAL_TOOL_ERRORS:
            raise
        except Exception as e:
            logger.warning("plan_step_failed", tool=step.tool_name, step=index, error=str(e))
            return StepResult(index, step, error=str(e))
        return StepResult(index, step, output=output)


class ExecutionPlanner:
    """Generate / approve / modify / cancel / status over one plan store."""

    def __init__(
        self,
        engine: ReasoningEngine,
        options: GenerateOptions | None = None,
        store: PlanStore | None = None,
    ) -> None:
        self.store = store or PlanStore()
        self.generator = PlanGenerator(engine, options)
        self.executor = PlanExecutor()

    async def generate(self, request: str, tools: Iterable[Tool], ctx: CallContext) -> ExecutionPlan:
        description, steps = await self.generator.generate(request, list(tools), ctx)
        plan = ExecutionPlan(description=description or request, steps=steps)
        plan.transition(PlanStatus.PENDING_APPROVAL)
        await self.store.add(plan)
        logger.info("plan_created", task_id=plan.task_id, steps=len(steps))
        return plan.snapshot()

    async def approve(
        self, task_id: str, tools: ToolRegistry | Iterable[Tool], ctx: CallContext
    ) -> ExecutionReport:
        registry = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)

        def _start(plan: ExecutionPlan) -> ExecutionPlan:
            plan.transition(PlanStatus.APPROVED)
            plan.user_approved = True
            plan.transition(PlanStatus.EXECUTING)
            return plan.snapshot()

        plan = await self.store.update(task_id, _start)
        logger.info("plan_executing", task_id=task_id)
        try:
            report = await self.executor.execute(plan, registry, ctx)
        except Exception:
            await self.store.update(task_id, lambda p: _finish(p, None, False))
            raise
        await self.store.update(task_id, lambda p: _finish(p, report.transcript, report.succeeded))
        logger.info("plan_finished", task_id=task_id, succeeded=report.succeeded)
        return report

    async def modify(
        self, task_id: str, feedback: str, tools: Iterable[Tool], ctx: CallContext
    ) -> ExecutionPlan:
        current = await self.store.get(task_id)
        if current.status != PlanStatus.PENDING_APPROVAL:
            raise PlanStateError(task_id, current.status, PlanStatus.PENDING_APPROVAL)
        description, steps = await self.generator.revise(current, feedback, list(tools), ctx)

        def _replace(plan: ExecutionPlan) -> ExecutionPlan:
            plan.transition(PlanStatus.PENDING_APPROVAL)
            plan.description = description or plan.description
            plan.steps = steps
            return plan.snapshot()

        return await self.store.update(task_id, _replace)

    async def cancel(self, task_id: str) -> bool:
        """Cancel a plan awaiting approval. Returns False once it has been approved or finished."""

        def _cancel(plan: ExecutionPlan) -> bool:
            if PlanStatus.CANCELLED not in _TRANSITIONS[plan.status]:
                return False
            plan.transition(PlanStatus.CANCELLED)
            return True

        cancelled = await self.store.update(task_id, _cancel)
        logger.info("plan_cancel", task_id=task_id, cancelled=cancelled)
        return cancelled

    async def status(self, task_id: str) -> PlanStatusReport:
        return await self.store.view(
            task_id,
            lambda p: PlanStatusReport(
                task_id=p.task_id,
                status=p.status,
                transcript=format_execution_plan(p),
                execution_result=p.execution_result,
            ),
        )

    async def get(self, task_id: str) -> ExecutionPlan:
        return await self.store.get(task_id)

    async def list(self) -> list[ExecutionPlan]:
        return await self.store.list()


def _finish(plan: ExecutionPlan, transcript: str | None, succeeded: bool) -> None:
    if transcript is not None:
        plan.execution_result = transcript
    plan.transition(PlanStatus.COMPLETED if succeeded else PlanStatus.FAILED)
