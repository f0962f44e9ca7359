"""Bounded tool-calling loop: engine round, tool dispatch, repeat, then a forced final round."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..context import CallContext
from ..errors import AgentSDKError, EngineError
from ..infra.logging import get_logger
from ..structured import extract_json_payload
from ..tools import ToolRegistry
from ..types import (
    AssistantMessage,
    EngineRequest,
    EngineResponse,
    GenerateOptions,
    Memory,
    Message,
    ReasoningEngine,
    SystemMessage,
    TokenUsage,
    Tool,
    ToolCall,
    ToolMessage,
    ToolOutcome,
)
from .history import ToolCallHistory

logger = get_logger(__name__)

FINAL_ROUND_INSTRUCTION = (
    "Please provide your final response based on the information available. "
    "Do not request any additional tools."
)


@dataclass
class LoopResult:
    answer: str
    engine_calls: int
    tool_rounds: int
    forced_final: bool = False
    payload: dict[str, Any] | None = None
    messages: list[Message] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)


def engine_name(engine: ReasoningEngine) -> str:
    return getattr(engine, "name", type(engine).__name__)


def as_registry(tools: ToolRegistry | Iterable[Tool] | None) -> ToolRegistry:
    if isinstance(tools, ToolRegistry):
        return tools
    return ToolRegistry(tools or ())


def build_messages(options: GenerateOptions, history: list[Message]) -> list[Message]:
    if options.system_message and not (history and isinstance(history[0], SystemMessage)):
        return [SystemMessage(content=options.system_message), *history]
    return list(history)


def final_round_request(messages: list[Message], options: GenerateOptions) -> EngineRequest:
    return EngineRequest(
        messages=[*messages, SystemMessage(content=FINAL_ROUND_INSTRUCTION)],
        tools=[],
        options=options,
    )


class ToolDispatcher:
    """Executes one round's tool calls and records them in history and memory."""

    def __init__(
        self,
        registry: ToolRegistry,
        tracker: ToolCallHistory,
        memory: Memory | None = None,
    ) -> None:
        self.registry = registry
        self.tracker = tracker
        self.memory = memory

    async def execute(self, call: ToolCall, ctx: CallContext) -> ToolOutcome:
        count = self.tracker.record(call.name, call.arguments)
        # A dispatched tool keeps running if the caller stops waiting for it.
        outcome = await ctx.wait_guarded(
            self.registry.execute(call, ctx),
            operation=f"tool {call.name}",
            cancel_pending=False,
        )
        annotated = self.tracker.annotate(call.name, count, outcome.result)
        if annotated is not outcome.result:
            outcome = ToolOutcome(
                call=outcome.call,
                result=annotated,
                error=outcome.error,
                duration_ms=outcome.duration_ms,
            )
        logger.debug(
            "tool_executed",
            tool=call.name,
            status=str(outcome.status),
            duration_ms=outcome.duration_ms,
        )
        return outcome

    async def record_round(
        self,
        content: str,
        calls: list[ToolCall],
        outcomes: list[ToolOutcome],
        conversation: list[Message],
        ctx: CallContext,
    ) -> None:
        round_messages: list[Message] = [AssistantMessage(content=content, tool_calls=tuple(calls))]
        round_messages.extend(
            ToolMessage(
                content=o.result,
                tool_call_id=o.call.id,
                metadata={"tool_name": o.call.name},
            )
            for o in outcomes
        )
        conversation.extend(round_messages)
        if self.memory is not None:
            for m in round_messages:
                await self.memory.add_message(m, ctx)


class ToolCallingLoop:
    """
    Drive an engine through at most ``max_rounds`` tool rounds.

    The engine is called at most ``max_rounds + 1`` times: when every regular
    round still requests tools, one final round runs with tools disabled and
    its answer is authoritative.
    """

    def __init__(
        self,
        engine: ReasoningEngine,
        options: GenerateOptions | None = None,
        memory: Memory | None = None,
    ) -> None:
        self.engine = engine
        self.options = options or GenerateOptions()
        self.memory = memory if memory is not None else self.options.memory

    async def run(
        self,
        history: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None,
        ctx: CallContext,
        max_rounds: int | None = None,
    ) -> LoopResult:
        rounds = max_rounds if max_rounds is not None else self.options.max_rounds
        if rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        registry = as_registry(tools)
        offered = registry.list()
        dispatcher = ToolDispatcher(registry, ToolCallHistory(), self.memory)
        conversation = build_messages(self.options, history)
        usage = TokenUsage()
        start = time.monotonic()

        for round_index in range(rounds):
            ctx.check("tool loop")
            request = EngineRequest(messages=list(conversation), tools=offered, options=self.options)
            response = await self._call_engine(request, ctx)
            _accumulate(usage, response.usage)

            if not response.tool_calls:
                return self._finish(response.content, round_index + 1, round_index, False,
                                    conversation, usage, start)

            outcomes = [await dispatcher.execute(call, ctx) for call in response.tool_calls]
            await dispatcher.record_round(
                response.content, response.tool_calls, outcomes, conversation, ctx
            )

        ctx.check("tool loop")
        logger.info("forcing_final_round", max_rounds=rounds)
        response = await self._call_engine(final_round_request(conversation, self.options), ctx)
        _accumulate(usage, response.usage)
        if response.tool_calls:
            logger.warning("final_round_tool_calls_ignored", count=len(response.tool_calls))
        return self._finish(response.content, rounds + 1, rounds, True, conversation, usage, start)

    async def _call_engine(self, request: EngineRequest, ctx: CallContext) -> EngineResponse:
        try:
            return await ctx.wait_guarded(self.engine.complete(request, ctx), operation="engine call")
        except AgentSDKError:
            raise
        except Exception as e:
            raise EngineError(engine_name(self.engine), str(e), cause=e) from e

    def _finish(
        self,
        answer: str,
        engine_calls: int,
        tool_rounds: int,
        forced: bool,
        conversation: list[Message],
        usage: TokenUsage,
        start: float,
    ) -> LoopResult:
        payload = extract_json_payload(answer) if self.options.response_format else None
        logger.debug(
            "tool_loop_finished",
            engine_calls=engine_calls,
            tool_rounds=tool_rounds,
            forced_final=forced,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return LoopResult(
            answer=answer,
            engine_calls=engine_calls,
            tool_rounds=tool_rounds,
            forced_final=forced,
            payload=payload,
            messages=conversation,
            usage=usage,
        )


def _accumulate(total: TokenUsage, step: TokenUsage) -> None:
    total.prompt_tokens += step.prompt_tokens
    total.completion_tokens += step.completion_tokens
    total.total_tokens += step.total_tokens
