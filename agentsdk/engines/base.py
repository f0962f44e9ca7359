"""Base reasoning engine with retry and circuit breaker."""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from ..context import CallContext
from ..errors import AgentSDKError, EngineError
from ..infra.logging import get_logger
from ..tools import ToolRegistry
from ..types import (
    EngineRequest,
    EngineResponse,
    GenerateOptions,
    StreamEvent,
    StreamEventType,
    Tool,
    UserMessage,
)

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_time: float = 60.0


class BaseEngine:
    """Abstract base with retry + circuit breaker. Subclass and implement _do_complete/_do_stream."""

    name = "base"

    def __init__(
        self,
        retry: RetryConfig | None = None,
        circuit_breaker: CircuitBreakerConfig | None = None,
    ) -> None:
        self._retry = retry or RetryConfig()
        self._cb = circuit_breaker or CircuitBreakerConfig()
        self._failures = 0
        self._last_failure = 0.0

    async def complete(self, request: EngineRequest, ctx: CallContext) -> EngineResponse:
        self._check_circuit()
        return await self._with_retry(lambda: self._do_complete(request, ctx), ctx)

    async def stream(self, request: EngineRequest, ctx: CallContext) -> AsyncIterator[StreamEvent]:
        self._check_circuit()
        async for event in self._do_stream(request, ctx):
            yield event

    async def generate(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
        ctx: CallContext | None = None,
    ) -> str:
        """Single round, no tools."""
        request = EngineRequest(messages=[UserMessage(content=prompt)], options=options or GenerateOptions())
        response = await self.complete(request, ctx or CallContext())
        return response.content

    async def generate_with_tools(
        self,
        prompt: str,
        tools: ToolRegistry | Iterable[Tool],
        options: GenerateOptions | None = None,
        ctx: CallContext | None = None,
    ) -> str:
        """Run the bounded tool-calling loop for a single prompt."""
        from ..agent.loop import ToolCallingLoop

        loop = ToolCallingLoop(self, options or GenerateOptions())
        result = await loop.run([UserMessage(content=prompt)], tools, ctx or CallContext())
        return result.answer

    # -- Override these --

    async def _do_complete(self, request: EngineRequest, ctx: CallContext) -> EngineResponse:
        raise NotImplementedError

    async def _do_stream(self, request: EngineRequest, ctx: CallContext) -> AsyncIterator[StreamEvent]:
        """Default: one complete() round replayed as stream events."""
        response = await self.complete(request, ctx)
        yield StreamEvent(StreamEventType.MESSAGE_START)
        if response.thinking:
            yield StreamEvent(StreamEventType.THINKING, content=response.thinking)
        if response.content:
            yield StreamEvent(StreamEventType.CONTENT_DELTA, content=response.content)
        for call in response.tool_calls:
            yield StreamEvent(StreamEventType.TOOL_USE, tool_call=call)
        yield StreamEvent(StreamEventType.MESSAGE_STOP)

    # -- Internals --

    def _check_circuit(self) -> None:
        """Refuse calls while ``failure_threshold`` consecutive calls have failed within ``reset_time``."""
        if self._failures < self._cb.failure_threshold:
            return
        if time.monotonic() - self._last_failure < self._cb.reset_time:
            raise EngineError(
                self.name,
                f"circuit open after {self._failures} failed calls",
                code="ENGINE_CIRCUIT_OPEN",
            )
        logger.info("engine_circuit_half_open", engine=self.name)
        self._failures = 0

    def _backoff(self, attempt: int) -> float:
        delay = self._retry.base_delay * (2 ** (attempt - 1)) + random.random() * 0.1
        return min(delay, self._retry.max_delay)

    async def _with_retry(self, fn: Callable[[], Awaitable[T]], ctx: CallContext) -> T:
        """
        Run ``fn`` up to ``max_retries + 1`` times.

        SDK errors such as cancellation are raised at once. A failed call
        counts once toward the circuit breaker however many attempts it took.
        """
        attempts = self._retry.max_retries + 1
        for attempt in range(1, attempts + 1):
            ctx.check("engine call")
            try:
                result = await fn()
            except AgentSDKError:
                raise
            except Exception as e:
                if attempt == attempts:
                    self._failures += 1
                    self._last_failure = time.monotonic()
                    logger.warning("engine_failed", engine=self.name, attempts=attempts, error=str(e))
                    message = str(e) if attempts == 1 else f"{e} (after {attempts} attempts)"
                    raise EngineError(self.name, message, cause=e, attempts=attempts) from e
                logger.warning("engine_retry", engine=self.name, attempt=attempt, error=str(e))
                await ctx.wait_guarded(asyncio.sleep(self._backoff(attempt)), operation="engine retry")
            else:
                self._failures = 0
                return result
        raise EngineError(self.name, "no attempts configured")
