"""Immutable call context carried through every agent, tool and engine call."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from .errors import DeadlineExceededError, RecursionLimitError, RunCancelledError

T = TypeVar("T")

MAX_RECURSION_DEPTH = 5
DEFAULT_SUB_AGENT_TIMEOUT = 30.0


def new_invocation_id() -> str:
    return f"inv_{time.time_ns()}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class RecursionContext:
    """One hop of sub-agent delegation."""

    parent_name: str
    sub_agent_name: str
    depth: int
    invocation_id: str
    start_time: float


@dataclass(frozen=True)
class CallContext:
    tenant_id: str | None = None
    conversation_id: str | None = None
    recursion: RecursionContext | None = None
    deadline: float | None = None  # time.monotonic() based
    cancel_event: asyncio.Event | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def depth(self) -> int:
        return self.recursion.depth if self.recursion else 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def with_tenant(self, tenant_id: str | None) -> CallContext:
        return replace(self, tenant_id=tenant_id)

    def with_conversation(self, conversation_id: str | None) -> CallContext:
        return replace(self, conversation_id=conversation_id)

    def with_timeout(self, seconds: float) -> CallContext:
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)

    def with_cancel_event(self, event: asyncio.Event) -> CallContext:
        return replace(self, cancel_event=event)

    def with_metadata(self, **values: Any) -> CallContext:
        return replace(self, metadata={**self.metadata, **values})

    def with_sub_agent(
        self,
        parent_name: str,
        sub_agent_name: str,
        timeout: float = DEFAULT_SUB_AGENT_TIMEOUT,
    ) -> CallContext:
        """Derive the context for one delegation hop (depth + 1, fresh invocation id)."""
        recursion = RecursionContext(
            parent_name=parent_name,
            sub_agent_name=sub_agent_name,
            depth=self.depth + 1,
            invocation_id=new_invocation_id(),
            start_time=time.time(),
        )
        return replace(self, recursion=recursion).with_timeout(timeout)

    def check(self, operation: str = "call") -> None:
        if self.cancelled:
            raise RunCancelledError()
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError(operation)

    async def wait_guarded(
        self,
        aw: Awaitable[T],
        *,
        operation: str = "call",
        cancel_pending: bool = True,
    ) -> T:
        """
        Await ``aw`` while watching the deadline and the cancellation signal.

        With ``cancel_pending=False`` the awaited task keeps running when the
        wait is abandoned; only the caller stops waiting for it.
        """
        try:
            self.check(operation)
        except (RunCancelledError, DeadlineExceededError):
            if asyncio.iscoroutine(aw):
                aw.close()
            raise
        task = asyncio.ensure_future(aw)
        if self.cancel_event is None and self.deadline is None:
            return await task

        waiters: set[asyncio.Future] = {task}
        cancel_waiter: asyncio.Future | None = None
        if self.cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(self.cancel_event.wait())
            waiters.add(cancel_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            if cancel_pending:
                task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()
        if cancel_pending:
            task.cancel()
        if cancel_waiter is not None and cancel_waiter in done:
            raise RunCancelledError()
        raise DeadlineExceededError(operation)


def validate_recursion_depth(ctx: CallContext, max_depth: int = MAX_RECURSION_DEPTH) -> None:
    if ctx.depth > max_depth:
        name = ctx.recursion.sub_agent_name if ctx.recursion else None
        raise RecursionLimitError(ctx.depth, max_depth, name)
