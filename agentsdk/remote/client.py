"""Remote agent client: HTTP/JSON calls to another agent process, with health probe and retries."""

from __future__ import annotations

import asyncio
import json
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import RemoteAgentConfig
from ..context import CallContext
from ..errors import DeadlineExceededError, RemoteAgentError, TransportError
from ..infra.logging import get_logger
from .models import (
    CAPABILITIES_PATH,
    HEALTH_PATH,
    METADATA_PATH,
    PLANS_PATH,
    READY_PATH,
    RUN_PATH,
    SERVING,
    ApprovalRequest,
    ApprovalResponse,
    CapabilitiesResponse,
    HealthResponse,
    MetadataResponse,
    PlanRequest,
    PlanResponse,
    ReadyResponse,
    RunRequest,
    RunResponse,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_RETRYABLE = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)


class RemoteAgentClient:
    """
    Talks to an ``AgentServer``.

    The session is opened lazily and handed out only after ``GET /health``
    answers ``SERVING``. Calls retry transport failures (connection errors,
    timeouts, HTTP 5xx) up to ``retry_count`` attempts with a linear backoff;
    the per-call deadline bounds the whole attempt budget. Application errors
    reported by the peer are raised immediately as ``RemoteAgentError``.
    """

    def __init__(self, config: RemoteAgentConfig | str) -> None:
        self.config = RemoteAgentConfig(url=config) if isinstance(config, str) else config
        self.url = self.config.url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._session is not None and not self._session.closed

    async def connect(self) -> None:
        if self.connected:
            return
        async with self._connect_lock:
            if self.connected:
                return
            session = aiohttp.ClientSession()
            try:
                await self._probe(session)
            except Exception as e:
                await session.close()
                logger.warning("remote_health_check_failed", url=self.url, error=str(e))
                raise TransportError(
                    f"health check failed for remote agent at {self.url}: {e}", attempts=1, cause=e
                ) from e
            self._session = session
            logger.info("remote_agent_connected", url=self.url)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> RemoteAgentClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def _probe(self, session: aiohttp.ClientSession) -> None:
        timeout = aiohttp.ClientTimeout(total=self.config.health_timeout)
        async with session.get(self.url + HEALTH_PATH, timeout=timeout) as resp:
            resp.raise_for_status()
            health = HealthResponse.model_validate(await resp.json(content_type=None))
        if health.status != SERVING:
            raise ConnectionError(f"remote agent status is {health.status}")

    # -- Calls --

    async def run(
        self,
        input_text: str,
        ctx: CallContext | None = None,
        auth_token: str | None = None,
    ) -> str:
        ctx = ctx or CallContext()
        body = RunRequest(
            input=input_text,
            org_id=ctx.tenant_id,
            conversation_id=ctx.conversation_id,
            context={k: str(v) for k, v in ctx.metadata.items()},
        )
        resp = await self._call("POST", RUN_PATH, ctx, RunResponse, body=body, auth_token=auth_token)
        if resp.error:
            raise RemoteAgentError(self.url, resp.error)
        return resp.output

    async def generate_execution_plan(
        self, input_text: str, ctx: CallContext | None = None, auth_token: str | None = None
    ) -> PlanResponse:
        ctx = ctx or CallContext()
        body = PlanRequest(
            input=input_text, org_id=ctx.tenant_id, conversation_id=ctx.conversation_id
        )
        resp = await self._call(
            "POST", PLANS_PATH, ctx, PlanResponse, body=body, auth_token=auth_token
        )
        if resp.error:
            raise RemoteAgentError(self.url, resp.error)
        return resp

    async def approve_execution_plan(
        self,
        plan_id: str,
        approved: bool = True,
        modifications: str = "",
        ctx: CallContext | None = None,
        auth_token: str | None = None,
    ) -> str:
        body = ApprovalRequest(approved=approved, modifications=modifications)
        resp = await self._call(
            "POST",
            f"{PLANS_PATH}/{plan_id}/approval",
            ctx or CallContext(),
            ApprovalResponse,
            body=body,
            auth_token=auth_token,
        )
        if resp.error:
            raise RemoteAgentError(self.url, resp.error)
        return resp.result

    async def metadata(self, ctx: CallContext | None = None) -> MetadataResponse:
        ctx = (ctx or CallContext()).with_timeout(self.config.metadata_timeout)
        return await self._call("GET", METADATA_PATH, ctx, MetadataResponse, attempts=1)

    async def capabilities(self, ctx: CallContext | None = None) -> CapabilitiesResponse:
        ctx = (ctx or CallContext()).with_timeout(self.config.metadata_timeout)
        return await self._call("GET", CAPABILITIES_PATH, ctx, CapabilitiesResponse, attempts=1)

    async def health(self) -> bool:
        ctx = CallContext().with_timeout(self.config.health_timeout)
        try:
            resp = await self._call("GET", HEALTH_PATH, ctx, HealthResponse, attempts=1)
        except TransportError:
            return False
        return resp.status == SERVING

    async def ready(self) -> bool:
        ctx = CallContext().with_timeout(self.config.health_timeout)
        try:
            resp = await self._call("GET", READY_PATH, ctx, ReadyResponse, attempts=1)
        except TransportError:
            return False
        return resp.ready

    # -- Internals --

    def _headers(self, ctx: CallContext, auth_token: str | None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if ctx.tenant_id:
            headers["X-Org-ID"] = ctx.tenant_id
        if ctx.conversation_id:
            headers["X-Conversation-ID"] = ctx.conversation_id
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    async def _call(
        self,
        method: str,
        path: str,
        ctx: CallContext,
        model: type[M],
        body: BaseModel | None = None,
        auth_token: str | None = None,
        attempts: int | None = None,
    ) -> M:
        await self.connect()
        ctx = ctx.with_timeout(self.config.timeout)
        max_attempts = attempts or self.config.retry_count
        headers = self._headers(ctx, auth_token)
        payload = body.model_dump() if body is not None else None
        made = 0
        last: Exception | None = None

        async def _attempt_all() -> M:
            nonlocal made, last
            for attempt in range(max_attempts):
                made = attempt + 1
                try:
                    return await self._request(method, path, ctx, model, payload, headers)
                except _RETRYABLE as e:
                    last = e
                    logger.warning(
                        "remote_call_failed", url=self.url, path=path, attempt=made, error=str(e)
                    )
                    if attempt < max_attempts - 1:
                        await asyncio.sleep(self.config.retry_backoff * (attempt + 1))
            raise TransportError(
                f"failed after {made} attempts, last error: {last}", attempts=made, cause=last
            )

        try:
            return await ctx.wait_guarded(_attempt_all(), operation=f"remote call {path}")
        except DeadlineExceededError as e:
            raise TransportError(
                f"deadline exceeded after {made} attempts, last error: {last}",
                attempts=made,
                cause=last or e,
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        ctx: CallContext,
        model: type[M],
        payload: dict[str, Any] | None,
        headers: dict[str, str],
    ) -> M:
        assert self._session is not None
        remaining = ctx.remaining()
        timeout = aiohttp.ClientTimeout(total=remaining) if remaining is not None else None
        async with self._session.request(
            method, self.url + path, json=payload, headers=headers, timeout=timeout
        ) as resp:
            if resp.status >= 500:
                resp.raise_for_status()
            if resp.status >= 400:
                raise RemoteAgentError(self.url, f"HTTP {resp.status}: {await _error_detail(resp)}")
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise TransportError(f"malformed response from {self.url}{path}: {e}", 1, e) from e
        try:
            return model.model_validate(data or {})
        except PydanticValidationError as e:
            raise TransportError(f"malformed response from {self.url}{path}: {e}", 1, e) from e


async def _error_detail(resp: aiohttp.ClientResponse) -> str:
    text = await resp.text()
    try:
        data = json.loads(text)
    except ValueError:
        return text or str(resp.reason)
    if isinstance(data, dict):
        return str(data.get("error") or data.get("detail") or text)
    return text
