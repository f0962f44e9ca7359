"""
Agent Server
FastAPI app exposing a local agent to ``RemoteAgentClient`` peers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Header, HTTPException

from ..agent.plan import format_execution_plan
from ..context import CallContext
from ..errors import AgentSDKError, PlanNotFoundError
from ..infra.logging import get_logger
from .models import (
    CAPABILITIES_PATH,
    HEALTH_PATH,
    METADATA_PATH,
    PLANS_PATH,
    READY_PATH,
    RUN_PATH,
    ApprovalRequest,
    ApprovalResponse,
    CapabilitiesResponse,
    HealthResponse,
    MetadataResponse,
    PlanRequest,
    PlanResponse,
    PlanStep,
    ReadyResponse,
    RunRequest,
    RunResponse,
)

if TYPE_CHECKING:
    from ..agent.core import Agent

logger = get_logger(__name__)

SERVER_CAPABILITIES = ["run", "run_stream", "metadata", "health", "plans"]


def _context(
    org_id: str | None,
    conversation_id: str | None,
    header_org: str | None,
    header_conversation: str | None,
) -> CallContext:
    return CallContext(
        tenant_id=org_id or header_org,
        conversation_id=conversation_id or header_conversation,
    )


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def create_app(agent: Agent) -> FastAPI:
    app = FastAPI(title=f"agentsdk: {agent.name or 'agent'}")

    # ========================================================================
    # Health
    # ========================================================================

    @app.get(HEALTH_PATH, response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.get(READY_PATH, response_model=ReadyResponse)
    async def ready() -> ReadyResponse:
        if not agent.is_remote and agent.engine is None:
            return ReadyResponse(ready=False, message="no reasoning engine configured")
        return ReadyResponse(ready=True, message="ready")

    # ========================================================================
    # Metadata
    # ========================================================================

    @app.get(METADATA_PATH, response_model=MetadataResponse)
    async def metadata() -> MetadataResponse:
        props: dict[str, str] = {"max_rounds": str(agent.config.max_rounds)}
        if agent.config.system_prompt:
            props["system_prompt"] = agent.config.system_prompt
        return MetadataResponse(
            name=agent.name,
            description=agent.capabilities,
            capabilities=SERVER_CAPABILITIES,
            properties=props,
        )

    @app.get(CAPABILITIES_PATH, response_model=CapabilitiesResponse)
    async def capabilities() -> CapabilitiesResponse:
        return CapabilitiesResponse(
            capabilities=SERVER_CAPABILITIES,
            tools=agent.tools.names(),
            sub_agents=[s.name for s in agent.sub_agents if s.name],
        )

    # ========================================================================
    # Run
    # ========================================================================

    @app.post(RUN_PATH, response_model=RunResponse)
    async def run(
        body: RunRequest,
        x_org_id: str | None = Header(None),
        x_conversation_id: str | None = Header(None),
        authorization: str | None = Header(None),
    ) -> RunResponse:
        if not body.input:
            raise HTTPException(status_code=400, detail="input cannot be empty")
        ctx = _context(body.org_id, body.conversation_id, x_org_id, x_conversation_id)
        if body.context:
            ctx = ctx.with_metadata(**body.context)
        try:
            output = await agent.run(body.input, ctx, auth_token=_bearer(authorization))
        except AgentSDKError as e:
            logger.warning("remote_run_failed", code=e.code, error=str(e))
            return RunResponse(error=str(e), metadata={"code": e.code})
        return RunResponse(output=output)

    # ========================================================================
    # Plans
    # ========================================================================

    @app.post(PLANS_PATH, response_model=PlanResponse)
    async def generate_plan(
        body: PlanRequest,
        x_org_id: str | None = Header(None),
        x_conversation_id: str | None = Header(None),
    ) -> PlanResponse:
        if not body.input:
            raise HTTPException(status_code=400, detail="input cannot be empty")
        ctx = _context(body.org_id, body.conversation_id, x_org_id, x_conversation_id)
        try:
            plan = await agent.generate_plan(body.input, ctx)
        except AgentSDKError as e:
            return PlanResponse(error=str(e))
        return PlanResponse(
            plan_id=plan.task_id,
            formatted_plan=format_execution_plan(plan),
            status=plan.status,
            steps=[
                PlanStep(
                    tool_name=s.tool_name,
                    description=s.description,
                    input=s.input,
                    parameters=s.parameters,
                )
                for s in plan.steps
            ],
        )

    @app.post(PLANS_PATH + "/{plan_id}/approval", response_model=ApprovalResponse)
    async def approve_plan(plan_id: str, body: ApprovalRequest) -> ApprovalResponse:
        ctx = CallContext()
        try:
            if body.modifications:
                result = await agent.modify_plan(plan_id, body.modifications, ctx)
            elif body.approved:
                result = await agent.approve_plan(plan_id, ctx)
            else:
                result = await agent.cancel_plan(plan_id, ctx)
            status = (await agent.plan_status(plan_id)).status
        except PlanNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except AgentSDKError as e:
            return ApprovalResponse(error=str(e))
        return ApprovalResponse(result=result, status=status)

    return app


class AgentServer:
    """Serves an agent over HTTP with uvicorn."""

    def __init__(self, agent: Agent, host: str = "0.0.0.0", port: int = 8000) -> None:
        self.agent = agent
        self.host = host
        self.port = port
        self.app = create_app(agent)

    async def serve(self) -> None:
        import uvicorn

        logger.info("agent_server_starting", host=self.host, port=self.port, agent=self.agent.name)
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None)
        await uvicorn.Server(config).serve()
