"""Wire models shared by the remote agent client and server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

RUN_PATH = "/v1/run"
PLANS_PATH = "/v1/plans"
METADATA_PATH = "/v1/metadata"
CAPABILITIES_PATH = "/v1/capabilities"
HEALTH_PATH = "/health"
READY_PATH = "/ready"

SERVING = "SERVING"


class RunRequest(BaseModel):
    input: str = ""
    org_id: str | None = None
    conversation_id: str | None = None
    context: dict[str, str] = Field(default_factory=dict)


class RunResponse(BaseModel):
    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = SERVING


class ReadyResponse(BaseModel):
    ready: bool = True
    message: str = ""


class MetadataResponse(BaseModel):
    name: str | None = None
    description: str = ""
    capabilities: list[str] = Field(default_factory=list)
    properties: dict[str, str] = Field(default_factory=dict)


class CapabilitiesResponse(BaseModel):
    capabilities: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    sub_agents: list[str] = Field(default_factory=list)


class PlanStep(BaseModel):
    tool_name: str
    description: str = ""
    input: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class PlanRequest(BaseModel):
    input: str = ""
    org_id: str | None = None
    conversation_id: str | None = None


class PlanResponse(BaseModel):
    plan_id: str = ""
    formatted_plan: str = ""
    status: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    error: str | None = None


class ApprovalRequest(BaseModel):
    approved: bool = False
    modifications: str = ""


class ApprovalResponse(BaseModel):
    result: str = ""
    status: str = ""
    error: str | None = None
