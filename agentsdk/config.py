"""Configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .errors import ValidationError


class LLMConfig(BaseModel):
    """Sampling parameters forwarded to the reasoning engine."""

    temperature: float = Field(0.7, ge=0.0, le=2.0, description="Sampling temperature")
    top_p: float = Field(1.0, ge=0.0, le=1.0, description="Nucleus sampling mass")
    frequency_penalty: float = Field(0.0, description="Frequency penalty")
    presence_penalty: float = Field(0.0, description="Presence penalty")
    stop_sequences: list[str] = Field(default_factory=list, description="Stop sequences")
    max_tokens: int | None = Field(None, gt=0, description="Completion token cap")


class StreamConfig(BaseModel):
    buffer_size: int = Field(100, ge=1, description="Event queue capacity")
    include_thinking: bool = Field(True, description="Forward thinking events")
    include_tool_progress: bool = Field(True, description="Forward engine tool_use events")
    include_intermediate_messages: bool = Field(
        False, description="Forward content of non-final rounds as it arrives"
    )


class AgentConfig(BaseModel):
    name: str | None = Field(None, description="Agent name, required for sub-agents")
    description: str | None = Field(None, description="Capability description")
    system_prompt: str | None = Field(None, description="System message")
    max_rounds: int = Field(2, ge=1, description="Tool rounds before the forced final round")
    require_plan_approval: bool = Field(
        False, description="Generate a plan for approval instead of running tools"
    )
    org_id: str | None = Field(None, description="Default tenant id")
    sub_agent_timeout: float = Field(30.0, gt=0, description="Per-hop delegation timeout (s)")
    llm: LLMConfig = Field(default_factory=LLMConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)


class RemoteAgentConfig(BaseModel):
    url: str = Field(..., min_length=1, description="Base URL of the remote agent")
    timeout: float = Field(300.0, gt=0, description="Deadline for one call incl. retries (s)")
    retry_count: int = Field(3, ge=1, description="Attempts per call")
    retry_backoff: float = Field(1.0, ge=0, description="Backoff unit, multiplied by attempt")
    health_timeout: float = Field(5.0, gt=0)
    metadata_timeout: float = Field(10.0, gt=0)


def build_config(model: type[BaseModel], **values: Any) -> Any:
    """Instantiate a config model, re-raising pydantic errors as ValidationError."""
    try:
        return model(**{k: v for k, v in values.items() if v is not None})
    except PydanticValidationError as e:
        raise ValidationError(f"invalid {model.__name__}: {e}", e) from e
