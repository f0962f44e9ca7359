"""agentsdk: bounded tool loops, streaming, plan approval and sub-agent delegation."""

from .agent import (
    Agent,
    AgentEventStream,
    AgentTool,
    ExecutionPlan,
    ExecutionStep,
    PlanStatus,
    ToolCallingLoop,
    format_execution_plan,
)
from .config import AgentConfig, LLMConfig, RemoteAgentConfig, StreamConfig
from .context import CallContext, RecursionContext
from .engines import BaseEngine, ScriptedEngine
from .errors import (
    AgentSDKError,
    DeadlineExceededError,
    EngineError,
    GuardrailError,
    PlanNotFoundError,
    PlanParseError,
    PlanStateError,
    RecursionLimitError,
    RemoteAgentError,
    RunCancelledError,
    ToolError,
    TransportError,
    ValidationError,
)
from .guardrails import GuardrailChain, KeywordGuardrail
from .memory import ConversationMemory
from .remote import AgentServer, RemoteAgentClient
from .structured import ResponseFormat
from .tools import ToolRegistry, define_tool
from .types import AgentEventType, AgentStreamEvent, ToolCall

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentEventStream",
    "AgentTool",
    "ExecutionPlan",
    "ExecutionStep",
    "PlanStatus",
    "ToolCallingLoop",
    "format_execution_plan",
    "AgentConfig",
    "LLMConfig",
    "RemoteAgentConfig",
    "StreamConfig",
    "CallContext",
    "RecursionContext",
    "BaseEngine",
    "ScriptedEngine",
    "AgentSDKError",
    "DeadlineExceededError",
    "EngineError",
    "GuardrailError",
    "PlanNotFoundError",
    "PlanParseError",
    "PlanStateError",
    "RecursionLimitError",
    "RemoteAgentError",
    "RunCancelledError",
    "ToolError",
    "TransportError",
    "ValidationError",
    "GuardrailChain",
    "KeywordGuardrail",
    "ConversationMemory",
    "AgentServer",
    "RemoteAgentClient",
    "ResponseFormat",
    "ToolRegistry",
    "define_tool",
    "AgentEventType",
    "AgentStreamEvent",
    "ToolCall",
]
