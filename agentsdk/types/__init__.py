"""Core type definitions, re-exported from sub-modules."""

from .messages import (
    Message, SystemMessage, UserMessage, AssistantMessage, ToolMessage, ToolCall,
)
from .tools import Tool, ToolSchema, ToolCallStatus, ToolOutcome
from .events import (
    TokenUsage, StreamEventType, StreamEvent, AgentEventType, ToolCallEvent, AgentStreamEvent,
)
from .engine import GenerateOptions, EngineRequest, EngineResponse, ReasoningEngine
from .capabilities import Memory, Guardrail, MCPServer, MCPToolInfo, MCPCallResult

__all__ = [
    "Message", "SystemMessage", "UserMessage", "AssistantMessage", "ToolMessage", "ToolCall",
    "Tool", "ToolSchema", "ToolCallStatus", "ToolOutcome",
    "TokenUsage", "StreamEventType", "StreamEvent", "AgentEventType", "ToolCallEvent",
    "AgentStreamEvent",
    "GenerateOptions", "EngineRequest", "EngineResponse", "ReasoningEngine",
    "Memory", "Guardrail", "MCPServer", "MCPToolInfo", "MCPCallResult",
]
