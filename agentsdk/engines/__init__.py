"""Reasoning engines."""

from .base import BaseEngine, CircuitBreakerConfig, RetryConfig
from .scripted import ScriptedEngine, text_events, tool_call, tool_response

__all__ = [
    "BaseEngine",
    "RetryConfig",
    "CircuitBreakerConfig",
    "ScriptedEngine",
    "tool_call",
    "tool_response",
    "text_events",
]
