"""Agent orchestration: loop, streaming, plans, delegation."""

from .core import Agent
from .delegation import AgentTool, detect_cycles, tree_depth, validate_agent_tree
from .history import ToolCallHistory
from .loop import FINAL_ROUND_INSTRUCTION, LoopResult, ToolCallingLoop
from .plan import (
    ExecutionPlan,
    ExecutionPlanner,
    ExecutionReport,
    ExecutionStep,
    PlanStatus,
    PlanStatusReport,
    PlanStore,
    format_execution_plan,
    parse_plan,
)
from .streaming import AgentEventStream, StreamTranslator, translate_event

__all__ = [
    "Agent",
    "AgentTool",
    "detect_cycles",
    "tree_depth",
    "validate_agent_tree",
    "ToolCallHistory",
    "FINAL_ROUND_INSTRUCTION",
    "LoopResult",
    "ToolCallingLoop",
    "ExecutionPlan",
    "ExecutionPlanner",
    "ExecutionReport",
    "ExecutionStep",
    "PlanStatus",
    "PlanStatusReport",
    "PlanStore",
    "format_execution_plan",
    "parse_plan",
    "AgentEventStream",
    "StreamTranslator",
    "translate_event",
]
