"""Structured error hierarchy for agent orchestration."""

from __future__ import annotations


class AgentSDKError(Exception):
    def __init__(self, code: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.cause = cause

    @classmethod
    def wrap(cls, err: Exception) -> AgentSDKError:
        if isinstance(err, AgentSDKError):
            return err
        return AgentSDKError("UNKNOWN", str(err), err)


class ValidationError(AgentSDKError):
    """Invalid configuration or agent tree, raised at construction."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__("VALIDATION_ERROR", message, cause)


class ToolError(AgentSDKError):
    def __init__(
        self, code: str, tool_name: str, message: str, cause: Exception | None = None
    ) -> None:
        super().__init__(code, message, cause)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    def __init__(self, tool_name: str) -> None:
        super().__init__("TOOL_NOT_FOUND", tool_name, f"tool not found: {tool_name}")


class ToolExecutionError(ToolError):
    def __init__(self, tool_name: str, message: str, cause: Exception | None = None) -> None:
        super().__init__("TOOL_EXECUTION_FAILED", tool_name, message, cause)


class EngineError(AgentSDKError):
    def __init__(
        self,
        engine: str,
        message: str,
        code: str = "ENGINE_ERROR",
        cause: Exception | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(code, message, cause)
        self.engine = engine
        self.attempts = attempts


class PlanError(AgentSDKError):
    pass


class PlanParseError(PlanError):
    def __init__(self, message: str, raw: str = "", cause: Exception | None = None) -> None:
        super().__init__("PLAN_PARSE_ERROR", message, cause)
        self.raw = raw


class PlanNotFoundError(PlanError):
    def __init__(self, task_id: str) -> None:
        super().__init__("PLAN_NOT_FOUND", f"execution plan not found: {task_id}")
        self.task_id = task_id


class PlanStateError(PlanError):
    def __init__(self, task_id: str, current: str, target: str, reason: str = "") -> None:
        message = f"plan {task_id} cannot move from {current} to {target}"
        super().__init__("PLAN_INVALID_TRANSITION", f"{message}: {reason}" if reason else message)
        self.task_id = task_id
        self.current = current
        self.target = target


class RecursionLimitError(AgentSDKError):
    def __init__(self, depth: int, max_depth: int, agent_name: str | None = None) -> None:
        message = f"maximum recursion depth {max_depth} exceeded (depth {depth})"
        if agent_name:
            message += f" while invoking sub-agent {agent_name!r}"
        super().__init__("RECURSION_LIMIT", message)
        self.depth = depth
        self.max_depth = max_depth
        self.agent_name = agent_name


class TransportError(AgentSDKError):
    def __init__(self, message: str, attempts: int = 0, cause: Exception | None = None) -> None:
        super().__init__("TRANSPORT_ERROR", message, cause)
        self.attempts = attempts


class RemoteAgentError(AgentSDKError):
    """The remote peer answered but reported an application error."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__("REMOTE_AGENT_ERROR", f"remote agent error: {message}")
        self.url = url


class GuardrailError(AgentSDKError):
    def __init__(self, guardrail: str, message: str, cause: Exception | None = None) -> None:
        super().__init__("GUARDRAIL_REJECTED", message, cause)
        self.guardrail = guardrail


class RunCancelledError(AgentSDKError):
    def __init__(self) -> None:
        super().__init__("RUN_CANCELLED", "Agent run was cancelled")


class DeadlineExceededError(AgentSDKError):
    def __init__(self, operation: str = "call") -> None:
        super().__init__("DEADLINE_EXCEEDED", f"Deadline exceeded during {operation}")
        self.operation = operation
