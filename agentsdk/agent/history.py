"""Repeated tool-call detection within one run."""

from __future__ import annotations

import json
from collections import Counter

from ..infra.logging import get_logger

logger = get_logger(__name__)

WARN_AFTER = 2

LOOP_WARNING = (
    "\n\n[WARNING: This is call #{count} to {tool} with identical parameters. "
    "You may be in a loop. Consider using the available information to provide a final answer.]"
)


def canonical_arguments(arguments: str) -> str:
    """Re-encode JSON arguments with sorted keys so equivalent calls compare equal."""
    try:
        value = json.loads(arguments) if arguments and arguments.strip() else {}
    except json.JSONDecodeError:
        return arguments
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class ToolCallHistory:
    """Counts identical (tool, arguments) pairs across every round of a run."""

    def __init__(self, warn_after: int = WARN_AFTER) -> None:
        self.warn_after = warn_after
        self._counts: Counter[str] = Counter()

    @staticmethod
    def key(name: str, arguments: str) -> str:
        return f"{name}:{canonical_arguments(arguments)}"

    def record(self, name: str, arguments: str) -> int:
        """Record one call and return how many times it has now been seen."""
        k = self.key(name, arguments)
        self._counts[k] += 1
        return self._counts[k]

    def count(self, name: str, arguments: str) -> int:
        return self._counts[self.key(name, arguments)]

    def annotate(self, name: str, count: int, result: str) -> str:
        if count <= self.warn_after:
            return result
        logger.warning("repetitive_tool_call", tool=name, count=count)
        return result + LOOP_WARNING.format(count=count, tool=name)
