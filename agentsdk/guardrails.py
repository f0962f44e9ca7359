"""Guardrails applied to agent input and output."""

from __future__ import annotations

import re
from collections.abc import Iterable

from .context import CallContext
from .errors import GuardrailError
from .infra.logging import get_logger
from .types import Guardrail

logger = get_logger(__name__)


class GuardrailChain:
    """Runs guardrails in registration order; each sees the previous one's output."""

    def __init__(self, guardrails: Iterable[Guardrail] = ()) -> None:
        self._guardrails: list[Guardrail] = list(guardrails)

    def use(self, guardrail: Guardrail) -> None:
        self._guardrails.append(guardrail)

    def __len__(self) -> int:
        return len(self._guardrails)

    async def process_input(self, text: str, ctx: CallContext) -> str:
        for g in self._guardrails:
            text = await self._apply(g, "input", text, ctx)
        return text

    async def process_output(self, text: str, ctx: CallContext) -> str:
        for g in self._guardrails:
            text = await self._apply(g, "output", text, ctx)
        return text

    @staticmethod
    async def _apply(g: Guardrail, stage: str, text: str, ctx: CallContext) -> str:
        try:
            if stage == "input":
                return await g.process_input(text, ctx)
            return await g.process_output(text, ctx)
        except GuardrailError:
            raise
        except Exception as e:
            logger.warning("guardrail_failed", guardrail=g.name, stage=stage, error=str(e))
            raise GuardrailError(g.name, f"guardrail {g.name} failed on {stage}: {e}", e) from e


class KeywordGuardrail:
    """Blocks or redacts configured keywords (case-insensitive, whole words)."""

    def __init__(
        self,
        keywords: Iterable[str],
        *,
        name: str = "keyword",
        block: bool = False,
        replacement: str = "[REDACTED]",
    ) -> None:
        words = [re.escape(k) for k in keywords if k]
        self.name = name
        self.block = block
        self.replacement = replacement
        self._pattern = re.compile(r"\b(" + "|".join(words) + r")\b", re.I) if words else None

    def _check(self, text: str) -> str:
        if self._pattern is None or not self._pattern.search(text):
            return text
        if self.block:
            raise GuardrailError(self.name, "content rejected by guardrail")
        return self._pattern.sub(self.replacement, text)

    async def process_input(self, text: str, ctx: CallContext) -> str:
        return self._check(text)

    async def process_output(self, text: str, ctx: CallContext) -> str:
        return self._check(text)
