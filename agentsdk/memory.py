"""In-process conversation memory, partitioned by conversation id."""

from __future__ import annotations

from collections import defaultdict, deque

from .context import CallContext
from .types import Message

DEFAULT_CONVERSATION = "default"


class ConversationMemory:
    """
    Default Memory capability.

    Keeps an append-only buffer per conversation id, optionally capped at
    ``max_messages`` (oldest dropped first).
    """

    def __init__(self, max_messages: int | None = None) -> None:
        self.max_messages = max_messages
        self._buffers: dict[str, deque[Message]] = defaultdict(
            lambda: deque(maxlen=max_messages)
        )

    @staticmethod
    def _key(ctx: CallContext) -> str:
        return ctx.conversation_id or DEFAULT_CONVERSATION

    async def add_message(self, message: Message, ctx: CallContext) -> None:
        self._buffers[self._key(ctx)].append(message)

    async def get_messages(self, ctx: CallContext) -> list[Message]:
        return list(self._buffers.get(self._key(ctx), ()))

    async def clear(self, ctx: CallContext | None = None) -> None:
        if ctx is None:
            self._buffers.clear()
        else:
            self._buffers.pop(self._key(ctx), None)
