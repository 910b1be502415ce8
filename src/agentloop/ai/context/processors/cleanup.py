"""Strip everything the provider does not accept."""

from __future__ import annotations

from typing import ClassVar

from ..base import BaseProcessor
from ..types import Message, PipelineContext

__all__ = ["MessageCleanupProcessor"]


class MessageCleanupProcessor(BaseProcessor):
    """Keeps only ``role``, ``content``, ``tool_calls``, ``tool_call_id`` and ``name``.

    Always the last stage. Running it on already-cleaned messages returns
    equal messages.
    """

    name: ClassVar[str] = "MessageCleanupProcessor"

    def _process(self, context: PipelineContext) -> PipelineContext:
        return context.with_messages(_clean(message) for message in context.messages)


def _clean(message: Message) -> Message:
    return Message(
        role=message.role,
        content=message.content if message.content is not None else "",
        tool_calls=message.tool_calls,
        tool_call_id=message.tool_call_id,
        name=message.name,
    )
