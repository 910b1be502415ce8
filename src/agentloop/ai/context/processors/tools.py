"""Provider tool-call formatting and tool-result ordering."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, ClassVar

from ..base import BaseProcessor
from ..tool_names import ToolNameResolver
from ..types import CapabilityCheck, Message, PipelineContext, Role, ToolCallFunction, ToolCallPayload

__all__ = ["ToolCallProcessor", "ToolMessageReorder"]

LOGGER = logging.getLogger(__name__)

ToolNameGenerator = Callable[[str, str, str], str]


class ToolCallProcessor(BaseProcessor):
    """Converts logged tool invocations into provider ``tool_calls``.

    For models without function calling, invocations are dropped from
    assistant messages and tool results are replayed as user text.
    """

    name: ClassVar[str] = "ToolCallProcessor"

    def __init__(
        self,
        *,
        model: str,
        provider: str,
        gen_tool_calling_name: ToolNameGenerator | None = None,
        is_can_use_fc: CapabilityCheck | None = None,
    ) -> None:
        self._gen_name = gen_tool_calling_name or ToolNameResolver().generate
        self._supports_fc = is_can_use_fc(model, provider) if is_can_use_fc else True

    def _process(self, context: PipelineContext) -> PipelineContext:
        messages = [self._convert(message) for message in context.messages]
        return context.with_messages(messages).with_metadata(toolCallsSupported=self._supports_fc)

    def _convert(self, message: Message) -> Message:
        if message.role == Role.ASSISTANT and message.tools:
            if not self._supports_fc:
                return replace(message, tools=(), tool_calls=())
            calls = tuple(
                ToolCallPayload(
                    id=tool.id,
                    function=ToolCallFunction(
                        name=self._gen_name(tool.identifier, tool.api_name, tool.type),
                        arguments=tool.arguments or "{}",
                    ),
                )
                for tool in message.tools
            )
            return replace(message, tool_calls=calls)
        if message.role == Role.TOOL:
            if not self._supports_fc:
                return replace(message, role=Role.USER, tool_call_id=None, name=None, content=message.text)
            if message.plugin is not None:
                plugin = message.plugin
                return replace(message, name=self._gen_name(plugin.identifier, plugin.api_name, plugin.type))
        return message


class ToolMessageReorder(BaseProcessor):
    """Places every tool message directly after the assistant call it answers.

    Results follow the order of the assistant's ``tool_calls``; tool messages
    with no originating call are dropped.
    """

    name: ClassVar[str] = "ToolMessageReorder"

    def _process(self, context: PipelineContext) -> PipelineContext:
        pending: dict[str, Message] = {}
        for message in context.messages:
            if message.role == Role.TOOL and message.tool_call_id and message.tool_call_id not in pending:
                pending[message.tool_call_id] = message

        reordered: list[Message] = []
        for message in context.messages:
            if message.role == Role.TOOL:
                continue
            reordered.append(message)
            if message.role != Role.ASSISTANT:
                continue
            call_ids = [call.id for call in message.tool_calls] or [tool.id for tool in message.tools]
            for call_id in call_ids:
                result = pending.pop(call_id, None)
                if result is not None:
                    reordered.append(result)

        if pending:
            LOGGER.debug("Dropping %d orphan tool message(s): %s", len(pending), sorted(pending))
        if tuple(reordered) == context.messages:
            return context
        return context.with_messages(reordered).with_metadata(orphanToolMessagesDropped=len(pending))
