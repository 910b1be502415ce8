"""Flatten synthetic multi-agent roles into standard assistant/tool messages.

These are the only stages allowed to change message count: each synthetic
message expands into its members, which keep their relative order.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, ClassVar, Iterable

from ..base import BaseProcessor
from ..prompts import escape_xml, xml_block
from ..types import Message, PipelineContext, Role

__all__ = [
    "AgentCouncilFlattenProcessor",
    "GroupMessageFlattenProcessor",
    "TaskMessageProcessor",
    "TasksFlattenProcessor",
]

LOGGER = logging.getLogger(__name__)


class _ExpandingProcessor(BaseProcessor):
    """Replaces every message of ``role`` with the messages returned by ``expand``."""

    role: ClassVar[str] = ""
    metadata_key: ClassVar[str] = ""

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not any(message.role == self.role for message in context.messages):
            return context
        messages: list[Message] = []
        expanded = 0
        for message in context.messages:
            if message.role == self.role:
                messages.extend(self.expand(message))
                expanded += 1
            else:
                messages.append(message)
        LOGGER.debug("%s expanded %d message(s)", self.name, expanded)
        return context.with_messages(messages).with_metadata(**{self.metadata_key: expanded})

    def expand(self, message: Message) -> Iterable[Message]:
        raise NotImplementedError


class AgentCouncilFlattenProcessor(_ExpandingProcessor):
    """``agentCouncil`` -> one message per council member, in member order."""

    name: ClassVar[str] = "AgentCouncilFlattenProcessor"
    role: ClassVar[str] = Role.AGENT_COUNCIL
    metadata_key: ClassVar[str] = "agentCouncilFlattened"

    def expand(self, message: Message) -> Iterable[Message]:
        if not message.children:
            return [_as_assistant(message)] if message.content else []
        return [
            replace(member, parent_id=member.parent_id or message.parent_id)
            for member in message.children
        ]


class GroupMessageFlattenProcessor(_ExpandingProcessor):
    """``assistantGroup`` -> assistant message per block followed by its tool results."""

    name: ClassVar[str] = "GroupMessageFlattenProcessor"
    role: ClassVar[str] = Role.ASSISTANT_GROUP
    metadata_key: ClassVar[str] = "assistantGroupFlattened"

    def expand(self, message: Message) -> Iterable[Message]:
        if not message.children:
            return [_as_assistant(message)]
        flattened: list[Message] = []
        for block in message.children:
            agent_id = block.agent_id or message.agent_id
            flattened.append(
                Message(
                    role=Role.ASSISTANT,
                    id=block.id,
                    content=block.content,
                    tools=tuple(tool.without_result() for tool in block.tools),
                    agent_id=agent_id,
                    parent_id=block.parent_id or message.parent_id,
                    created_at=block.created_at or message.created_at,
                    updated_at=block.updated_at or message.updated_at,
                    metadata={**message.metadata, **block.metadata},
                    error=block.error,
                    reactions=block.reactions,
                )
            )
            for tool in block.tools:
                if tool.result is None:
                    continue
                flattened.append(
                    Message(
                        role=Role.TOOL,
                        id=tool.result.id,
                        content=tool.result.content,
                        tool_call_id=tool.id,
                        agent_id=agent_id,
                        plugin=tool.without_result(),
                        plugin_state=tool.result.state,
                        plugin_error=tool.result.error,
                    )
                )
        return flattened


class TasksFlattenProcessor(_ExpandingProcessor):
    """``tasks`` -> its individual ``task`` messages."""

    name: ClassVar[str] = "TasksFlattenProcessor"
    role: ClassVar[str] = Role.TASKS
    metadata_key: ClassVar[str] = "tasksFlattened"

    def expand(self, message: Message) -> Iterable[Message]:
        return list(message.children)


class TaskMessageProcessor(BaseProcessor):
    """``task`` -> assistant message stating the delegated instruction and its result."""

    name: ClassVar[str] = "TaskMessageProcessor"

    def _process(self, context: PipelineContext) -> PipelineContext:
        return _rewrite_role(context, Role.TASK, _task_to_assistant, "taskMessagesProcessed")


def _task_to_assistant(message: Message) -> Message:
    instruction = str(message.metadata.get("instruction") or "").strip()
    title = str(message.metadata.get("taskTitle") or "").strip() or None
    lines = []
    if instruction:
        lines.append(f"<instruction>{escape_xml(instruction)}</instruction>")
    lines.append(f"<result>{message.text}</result>")
    return replace(message, role=Role.ASSISTANT, content=xml_block("task", lines, title=title), children=())


def _as_assistant(message: Message) -> Message:
    return replace(message, role=Role.ASSISTANT, children=())


def _rewrite_role(
    context: PipelineContext,
    role: str,
    rewrite: Callable[[Message], Message],
    metadata_key: str,
) -> PipelineContext:
    """Rewrite every message of ``role`` one-to-one, preserving count and order."""
    count = 0
    messages = []
    for message in context.messages:
        if message.role == role:
            messages.append(rewrite(message))
            count += 1
        else:
            messages.append(message)
    if not count:
        return context
    return context.with_messages(messages).with_metadata(**{metadata_key: count})
