"""Group-chat transforms: supervisor restore, orchestration filtering and speaker attribution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Mapping

from ..base import BaseProcessor
from ..prompts import escape_xml, xml_block
from ..types import Message, PipelineContext, Role, ToolInvocation
from .flatten import _rewrite_role

__all__ = [
    "CompressedGroupRoleTransformProcessor",
    "GroupAgentInfo",
    "GroupOrchestrationFilterProcessor",
    "GroupRoleTransformProcessor",
    "ORCHESTRATION_APIS",
    "SUPERVISOR_ROLE",
    "SupervisorRoleRestoreProcessor",
]

LOGGER = logging.getLogger(__name__)

SUPERVISOR_ROLE = "supervisor"

ORCHESTRATION_APIS = frozenset({"broadcast", "speak", "delegate", "executeTask", "executeTasks"})


@dataclass(slots=True, frozen=True)
class GroupAgentInfo:
    """Member of a group chat as seen by the assembler."""

    name: str
    role: str = "participant"


def _agent_info(agent_map: Mapping[str, Any], agent_id: str | None) -> GroupAgentInfo | None:
    if not agent_id:
        return None
    info = agent_map.get(agent_id)
    if info is None or isinstance(info, GroupAgentInfo):
        return info
    return GroupAgentInfo(name=str(info.get("name") or agent_id), role=str(info.get("role") or "participant"))


class SupervisorRoleRestoreProcessor(BaseProcessor):
    """``supervisor`` -> ``assistant``, keeping the supervisor's ``agent_id``."""

    name: ClassVar[str] = "SupervisorRoleRestoreProcessor"

    def _process(self, context: PipelineContext) -> PipelineContext:
        return _rewrite_role(
            context,
            Role.SUPERVISOR,
            lambda message: replace(message, role=Role.ASSISTANT).with_metadata(isSupervisor=True),
            "supervisorRolesRestored",
        )


class CompressedGroupRoleTransformProcessor(BaseProcessor):
    """``compressedGroup`` -> ``user`` message carrying the compressed summary."""

    name: ClassVar[str] = "CompressedGroupRoleTransformProcessor"

    def _process(self, context: PipelineContext) -> PipelineContext:
        return _rewrite_role(context, Role.COMPRESSED_GROUP, _compressed_to_user, "compressedGroupsTransformed")


def _compressed_to_user(message: Message) -> Message:
    return replace(
        message,
        role=Role.USER,
        content=xml_block("compressed_context", [message.text]),
        children=(),
        metadata={**message.metadata, "systemInjection": True, "injectType": "compressed-group"},
    )


class GroupOrchestrationFilterProcessor(BaseProcessor):
    """Hides the supervisor's coordination calls from participant agents.

    Drops orchestration tool invocations on supervisor messages together with
    the tool messages answering them; supervisor messages left with neither
    text nor tools are removed.
    """

    name: ClassVar[str] = "GroupOrchestrationFilterProcessor"

    def __init__(
        self,
        *,
        agent_map: Mapping[str, Any],
        current_agent_id: str | None,
        enabled: bool = True,
        orchestration_apis: frozenset[str] = ORCHESTRATION_APIS,
    ) -> None:
        self._agent_map = agent_map
        self._current_agent_id = current_agent_id
        self._enabled = enabled
        self._apis = orchestration_apis

    def _is_supervisor(self, agent_id: str | None) -> bool:
        info = _agent_info(self._agent_map, agent_id)
        return info is not None and info.role == SUPERVISOR_ROLE

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        removed_calls: set[str] = set()
        messages: list[Message] = []
        for message in context.messages:
            if message.role == Role.ASSISTANT and (
                self._is_supervisor(message.agent_id) or message.metadata.get("isSupervisor")
            ):
                kept = tuple(tool for tool in message.tools if tool.api_name not in self._apis)
                removed_calls.update(tool.id for tool in message.tools if tool.api_name in self._apis)
                if not kept and not message.text.strip():
                    continue
                if len(kept) != len(message.tools):
                    message = replace(message, tools=kept)
            elif message.role == Role.TOOL and (
                message.tool_call_id in removed_calls
                or (message.plugin is not None and message.plugin.id in removed_calls)
            ):
                continue
            messages.append(message)
        if not removed_calls and len(messages) == len(context.messages):
            return context
        LOGGER.debug("Filtered %d orchestration call(s) for agent %s", len(removed_calls), self._current_agent_id)
        return context.with_messages(messages).with_metadata(orchestrationCallsFiltered=len(removed_calls))


class GroupRoleTransformProcessor(BaseProcessor):
    """Presents other agents' turns to the current agent as attributed ``user`` messages."""

    name: ClassVar[str] = "GroupRoleTransformProcessor"

    def __init__(self, *, agent_map: Mapping[str, Any], current_agent_id: str) -> None:
        self._agent_map = agent_map
        self._current_agent_id = current_agent_id

    def _is_other_agent(self, message: Message) -> bool:
        return (
            message.role == Role.ASSISTANT
            and bool(message.agent_id)
            and message.agent_id != self._current_agent_id
        )

    def _process(self, context: PipelineContext) -> PipelineContext:
        folded_call_ids = {
            tool.id for message in context.messages if self._is_other_agent(message) for tool in message.tools
        }
        if not folded_call_ids and not any(self._is_other_agent(message) for message in context.messages):
            return context
        results = {
            message.tool_call_id: message
            for message in context.messages
            if message.role == Role.TOOL and message.tool_call_id in folded_call_ids
        }
        messages: list[Message] = []
        transformed = 0
        for message in context.messages:
            if message.role == Role.TOOL and message.tool_call_id in folded_call_ids:
                continue
            if self._is_other_agent(message):
                messages.append(self._to_speaker(message, results))
                transformed += 1
            else:
                messages.append(message)
        return context.with_messages(messages).with_metadata(groupRoleTransformed=transformed)

    def _to_speaker(self, message: Message, results: Mapping[str | None, Message]) -> Message:
        info = _agent_info(self._agent_map, message.agent_id)
        speaker = info.name if info is not None else str(message.agent_id)
        lines = [message.text] if message.text else []
        for tool in message.tools:
            lines.append(_format_tool(tool, results.get(tool.id)))
        return replace(
            message,
            role=Role.USER,
            content=xml_block("speaker", lines, name=speaker),
            tools=(),
        )


def _format_tool(tool: ToolInvocation, result: Message | None) -> str:
    call = f'<tool_call name="{escape_xml(tool.identifier)}.{escape_xml(tool.api_name)}">{escape_xml(tool.arguments)}</tool_call>'
    if result is None:
        return call
    return f"{call}\n<tool_result>{escape_xml(result.text)}</tool_result>"
