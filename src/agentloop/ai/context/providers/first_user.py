"""Injectors that share the system-injection message placed before the first user message.

Order of execution is order of content: memory, group identity, plan,
knowledge, then the tool catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, Mapping, Sequence

from ..base import BaseFirstUserContentProvider
from ..prompts import AVAILABLE_TOOLS_DESCRIPTION, escape_xml, xml_block
from ..types import PipelineContext

__all__ = [
    "GTDPlan",
    "GTDPlanInjector",
    "GroupContextInjector",
    "GroupMember",
    "KnowledgeBaseInfo",
    "KnowledgeFile",
    "KnowledgeInjector",
    "ToolDiscoveryMeta",
    "ToolDiscoveryProvider",
    "UserMemoryInjector",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# User memory
# -----------------------------------------------------------------------------


class UserMemoryInjector(BaseFirstUserContentProvider):
    """Injects remembered facts about the user, grouped by memory layer."""

    name: ClassVar[str] = "UserMemoryInjector"
    inject_type: ClassVar[str] = "user-memory"

    def __init__(self, memories: Mapping[str, Sequence[str]]) -> None:
        self._memories = {layer: tuple(items) for layer, items in memories.items() if items}

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._memories:
            return None
        sections = []
        for layer, items in self._memories.items():
            lines = [f"    <memory>{escape_xml(item)}</memory>" for item in items]
            sections.append(f"  <{layer}>\n" + "\n".join(lines) + f"\n  </{layer}>")
        return xml_block("user_memory", sections)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        count = sum(len(items) for items in self._memories.values())
        return context.with_metadata(userMemoryInjected=True, userMemoryCount=count)


# -----------------------------------------------------------------------------
# Group identity
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GroupMember:
    id: str
    name: str
    role: str = "participant"


class GroupContextInjector(BaseFirstUserContentProvider):
    """Tells the current agent who it is inside a multi-agent group."""

    name: ClassVar[str] = "GroupContextInjector"
    inject_type: ClassVar[str] = "group-context"

    def __init__(
        self,
        *,
        enabled: bool = False,
        current_agent_id: str | None = None,
        current_agent_name: str | None = None,
        current_agent_role: str | None = None,
        group_title: str | None = None,
        members: Sequence[GroupMember] = (),
        system_prompt: str | None = None,
    ) -> None:
        self._enabled = enabled
        self._agent_id = current_agent_id
        self._agent_name = current_agent_name
        self._agent_role = current_agent_role
        self._group_title = group_title
        self._members = tuple(members)
        self._system_prompt = system_prompt

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._enabled:
            return None
        lines = []
        if self._agent_id or self._agent_name:
            lines.append(
                f'  <identity id="{escape_xml(self._agent_id or "")}" name="{escape_xml(self._agent_name or "")}"'
                f' role="{escape_xml(self._agent_role or "participant")}" />'
            )
        if self._group_title:
            lines.append(f"  <group_title>{escape_xml(self._group_title)}</group_title>")
        if self._system_prompt:
            lines.append(f"  <group_instruction>{escape_xml(self._system_prompt)}</group_instruction>")
        if self._members:
            member_lines = [
                f'    <member id="{escape_xml(m.id)}" name="{escape_xml(m.name)}" role="{escape_xml(m.role)}" />'
                for m in self._members
            ]
            lines.append("  <members>\n" + "\n".join(member_lines) + "\n  </members>")
        if not lines:
            return None
        return xml_block("group_context", lines)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(groupContextInjected=True)


# -----------------------------------------------------------------------------
# GTD plan
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GTDPlan:
    goal: str
    description: str = ""
    context: str = ""


class GTDPlanInjector(BaseFirstUserContentProvider):
    """Injects the active plan so the model keeps working toward it."""

    name: ClassVar[str] = "GTDPlanInjector"
    inject_type: ClassVar[str] = "gtd-plan"

    def __init__(self, *, plan: GTDPlan | None, enabled: bool = True) -> None:
        self._plan = plan
        self._enabled = enabled

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._enabled or self._plan is None or not self._plan.goal:
            return None
        lines = [f"  <goal>{escape_xml(self._plan.goal)}</goal>"]
        if self._plan.description:
            lines.append(f"  <description>{escape_xml(self._plan.description)}</description>")
        if self._plan.context:
            lines.append(f"  <context>{escape_xml(self._plan.context)}</context>")
        return xml_block("plan", lines)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(gtdPlanInjected=True)


# -----------------------------------------------------------------------------
# Knowledge
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class KnowledgeFile:
    content: str
    name: str = ""
    file_id: str = ""


@dataclass(slots=True, frozen=True)
class KnowledgeBaseInfo:
    id: str
    name: str
    description: str = ""


class KnowledgeInjector(BaseFirstUserContentProvider):
    """Injects full agent file contents and knowledge-base descriptions."""

    name: ClassVar[str] = "KnowledgeInjector"
    inject_type: ClassVar[str] = "knowledge"

    def __init__(
        self,
        *,
        file_contents: Sequence[KnowledgeFile | str] = (),
        knowledge_bases: Sequence[KnowledgeBaseInfo] = (),
    ) -> None:
        self._files = tuple(
            item if isinstance(item, KnowledgeFile) else KnowledgeFile(content=str(item))
            for item in file_contents
        )
        self._bases = tuple(knowledge_bases)

    def build_content(self, context: PipelineContext) -> str | None:
        files = [item for item in self._files if item.content]
        if not files and not self._bases:
            return None
        sections = []
        if files:
            file_lines = []
            for index, item in enumerate(files, start=1):
                label = escape_xml(item.name or f"file-{index}")
                file_lines.append(f'    <file name="{label}">\n{item.content}\n    </file>')
            sections.append("  <files>\n" + "\n".join(file_lines) + "\n  </files>")
        if self._bases:
            base_lines = [
                f'    <knowledge_base id="{escape_xml(kb.id)}" name="{escape_xml(kb.name)}">'
                f"{escape_xml(kb.description)}</knowledge_base>"
                for kb in self._bases
            ]
            sections.append("  <knowledge_bases>\n" + "\n".join(base_lines) + "\n  </knowledge_bases>")
        return xml_block("agent_knowledge", sections)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(
            knowledgeInjected=True,
            knowledgeCounts={"files": len(self._files), "knowledgeBases": len(self._bases)},
        )


# -----------------------------------------------------------------------------
# Tool discovery
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolDiscoveryMeta:
    identifier: str
    name: str
    description: str = ""


class ToolDiscoveryProvider(BaseFirstUserContentProvider):
    """Lists installed-but-inactive tools the model may activate."""

    name: ClassVar[str] = "ToolDiscoveryProvider"
    inject_type: ClassVar[str] = "tool-discovery"

    def __init__(self, available_tools: Sequence[ToolDiscoveryMeta] = ()) -> None:
        self._tools = tuple(available_tools)

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._tools:
            return None
        lines = [
            f'  <tool identifier="{escape_xml(tool.identifier)}" name="{escape_xml(tool.name)}">'
            f"{escape_xml(tool.description)}</tool>"
            for tool in self._tools
        ]
        return xml_block("available_tools", lines, description=AVAILABLE_TOOLS_DESCRIPTION)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(toolDiscoveryContext={"injected": True, "toolsCount": len(self._tools)})
