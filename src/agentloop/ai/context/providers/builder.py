"""Agent-configuration context, inserted as standalone messages before the first user turn."""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from ..base import BaseProcessor, insert_before_first_user
from ..prompts import escape_xml, xml_block
from ..types import Message, PipelineContext

__all__ = [
    "AgentBuilderContext",
    "AgentBuilderContextInjector",
    "AgentManagementContext",
    "AgentManagementContextInjector",
    "AvailableModel",
    "AvailablePlugin",
    "AvailableProvider",
    "GroupAgentBuilderContext",
    "GroupAgentBuilderContextInjector",
]

LOGGER = logging.getLogger(__name__)


class _StandaloneContextInjector(BaseProcessor):
    """Inserts its own system-injection user message ahead of the first user message."""

    inject_type: ClassVar[str] = "context"
    metadata_flag: ClassVar[str] = "contextInjected"

    def __init__(self, *, enabled: bool) -> None:
        self._enabled = enabled

    @abstractmethod
    def format_context(self) -> str:
        ...

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        content = self.format_context()
        if not content:
            LOGGER.debug("%s: nothing to inject", self.name)
            return context
        message = Message.user(
            content,
            id=f"{self.inject_type}-context",
            metadata={"systemInjection": True, "injectType": self.inject_type},
        )
        updated = insert_before_first_user(context, message)
        if updated is None:
            LOGGER.debug("%s: no user message, skipping injection", self.name)
            return context
        return updated.with_metadata(**{self.metadata_flag: True})


# -----------------------------------------------------------------------------
# Agent builder
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AgentBuilderContext:
    """Current configuration of the agent being edited."""

    title: str = ""
    description: str = ""
    model: str = ""
    provider: str = ""
    system_role: str = ""
    plugins: tuple[str, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict)


class AgentBuilderContextInjector(_StandaloneContextInjector):
    name: ClassVar[str] = "AgentBuilderContextInjector"
    inject_type: ClassVar[str] = "agent-builder"
    metadata_flag: ClassVar[str] = "agentBuilderContextInjected"

    def __init__(self, *, enabled: bool = False, agent_context: AgentBuilderContext | None = None) -> None:
        super().__init__(enabled=enabled and agent_context is not None)
        self._agent = agent_context

    def format_context(self) -> str:
        agent = self._agent
        if agent is None:
            return ""
        lines = []
        meta_attrs = [("title", agent.title), ("description", agent.description)]
        meta = " ".join(f'{key}="{escape_xml(value)}"' for key, value in meta_attrs if value)
        if meta:
            lines.append(f"  <meta {meta} />")
        if agent.model:
            lines.append(f'  <model id="{escape_xml(agent.model)}" provider="{escape_xml(agent.provider)}" />')
        if agent.system_role:
            lines.append(f"  <system_role>{escape_xml(agent.system_role)}</system_role>")
        if agent.plugins:
            plugin_lines = [f"    <plugin>{escape_xml(plugin)}</plugin>" for plugin in agent.plugins]
            lines.append("  <plugins>\n" + "\n".join(plugin_lines) + "\n  </plugins>")
        for key, value in sorted(agent.extra.items()):
            lines.append(f'  <config key="{escape_xml(key)}">{escape_xml(value)}</config>')
        if not lines:
            return ""
        return xml_block("current_agent_config", lines)


# -----------------------------------------------------------------------------
# Agent management
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AvailableModel:
    id: str
    name: str
    description: str = ""
    abilities: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class AvailableProvider:
    id: str
    name: str
    models: tuple[AvailableModel, ...] = ()


@dataclass(slots=True, frozen=True)
class AvailablePlugin:
    identifier: str
    name: str
    description: str = ""
    type: str = "builtin"


@dataclass(slots=True, frozen=True)
class AgentManagementContext:
    available_providers: tuple[AvailableProvider, ...] = ()
    available_plugins: tuple[AvailablePlugin, ...] = ()


_MANAGEMENT_INSTRUCTION = (
    "When creating or updating agents using the Agent Management tools, you can select from these "
    "available models and plugins. Use the exact IDs from this context when specifying "
    "model/provider/plugins parameters."
)


class AgentManagementContextInjector(_StandaloneContextInjector):
    """Lists models and plugins available when creating or updating agents."""

    name: ClassVar[str] = "AgentManagementContextInjector"
    inject_type: ClassVar[str] = "agent-management"
    metadata_flag: ClassVar[str] = "agentManagementContextInjected"

    def __init__(self, *, enabled: bool = False, context: AgentManagementContext | None = None) -> None:
        super().__init__(enabled=enabled and context is not None)
        self._context = context

    def format_context(self) -> str:
        ctx = self._context
        if ctx is None:
            return ""
        parts = []
        if ctx.available_providers:
            provider_blocks = []
            for provider in ctx.available_providers:
                model_lines = []
                for model in provider.models:
                    attrs = [f'id="{escape_xml(model.id)}"', *(f'{ability}="true"' for ability in model.abilities)]
                    desc = f" - {escape_xml(model.description)}" if model.description else ""
                    model_lines.append(f"      <model {' '.join(attrs)}>{escape_xml(model.name)}{desc}</model>")
                provider_blocks.append(
                    f'    <provider id="{escape_xml(provider.id)}" name="{escape_xml(provider.name)}">\n'
                    + "\n".join(model_lines)
                    + "\n    </provider>"
                )
            parts.append(xml_block("available_models", provider_blocks))
        if ctx.available_plugins:
            sections = []
            for plugin_type in sorted({plugin.type for plugin in ctx.available_plugins}):
                items = [
                    f'    <plugin id="{escape_xml(p.identifier)}">{escape_xml(p.name)}'
                    f"{' - ' + escape_xml(p.description) if p.description else ''}</plugin>"
                    for p in ctx.available_plugins
                    if p.type == plugin_type
                ]
                tag = f"{plugin_type.replace('-', '_')}_plugins"
                sections.append(f"  <{tag}>\n" + "\n".join(items) + f"\n  </{tag}>")
            parts.append(xml_block("available_plugins", sections))
        if not parts:
            return ""
        return xml_block("agent_management_context", [f"<instruction>{_MANAGEMENT_INSTRUCTION}</instruction>", *parts])


# -----------------------------------------------------------------------------
# Group agent builder
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class GroupAgentBuilderContext:
    """Current configuration of the group being edited."""

    group_id: str = ""
    title: str = ""
    supervisor_prompt: str = ""
    members: tuple[Mapping[str, str], ...] = ()


class GroupAgentBuilderContextInjector(_StandaloneContextInjector):
    name: ClassVar[str] = "GroupAgentBuilderContextInjector"
    inject_type: ClassVar[str] = "group-agent-builder"
    metadata_flag: ClassVar[str] = "groupAgentBuilderContextInjected"

    def __init__(self, *, enabled: bool = False, group_context: GroupAgentBuilderContext | None = None) -> None:
        super().__init__(enabled=enabled and group_context is not None)
        self._group = group_context

    def format_context(self) -> str:
        group = self._group
        if group is None:
            return ""
        lines = []
        if group.group_id or group.title:
            lines.append(f'  <group id="{escape_xml(group.group_id)}" title="{escape_xml(group.title)}" />')
        if group.supervisor_prompt:
            lines.append(f"  <supervisor_prompt>{escape_xml(group.supervisor_prompt)}</supervisor_prompt>")
        if group.members:
            member_lines = [
                "    <member "
                + " ".join(f'{key}="{escape_xml(value)}"' for key, value in sorted(member.items()))
                + " />"
                for member in group.members
            ]
            lines.append("  <members>\n" + "\n".join(member_lines) + "\n  </members>")
        if not lines:
            return ""
        return xml_block("current_group_config", lines)
