"""Providers that write into the system message."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, replace
from typing import Callable, ClassVar, Sequence

from ...tools.types import ToolManifest
from ..base import BaseProcessor, BaseSystemRoleProvider
from ..prompts import HISTORY_SUMMARY_DOCSTRING, escape_xml, xml_block
from ..types import CapabilityCheck, Message, PipelineContext, Role, append_text

__all__ = [
    "EvalContext",
    "EvalContextSystemInjector",
    "HistorySummaryProvider",
    "SkillContextProvider",
    "SkillMeta",
    "SystemDateProvider",
    "SystemRoleInjector",
    "ToolSystemRoleProvider",
]

LOGGER = logging.getLogger(__name__)


class SystemRoleInjector(BaseSystemRoleProvider):
    """Puts the agent's system role into the system message."""

    name: ClassVar[str] = "SystemRoleInjector"

    def __init__(self, system_role: str | None = None) -> None:
        self._system_role = (system_role or "").strip()

    def build_system_role_content(self, context: PipelineContext) -> str | None:
        return self._system_role or None

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(systemRoleInjected=True)


@dataclass(slots=True, frozen=True)
class EvalContext:
    env_prompt: str = ""


class EvalContextSystemInjector(BaseSystemRoleProvider):
    """Appends the evaluation environment prompt to the system message."""

    name: ClassVar[str] = "EvalContextSystemInjector"

    def __init__(self, *, enabled: bool = False, eval_context: EvalContext | None = None) -> None:
        self._enabled = enabled
        self._eval_context = eval_context

    def build_system_role_content(self, context: PipelineContext) -> str | None:
        if not self._enabled or self._eval_context is None:
            return None
        return self._eval_context.env_prompt.strip() or None

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(evalContextInjected=True)


class SystemDateProvider(BaseProcessor):
    """Appends ``Current date: YYYY-MM-DD`` to the first system message.

    The only stage whose output depends on the clock; ``today`` is injectable.
    """

    name: ClassVar[str] = "SystemDateProvider"

    def __init__(self, *, enabled: bool = True, today: Callable[[], dt.date] | None = None) -> None:
        self._enabled = enabled
        self._today = today or dt.date.today

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        date_content = f"Current date: {self._today().isoformat()}"
        messages = list(context.messages)
        for index, message in enumerate(messages):
            if message.role == Role.SYSTEM:
                messages[index] = replace(message, content=append_text(message.content, date_content))
                break
        else:
            messages.insert(0, Message.system(date_content, id="system-date"))
        LOGGER.debug("System date injected: %s", date_content)
        return context.with_messages(messages).with_metadata(systemDateInjected=True)


@dataclass(slots=True, frozen=True)
class SkillMeta:
    identifier: str
    name: str
    description: str = ""


class SkillContextProvider(BaseSystemRoleProvider):
    """Lists enabled skills so the model knows it can load them."""

    name: ClassVar[str] = "SkillContextProvider"

    def __init__(self, enabled_skills: Sequence[SkillMeta]) -> None:
        self._skills = tuple(enabled_skills)

    def build_system_role_content(self, context: PipelineContext) -> str | None:
        if not self._skills:
            return None
        lines = [
            f'  <skill identifier="{escape_xml(skill.identifier)}" name="{escape_xml(skill.name)}">'
            f"{escape_xml(skill.description)}</skill>"
            for skill in self._skills
        ]
        return xml_block("available_skills", lines)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(skillContext={"injected": True, "skillsCount": len(self._skills)})


class ToolSystemRoleProvider(BaseSystemRoleProvider):
    """Adds each enabled tool's system-role snippet and API list."""

    name: ClassVar[str] = "ToolSystemRoleProvider"

    def __init__(
        self,
        *,
        manifests: Sequence[ToolManifest],
        model: str,
        provider: str,
        is_can_use_fc: CapabilityCheck | None = None,
    ) -> None:
        self._manifests = tuple(manifests)
        self._model = model
        self._provider = provider
        self._is_can_use_fc = is_can_use_fc or (lambda _model, _provider: True)

    def build_system_role_content(self, context: PipelineContext) -> str | None:
        if not self._manifests:
            return None
        if not self._is_can_use_fc(self._model, self._provider):
            LOGGER.debug("Model %s/%s cannot call functions; skipping tool system role", self._provider, self._model)
            return None
        blocks = []
        for manifest in self._manifests:
            lines = [f'  <collection name="{escape_xml(manifest.title)}">']
            if manifest.system_role.strip():
                lines.append(f"    {manifest.system_role.strip()}")
            lines.extend(
                f'    <api identifier="{escape_xml(api.name)}">{escape_xml(api.description)}</api>'
                for api in manifest.api
            )
            lines.append("  </collection>")
            blocks.append("\n".join(lines))
        return xml_block("plugins", blocks, description="The plugins you can use below")

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(toolSystemRole={"injected": True, "toolsCount": len(self._manifests)})


class HistorySummaryProvider(BaseSystemRoleProvider):
    """Adds the compressed history summary to the system message."""

    name: ClassVar[str] = "HistorySummaryProvider"

    def __init__(
        self,
        *,
        history_summary: str | None = None,
        format_history_summary: Callable[[str], str] | None = None,
    ) -> None:
        self._summary = (history_summary or "").strip()
        self._format = format_history_summary or _default_history_summary

    def build_system_role_content(self, context: PipelineContext) -> str | None:
        if not self._summary:
            return None
        return self._format(self._summary)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(historySummaryInjected=True)


def _default_history_summary(summary: str) -> str:
    return xml_block(
        "chat_history_summary",
        [f"<docstring>{HISTORY_SUMMARY_DOCSTRING}</docstring>", f"<summary>{summary}</summary>"],
    )
