"""Pipeline assembly: which processors run for a given request, and in what order.

The order is fixed. Conditional stages are either left out of the list or
constructed disabled, so the same configuration always yields the same
pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..errors import ConfigurationError
from ..tools.types import ToolManifest
from .base import ContextProcessor
from .pipeline import ContextPipeline, PipelineResult
from .processors import (
    SUPERVISOR_ROLE,
    AgentCouncilFlattenProcessor,
    CompressedGroupRoleTransformProcessor,
    FileContextConfig,
    GroupAgentInfo,
    GroupMessageFlattenProcessor,
    GroupOrchestrationFilterProcessor,
    GroupRoleTransformProcessor,
    InputTemplateProcessor,
    MessageCleanupProcessor,
    MessageContentProcessor,
    PlaceholderVariablesProcessor,
    ReactionFeedbackProcessor,
    SupervisorRoleRestoreProcessor,
    TaskMessageProcessor,
    TasksFlattenProcessor,
    ToolCallProcessor,
    ToolMessageReorder,
)
from .providers import (
    AgentBuilderContext,
    AgentBuilderContextInjector,
    AgentManagementContext,
    AgentManagementContextInjector,
    EvalContext,
    EvalContextSystemInjector,
    ForceFinishSummaryInjector,
    GTDPlan,
    GTDPlanInjector,
    GTDTodoInjector,
    GroupAgentBuilderContext,
    GroupAgentBuilderContextInjector,
    GroupContextInjector,
    GroupMember,
    HistorySummaryProvider,
    KnowledgeBaseInfo,
    KnowledgeFile,
    KnowledgeInjector,
    PageContentContext,
    PageEditorContextInjector,
    PageSelectionsInjector,
    SkillContextProvider,
    SkillMeta,
    SystemDateProvider,
    SystemRoleInjector,
    ToolDiscoveryMeta,
    ToolDiscoveryProvider,
    ToolSystemRoleProvider,
    UserMemoryInjector,
)
from .tool_names import ToolNameResolver
from .types import CapabilityCheck, Message, StepContext, TodoItem

__all__ = [
    "AgentGroupConfig",
    "Capabilities",
    "GTDConfig",
    "InitialContext",
    "KnowledgeConfig",
    "MessagesEngine",
    "MessagesEngineConfig",
    "ORDERING_RULES",
    "PageEditorState",
    "SkillsConfig",
    "ToolDiscoveryConfig",
    "ToolsConfig",
    "UserMemoryConfig",
    "build_processors",
    "check_processor_order",
]

LOGGER = logging.getLogger(__name__)

# Tools whose own system prompts already carry the current date.
DATE_AWARE_TOOL_IDS = frozenset({"lobe-web-browsing", "lobe-user-memory"})

# -----------------------------------------------------------------------------
# Ordering rules
# -----------------------------------------------------------------------------

FIRST_USER_INJECTORS = (
    "UserMemoryInjector",
    "GroupContextInjector",
    "GTDPlanInjector",
    "KnowledgeInjector",
    "ToolDiscoveryProvider",
)

SHAPE_TRANSFORMERS = (
    "AgentCouncilFlattenProcessor",
    "GroupMessageFlattenProcessor",
    "TasksFlattenProcessor",
    "TaskMessageProcessor",
    "SupervisorRoleRestoreProcessor",
    "CompressedGroupRoleTransformProcessor",
    "GroupOrchestrationFilterProcessor",
    "GroupRoleTransformProcessor",
    "ToolMessageReorder",
)

ROLE_AND_CONTENT_TRANSFORMS = (
    *SHAPE_TRANSFORMERS[:-1],
    "InputTemplateProcessor",
    "PlaceholderVariablesProcessor",
    "ReactionFeedbackProcessor",
    "MessageContentProcessor",
)

# (must run earlier, must run later) pairs over processor names.
ORDERING_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (FIRST_USER_INJECTORS, SHAPE_TRANSFORMERS),
    (("GroupOrchestrationFilterProcessor",), ("GroupRoleTransformProcessor",)),
    (ROLE_AND_CONTENT_TRANSFORMS, ("ToolCallProcessor",)),
    (("ToolCallProcessor",), ("ToolMessageReorder", "MessageCleanupProcessor")),
)

FINAL_PROCESSOR = "MessageCleanupProcessor"


def check_processor_order(names: Sequence[str]) -> None:
    """Raise :class:`ConfigurationError` when ``names`` breaks an ordering rule.

    Only processors present in ``names`` are compared, so optional stages that
    were left out never trigger a violation.
    """
    position = {name: index for index, name in enumerate(names)}
    for earlier, later in ORDERING_RULES:
        for first in earlier:
            for second in later:
                if first in position and second in position and position[first] > position[second]:
                    raise ConfigurationError(
                        message=f"{first} must run before {second}",
                        details={"order": list(names)},
                    )
    if names and FINAL_PROCESSOR in position and names[-1] != FINAL_PROCESSOR:
        raise ConfigurationError(message=f"{FINAL_PROCESSOR} must be the last processor", details={"order": list(names)})


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class UserMemoryConfig:
    enabled: bool = False
    memories: Mapping[str, Sequence[str]] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class AgentGroupConfig:
    """Group-chat state for the agent that is about to speak."""

    agent_map: Mapping[str, GroupAgentInfo] = field(default_factory=dict)
    current_agent_id: str | None = None
    current_agent_name: str | None = None
    current_agent_role: str | None = None
    members: Sequence[GroupMember] | None = None
    group_title: str | None = None
    system_prompt: str | None = None


@dataclass(slots=True, frozen=True)
class GTDConfig:
    enabled: bool = False
    plan: GTDPlan | None = None
    todos: Sequence[TodoItem] | None = None


@dataclass(slots=True, frozen=True)
class KnowledgeConfig:
    file_contents: Sequence[KnowledgeFile | str] = ()
    knowledge_bases: Sequence[KnowledgeBaseInfo] = ()


@dataclass(slots=True, frozen=True)
class ToolDiscoveryConfig:
    available_tools: Sequence[ToolDiscoveryMeta] = ()


@dataclass(slots=True, frozen=True)
class SkillsConfig:
    enabled_skills: Sequence[SkillMeta] = ()


@dataclass(slots=True, frozen=True)
class ToolsConfig:
    tools: Sequence[str] = ()
    manifests: Sequence[ToolManifest] = ()


@dataclass(slots=True, frozen=True)
class Capabilities:
    is_can_use_fc: CapabilityCheck | None = None
    is_can_use_vision: CapabilityCheck | None = None
    is_can_use_video: CapabilityCheck | None = None


@dataclass(slots=True, frozen=True)
class PageEditorState:
    """Page document as captured when the operation started."""

    markdown: str = ""
    xml: str = ""
    title: str = ""
    char_count: int | None = None
    line_count: int | None = None


@dataclass(slots=True, frozen=True)
class InitialContext:
    """Run-start context that stays fixed across steps."""

    page_editor: PageEditorState | None = None


@dataclass(slots=True, frozen=True)
class MessagesEngineConfig:
    """Everything the assembler needs to decide the pipeline for one request."""

    model: str
    provider: str
    system_role: str | None = None
    eval_context: EvalContext | None = None
    enable_system_date: bool = True
    input_template: str | None = None
    variable_generators: Mapping[str, Callable[[], Any]] = field(default_factory=dict)
    user_memory: UserMemoryConfig | None = None
    agent_group: AgentGroupConfig | None = None
    gtd: GTDConfig | None = None
    knowledge: KnowledgeConfig | None = None
    tool_discovery: ToolDiscoveryConfig | None = None
    agent_builder_context: AgentBuilderContext | None = None
    agent_management_context: AgentManagementContext | None = None
    group_agent_builder_context: GroupAgentBuilderContext | None = None
    skills_config: SkillsConfig | None = None
    tools_config: ToolsConfig | None = None
    history_summary: str | None = None
    format_history_summary: Callable[[str], str] | None = None
    page_content_context: PageContentContext | None = None
    initial_context: InitialContext | None = None
    step_context: StepContext | None = None
    force_finish: bool = False
    capabilities: Capabilities = field(default_factory=Capabilities)
    file_context: FileContextConfig | None = None


# -----------------------------------------------------------------------------
# Assembly
# -----------------------------------------------------------------------------


def _always(_model: str, _provider: str) -> bool:
    return True


def _never(_model: str, _provider: str) -> bool:
    return False


def _resolve_page_context(config: MessagesEngineConfig) -> PageContentContext | None:
    if config.page_content_context is not None:
        return config.page_content_context
    page = config.initial_context.page_editor if config.initial_context else None
    if page is None:
        return None
    step_xml = config.step_context.page_editor_xml if config.step_context else None
    return PageContentContext(
        markdown=page.markdown,
        xml=step_xml or page.xml,
        title=page.title,
        char_count=page.char_count,
        line_count=page.line_count,
    )


def build_processors(config: MessagesEngineConfig) -> list[ContextProcessor]:
    """Return the processors for ``config`` in execution order."""
    group = config.agent_group
    gtd = config.gtd
    memory = config.user_memory
    tools = config.tools_config or ToolsConfig()
    capabilities = config.capabilities
    is_can_use_fc = capabilities.is_can_use_fc or _always

    is_agent_group = bool(group and group.agent_map)
    is_group_context = is_agent_group or bool(group and (group.current_agent_id or group.members))
    page_context = _resolve_page_context(config)
    is_page_editor = page_context is not None
    is_system_date = config.enable_system_date and not DATE_AWARE_TOOL_IDS.intersection(tools.tools)
    available_tools = config.tool_discovery.available_tools if config.tool_discovery else ()
    enabled_skills = config.skills_config.enabled_skills if config.skills_config else ()
    knowledge = config.knowledge or KnowledgeConfig()

    processors: list[ContextProcessor] = [
        SystemRoleInjector(config.system_role),
        EvalContextSystemInjector(
            enabled=bool(config.eval_context and config.eval_context.env_prompt),
            eval_context=config.eval_context,
        ),
        SystemDateProvider(enabled=is_system_date),
    ]

    if memory is not None and memory.enabled and memory.memories:
        processors.append(UserMemoryInjector(memory.memories))
    processors.append(
        GroupContextInjector(
            enabled=is_group_context,
            current_agent_id=group.current_agent_id if group else None,
            current_agent_name=group.current_agent_name if group else None,
            current_agent_role=group.current_agent_role if group else None,
            group_title=group.group_title if group else None,
            members=(group.members or ()) if group else (),
            system_prompt=group.system_prompt if group else None,
        )
    )
    if gtd is not None and gtd.enabled and gtd.plan is not None:
        processors.append(GTDPlanInjector(plan=gtd.plan, enabled=True))
    processors.append(
        KnowledgeInjector(file_contents=knowledge.file_contents, knowledge_bases=knowledge.knowledge_bases)
    )
    if available_tools:
        processors.append(ToolDiscoveryProvider(available_tools))

    processors.extend(
        [
            AgentBuilderContextInjector(
                enabled=config.agent_builder_context is not None,
                agent_context=config.agent_builder_context,
            ),
            AgentManagementContextInjector(
                enabled=config.agent_management_context is not None,
                context=config.agent_management_context,
            ),
            GroupAgentBuilderContextInjector(
                enabled=config.group_agent_builder_context is not None,
                group_context=config.group_agent_builder_context,
            ),
        ]
    )
    if enabled_skills:
        processors.append(SkillContextProvider(enabled_skills))
    if tools.manifests:
        processors.append(
            ToolSystemRoleProvider(
                manifests=tools.manifests,
                model=config.model,
                provider=config.provider,
                is_can_use_fc=is_can_use_fc,
            )
        )
    processors.extend(
        [
            HistorySummaryProvider(
                history_summary=config.history_summary,
                format_history_summary=config.format_history_summary,
            ),
            PageSelectionsInjector(enabled=is_page_editor),
            PageEditorContextInjector(enabled=is_page_editor, page_content_context=page_context),
        ]
    )
    if gtd is not None and gtd.enabled and gtd.todos:
        processors.append(GTDTodoInjector(todos=gtd.todos, enabled=True))

    processors.extend(
        [
            InputTemplateProcessor(input_template=config.input_template),
            PlaceholderVariablesProcessor(variable_generators=config.variable_generators),
            AgentCouncilFlattenProcessor(),
            GroupMessageFlattenProcessor(),
            TasksFlattenProcessor(),
            TaskMessageProcessor(),
            SupervisorRoleRestoreProcessor(),
            CompressedGroupRoleTransformProcessor(),
        ]
    )
    if is_agent_group and group is not None and group.current_agent_id:
        processors.append(
            GroupOrchestrationFilterProcessor(
                agent_map=group.agent_map,
                current_agent_id=group.current_agent_id,
                enabled=group.current_agent_role != SUPERVISOR_ROLE,
            )
        )
        processors.append(
            GroupRoleTransformProcessor(agent_map=group.agent_map, current_agent_id=group.current_agent_id)
        )

    processors.extend(
        [
            ReactionFeedbackProcessor(enabled=True),
            MessageContentProcessor(
                model=config.model,
                provider=config.provider,
                file_context=config.file_context,
                is_can_use_vision=capabilities.is_can_use_vision or _always,
                is_can_use_video=capabilities.is_can_use_video or _never,
            ),
            ToolCallProcessor(
                model=config.model,
                provider=config.provider,
                gen_tool_calling_name=ToolNameResolver().generate,
                is_can_use_fc=is_can_use_fc,
            ),
            ToolMessageReorder(),
            ForceFinishSummaryInjector(enabled=config.force_finish),
            MessageCleanupProcessor(),
        ]
    )

    check_processor_order([processor.name for processor in processors])
    LOGGER.debug("Built context pipeline with %d processors", len(processors))
    return processors


class MessagesEngine:
    """Builds the pipeline for a configuration and runs messages through it."""

    def __init__(self, config: MessagesEngineConfig) -> None:
        self._config = config
        self._pipeline = ContextPipeline(build_processors(config))

    @property
    def config(self) -> MessagesEngineConfig:
        return self._config

    @property
    def pipeline(self) -> ContextPipeline:
        return self._pipeline

    def process(self, messages: Iterable[Message]) -> PipelineResult:
        return self._pipeline.run(messages)

    def process_messages(self, messages: Iterable[Message]) -> list[dict[str, Any]]:
        """Return only the provider-ready message dicts."""
        return self.process(messages).to_chat_params()
