"""Context providers: processors that inject content."""

from .builder import (
    AgentBuilderContext,
    AgentBuilderContextInjector,
    AgentManagementContext,
    AgentManagementContextInjector,
    AvailableModel,
    AvailablePlugin,
    AvailableProvider,
    GroupAgentBuilderContext,
    GroupAgentBuilderContextInjector,
)
from .first_user import (
    GTDPlan,
    GTDPlanInjector,
    GroupContextInjector,
    GroupMember,
    KnowledgeBaseInfo,
    KnowledgeFile,
    KnowledgeInjector,
    ToolDiscoveryMeta,
    ToolDiscoveryProvider,
    UserMemoryInjector,
)
from .last_user import (
    ForceFinishSummaryInjector,
    GTDTodoInjector,
    PageContentContext,
    PageEditorContextInjector,
    PageSelectionsInjector,
)
from .system import (
    EvalContext,
    EvalContextSystemInjector,
    HistorySummaryProvider,
    SkillContextProvider,
    SkillMeta,
    SystemDateProvider,
    SystemRoleInjector,
    ToolSystemRoleProvider,
)

__all__ = [
    "AgentBuilderContext",
    "AgentBuilderContextInjector",
    "AgentManagementContext",
    "AgentManagementContextInjector",
    "AvailableModel",
    "AvailablePlugin",
    "AvailableProvider",
    "EvalContext",
    "EvalContextSystemInjector",
    "ForceFinishSummaryInjector",
    "GTDPlan",
    "GTDPlanInjector",
    "GTDTodoInjector",
    "GroupAgentBuilderContext",
    "GroupAgentBuilderContextInjector",
    "GroupContextInjector",
    "GroupMember",
    "HistorySummaryProvider",
    "KnowledgeBaseInfo",
    "KnowledgeFile",
    "KnowledgeInjector",
    "PageContentContext",
    "PageEditorContextInjector",
    "PageSelectionsInjector",
    "SkillContextProvider",
    "SkillMeta",
    "SystemDateProvider",
    "SystemRoleInjector",
    "ToolDiscoveryMeta",
    "ToolDiscoveryProvider",
    "ToolSystemRoleProvider",
    "UserMemoryInjector",
]
