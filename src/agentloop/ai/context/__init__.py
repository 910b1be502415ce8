"""Context assembly: turn a conversation log into provider-ready messages."""

from .types import (
    CapabilityCheck,
    Message,
    MessageFile,
    PipelineContext,
    ProcessorStats,
    Reaction,
    Role,
    StepContext,
    TodoItem,
    ToolCallFunction,
    ToolCallPayload,
    ToolInvocation,
    ToolInvocationResult,
)
from .base import (
    BaseFirstUserContentProvider,
    BaseLastUserContentProvider,
    BaseProcessor,
    BaseSystemRoleProvider,
    ContextProcessor,
)
from .pipeline import ContextPipeline, PipelineResult
from .tool_names import ResolvedToolName, ToolNameResolver
from .assembler import (
    AgentGroupConfig,
    Capabilities,
    GTDConfig,
    InitialContext,
    KnowledgeConfig,
    MessagesEngine,
    MessagesEngineConfig,
    PageEditorState,
    SkillsConfig,
    ToolDiscoveryConfig,
    ToolsConfig,
    UserMemoryConfig,
    build_processors,
    check_processor_order,
)

__all__ = [
    "AgentGroupConfig",
    "BaseFirstUserContentProvider",
    "BaseLastUserContentProvider",
    "BaseProcessor",
    "BaseSystemRoleProvider",
    "CapabilityCheck",
    "Capabilities",
    "ContextPipeline",
    "ContextProcessor",
    "GTDConfig",
    "InitialContext",
    "KnowledgeConfig",
    "Message",
    "MessageFile",
    "MessagesEngine",
    "MessagesEngineConfig",
    "PageEditorState",
    "PipelineContext",
    "PipelineResult",
    "ProcessorStats",
    "Reaction",
    "ResolvedToolName",
    "Role",
    "SkillsConfig",
    "StepContext",
    "TodoItem",
    "ToolCallFunction",
    "ToolCallPayload",
    "ToolDiscoveryConfig",
    "ToolInvocation",
    "ToolInvocationResult",
    "ToolNameResolver",
    "ToolsConfig",
    "UserMemoryConfig",
    "build_processors",
    "check_processor_order",
]
