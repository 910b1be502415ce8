"""Context processors: stages that reshape the message list."""

from .cleanup import MessageCleanupProcessor
from .content import FileContextConfig, MessageContentProcessor, ReactionFeedbackProcessor
from .flatten import (
    AgentCouncilFlattenProcessor,
    GroupMessageFlattenProcessor,
    TaskMessageProcessor,
    TasksFlattenProcessor,
)
from .group import (
    ORCHESTRATION_APIS,
    SUPERVISOR_ROLE,
    CompressedGroupRoleTransformProcessor,
    GroupAgentInfo,
    GroupOrchestrationFilterProcessor,
    GroupRoleTransformProcessor,
    SupervisorRoleRestoreProcessor,
)
from .templates import InputTemplateProcessor, PlaceholderVariablesProcessor
from .tools import ToolCallProcessor, ToolMessageReorder

__all__ = [
    "AgentCouncilFlattenProcessor",
    "CompressedGroupRoleTransformProcessor",
    "FileContextConfig",
    "GroupAgentInfo",
    "GroupMessageFlattenProcessor",
    "GroupOrchestrationFilterProcessor",
    "GroupRoleTransformProcessor",
    "InputTemplateProcessor",
    "MessageCleanupProcessor",
    "MessageContentProcessor",
    "ORCHESTRATION_APIS",
    "PlaceholderVariablesProcessor",
    "ReactionFeedbackProcessor",
    "SUPERVISOR_ROLE",
    "SupervisorRoleRestoreProcessor",
    "TaskMessageProcessor",
    "TasksFlattenProcessor",
    "ToolCallProcessor",
    "ToolMessageReorder",
]
