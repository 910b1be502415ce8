"""Tool manifests, registry and executor."""

from .executor import ExecutorConfig, ToolExecutor, ToolExecutorProtocol
from .registry import ToolRegistration, ToolRegistry
from .types import (
    CANCELLED_TOOL_CONTENT,
    HumanIntervention,
    SimpleTool,
    Tool,
    ToolApi,
    ToolManifest,
    ToolResult,
    format_tool_result_content,
    parse_tool_arguments,
)

__all__ = [
    "CANCELLED_TOOL_CONTENT",
    "ExecutorConfig",
    "HumanIntervention",
    "SimpleTool",
    "Tool",
    "ToolApi",
    "ToolExecutor",
    "ToolExecutorProtocol",
    "ToolManifest",
    "ToolRegistration",
    "ToolRegistry",
    "ToolResult",
    "format_tool_result_content",
    "parse_tool_arguments",
]
