"""Error taxonomy shared by the context engine, tools, and run loop.

Every error carries a machine-readable code and serializes to the payload
stored on an assistant message when a run fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes recorded on messages and events."""

    # Configuration errors
    MISSING_MODEL = "missing_model"
    INVALID_CONFIGURATION = "invalid_configuration"

    # Provider errors
    PROVIDER_ERROR = "provider_error"
    PROVIDER_STREAM_ERROR = "provider_stream_error"

    # Operation errors
    OPERATION_NOT_FOUND = "operation_not_found"
    OPERATION_CANCELLED = "operation_cancelled"

    # Tool errors
    TOOL_NOT_FOUND = "tool_not_found"
    DUPLICATE_TOOL = "duplicate_tool"
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    INVALID_ARGUMENTS = "invalid_arguments"
    TIMEOUT = "timeout"

    # Runtime errors
    RUNTIME_ERROR = "runtime_error"
    UNKNOWN_INSTRUCTION = "unknown_instruction"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class AgentLoopError(Exception):
    """Base exception for every failure raised by this package.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable description.
        details: Additional structured information.
    """

    error_code: str = field(default=ErrorCode.RUNTIME_ERROR)
    message: str = field(default="Agent runtime execution failed")
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the payload attached to a failed message."""
        result: dict[str, Any] = {
            "type": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Configuration / Provider Errors
# -----------------------------------------------------------------------------

@dataclass
class ConfigurationError(AgentLoopError):
    """Raised before any step runs when the agent configuration is unusable."""

    error_code: str = field(default=ErrorCode.INVALID_CONFIGURATION)
    message: str = field(default="Agent configuration is incomplete")
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "fatal"


@dataclass
class ProviderError(AgentLoopError):
    """Raised or reported when the model provider call fails."""

    error_code: str = field(default=ErrorCode.PROVIDER_ERROR)
    message: str = field(default="Model provider request failed")
    details: dict[str, Any] = field(default_factory=dict)

    provider: str | None = field(default=None)
    status_code: int | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.provider:
            result["provider"] = self.provider
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


# -----------------------------------------------------------------------------
# Operation Errors
# -----------------------------------------------------------------------------

@dataclass
class OperationNotFoundError(AgentLoopError):
    """Raised when an operation id is not present in the registry."""

    error_code: str = field(default=ErrorCode.OPERATION_NOT_FOUND)
    message: str = field(default="Operation not found")
    details: dict[str, Any] = field(default_factory=dict)

    operation_id: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.operation_id is not None:
            result["operation_id"] = self.operation_id
        return result


# -----------------------------------------------------------------------------
# Tool Errors
# -----------------------------------------------------------------------------

@dataclass
class ToolNotFoundError(AgentLoopError):
    """Raised when a tool lookup fails."""

    error_code: str = field(default=ErrorCode.TOOL_NOT_FOUND)
    message: str = field(default="Tool not found")
    details: dict[str, Any] = field(default_factory=dict)

    tool_name: str | None = field(default=None)


@dataclass
class DuplicateToolError(AgentLoopError):
    """Raised when registering a tool name that already exists."""

    error_code: str = field(default=ErrorCode.DUPLICATE_TOOL)
    message: str = field(default="Tool is already registered")
    details: dict[str, Any] = field(default_factory=dict)

    tool_name: str | None = field(default=None)


@dataclass
class ToolExecutionError(AgentLoopError):
    """Raised by a tool handler; captured into a failed tool result."""

    error_code: str = field(default=ErrorCode.TOOL_EXECUTION_FAILED)
    message: str = field(default="Tool execution failed")
    details: dict[str, Any] = field(default_factory=dict)

    tool_name: str | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.tool_name:
            result["tool_name"] = self.tool_name
        return result


__all__ = [
    "AgentLoopError",
    "ConfigurationError",
    "DuplicateToolError",
    "ErrorCode",
    "OperationNotFoundError",
    "ProviderError",
    "ToolExecutionError",
    "ToolNotFoundError",
]
