"""Tool system types.

A tool is addressed by its manifest ``identifier`` plus one of the manifest's
``api`` names. Results are always returned as :class:`ToolResult` values so
that failures can be fed back to the model as ordinary tool messages.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

from ..errors import ToolNotFoundError

__all__ = [
    "AsyncToolHandler",
    "CANCELLED_TOOL_CONTENT",
    "HumanIntervention",
    "SimpleTool",
    "Tool",
    "ToolApi",
    "ToolHandler",
    "ToolManifest",
    "ToolResult",
    "format_tool_result_content",
    "parse_tool_arguments",
]

CANCELLED_TOOL_CONTENT = "Tool call was cancelled."


# -----------------------------------------------------------------------------
# Manifests
# -----------------------------------------------------------------------------


class HumanIntervention:
    """Approval policies a manifest API may declare."""

    NEVER = "never"
    REQUIRED = "required"
    ALWAYS = "always"


@dataclass(slots=True, frozen=True)
class ToolApi:
    """One callable API exposed by a tool manifest.

    Attributes:
        name: API name, unique within its manifest.
        description: Description shown to the model.
        parameters: JSON Schema for the API arguments.
        human_intervention: Approval policy for calls to this API.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    human_intervention: str = HumanIntervention.NEVER


@dataclass(slots=True, frozen=True)
class ToolManifest:
    """Tool catalog entry: identity, APIs and the optional system-role snippet."""

    identifier: str
    api: tuple[ToolApi, ...] = ()
    name: str = ""
    description: str = ""
    system_role: str = ""
    type: str = "default"

    def __post_init__(self) -> None:
        if not isinstance(self.api, tuple):
            object.__setattr__(self, "api", tuple(self.api))

    @property
    def title(self) -> str:
        return self.name or self.identifier

    def get_api(self, api_name: str) -> ToolApi | None:
        for api in self.api:
            if api.name == api_name:
                return api
        return None

    def to_openai_tools(self, gen_name: Callable[[str, str, str], str]) -> list[dict[str, Any]]:
        """Return one OpenAI function definition per API."""
        return [
            {
                "type": "function",
                "function": {
                    "name": gen_name(self.identifier, api.name, self.type),
                    "description": api.description,
                    "parameters": dict(api.parameters) if api.parameters else {
                        "type": "object",
                        "properties": {},
                    },
                },
            }
            for api in self.api
        ]


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Structured outcome of one tool invocation.

    Attributes:
        content: Text fed back to the model.
        success: Whether the tool completed normally.
        state: Optional structured state persisted on the tool message.
        error: Error payload when ``success`` is false.
        duration_ms: Execution time in milliseconds.
    """

    content: str
    success: bool = True
    state: Mapping[str, Any] | None = None
    error: Mapping[str, Any] | None = None
    duration_ms: float = 0.0

    @classmethod
    def from_success(cls, value: Any, *, duration_ms: float = 0.0) -> "ToolResult":
        state: Mapping[str, Any] | None = None
        content_value = value
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, Mapping) and "content" in value and "state" in value:
            content_value = value["content"]
            state = value["state"]
        return cls(
            content=format_tool_result_content(content_value),
            success=True,
            state=state,
            duration_ms=duration_ms,
        )

    @classmethod
    def from_error(
        cls,
        message: str,
        *,
        error_type: str = "tool_execution_failed",
        duration_ms: float = 0.0,
    ) -> "ToolResult":
        return cls(
            content=f"Error: {message}",
            success=False,
            error={"type": error_type, "message": message},
            duration_ms=duration_ms,
        )

    @classmethod
    def cancelled(cls) -> "ToolResult":
        return cls(
            content=CANCELLED_TOOL_CONTENT,
            success=False,
            error={"type": "operation_cancelled", "message": CANCELLED_TOOL_CONTENT},
        )

    @property
    def is_cancelled(self) -> bool:
        return bool(self.error) and self.error.get("type") == "operation_cancelled"


def format_tool_result_content(result: Any) -> str:
    """Format a raw tool return value as message text."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (dict, list, tuple)):
        try:
            return json.dumps(result, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(result)
    if hasattr(result, "to_dict") and callable(result.to_dict):
        try:
            return json.dumps(result.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError):
            pass
    return str(result)


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Parse JSON tool arguments.

    Raises:
        ValueError: If arguments are not a JSON object.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in tool arguments: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


# -----------------------------------------------------------------------------
# Handlers
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]

AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


@runtime_checkable
class Tool(Protocol):
    """Protocol for tool implementations."""

    @property
    def manifest(self) -> ToolManifest:
        ...

    async def execute(self, api_name: str, arguments: Mapping[str, Any]) -> Any:
        """Run ``api_name``; raise to signal failure."""
        ...


@dataclass
class SimpleTool:
    """Tool built from a manifest and one handler per API name.

    Example:
        tool = SimpleTool(
            manifest=ToolManifest(identifier="calc", api=(ToolApi(name="add"),)),
            handlers={"add": lambda args: args["a"] + args["b"]},
        )
    """

    manifest: ToolManifest
    handlers: Mapping[str, ToolHandler | AsyncToolHandler]

    @property
    def identifier(self) -> str:
        return self.manifest.identifier

    async def execute(self, api_name: str, arguments: Mapping[str, Any]) -> Any:
        handler = self.handlers.get(api_name)
        if handler is None:
            raise ToolNotFoundError(
                message=f"Tool '{self.identifier}' has no API '{api_name}'",
                tool_name=f"{self.identifier}.{api_name}",
            )
        result = handler(arguments)
        if asyncio.iscoroutine(result):
            return await result
        return result
