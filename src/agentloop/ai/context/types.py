"""Message and pipeline types for context assembly.

Messages are immutable; processors derive new ones with ``dataclasses.replace``
and return a new :class:`PipelineContext` from every stage.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Sequence

__all__ = [
    "CapabilityCheck",
    "MessageFile",
    "Message",
    "PipelineContext",
    "ProcessorStats",
    "Reaction",
    "Role",
    "StepContext",
    "TodoItem",
    "ToolCallFunction",
    "ToolCallPayload",
    "ToolInvocation",
    "ToolInvocationResult",
    "append_text",
    "content_text",
]


# (model, provider) -> whether the model supports a capability
CapabilityCheck = Callable[[str, str], bool]


class Role:
    """Message roles, including synthetic roles flattened before the model sees them."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    ASSISTANT_GROUP = "assistantGroup"
    AGENT_COUNCIL = "agentCouncil"
    TASKS = "tasks"
    TASK = "task"
    SUPERVISOR = "supervisor"
    COMPRESSED_GROUP = "compressedGroup"

    STANDARD = frozenset({SYSTEM, USER, ASSISTANT, TOOL})


# -----------------------------------------------------------------------------
# Tool payloads
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolInvocationResult:
    """Result attached to a tool invocation inside a grouped assistant block."""

    id: str
    content: str = ""
    state: Mapping[str, Any] | None = None
    error: Mapping[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    """A tool call as recorded in the conversation log.

    ``identifier``/``api_name`` address the tool; ``arguments`` is the raw JSON
    string produced by the model.
    """

    id: str
    identifier: str
    api_name: str
    arguments: str = "{}"
    type: str = "default"
    result: ToolInvocationResult | None = None

    def without_result(self) -> "ToolInvocation":
        return replace(self, result=None) if self.result is not None else self

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "identifier": self.identifier,
            "apiName": self.api_name,
            "arguments": self.arguments,
            "type": self.type,
        }


@dataclass(slots=True, frozen=True)
class ToolCallFunction:
    name: str
    arguments: str = "{}"


@dataclass(slots=True, frozen=True)
class ToolCallPayload:
    """Provider-format tool call (``{"id", "type", "function"}``)."""

    id: str
    function: ToolCallFunction
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }


@dataclass(slots=True, frozen=True)
class Reaction:
    emoji: str
    count: int = 1


@dataclass(slots=True, frozen=True)
class MessageFile:
    """File attached to a user message."""

    id: str
    name: str = ""
    url: str = ""
    file_type: str = "file"
    content: str = ""

    @property
    def is_image(self) -> bool:
        return self.file_type == "image"

    @property
    def is_video(self) -> bool:
        return self.file_type == "video"


# -----------------------------------------------------------------------------
# Message
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Message:
    """One conversation record.

    ``content`` is a string or a list of provider content parts. ``tools`` holds
    the log-format tool calls of an assistant message; ``tool_calls`` holds the
    provider-format calls produced during assembly. ``plugin`` identifies the
    invocation answered by a ``tool`` message. ``children`` carries the members
    of synthetic group roles.
    """

    role: str
    content: Any = ""
    id: str = ""
    tools: tuple[ToolInvocation, ...] = ()
    tool_calls: tuple[ToolCallPayload, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None
    parent_id: str | None = None
    agent_id: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    metadata: Mapping[str, Any] = field(default_factory=dict)
    plugin: ToolInvocation | None = None
    plugin_state: Mapping[str, Any] | None = None
    plugin_error: Mapping[str, Any] | None = None
    error: Mapping[str, Any] | None = None
    children: tuple["Message", ...] = ()
    reactions: tuple[Reaction, ...] = ()
    files: tuple[MessageFile, ...] = ()

    def __post_init__(self) -> None:
        for name in ("tools", "tool_calls", "children", "reactions", "files"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value or ()))

    # Constructors ---------------------------------------------------------

    @classmethod
    def system(cls, content: str, **kwargs: Any) -> "Message":
        return cls(role=Role.SYSTEM, content=content, **kwargs)

    @classmethod
    def user(cls, content: Any, **kwargs: Any) -> "Message":
        return cls(role=Role.USER, content=content, **kwargs)

    @classmethod
    def assistant(cls, content: Any = "", **kwargs: Any) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, **kwargs)

    @classmethod
    def tool(cls, content: str, *, tool_call_id: str, **kwargs: Any) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, **kwargs)

    # Queries --------------------------------------------------------------

    @property
    def is_system_injection(self) -> bool:
        return bool(self.metadata.get("systemInjection"))

    @property
    def text(self) -> str:
        return content_text(self.content)

    def with_metadata(self, **updates: Any) -> "Message":
        return replace(self, metadata={**self.metadata, **updates})

    def to_chat_param(self) -> dict[str, Any]:
        """Return the provider message dict."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id:
            payload["tool_call_id"] = self.tool_call_id
        if self.name:
            payload["name"] = self.name
        return payload

    def to_dict(self) -> dict[str, Any]:
        """Serialize every populated field, for logging and persistence fakes."""
        payload = self.to_chat_param()
        payload["id"] = self.id
        if self.tools:
            payload["tools"] = [tool.to_dict() for tool in self.tools]
        if self.agent_id:
            payload["agentId"] = self.agent_id
        if self.parent_id:
            payload["parentId"] = self.parent_id
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        if self.plugin is not None:
            payload["plugin"] = self.plugin.to_dict()
        if self.plugin_state:
            payload["pluginState"] = dict(self.plugin_state)
        if self.plugin_error:
            payload["pluginError"] = dict(self.plugin_error)
        if self.error:
            payload["error"] = dict(self.error)
        return payload


def content_text(content: Any) -> str:
    """Return the text portion of string or multi-part content."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        parts = [
            str(part.get("text", ""))
            for part in content
            if isinstance(part, Mapping) and part.get("type") == "text"
        ]
        return "\n".join(part for part in parts if part)
    return str(content)


def append_text(content: Any, addition: str, *, separator: str = "\n\n") -> Any:
    """Append ``addition`` to string or multi-part content without mutating it."""
    if not addition:
        return content
    if content is None or content == "":
        return addition
    if isinstance(content, str):
        return f"{content}{separator}{addition}"
    if isinstance(content, Sequence):
        parts = [dict(part) if isinstance(part, Mapping) else part for part in content]
        for index in range(len(parts) - 1, -1, -1):
            part = parts[index]
            if isinstance(part, dict) and part.get("type") == "text":
                parts[index] = {**part, "text": f"{part.get('text', '')}{separator}{addition}"}
                return parts
        return [{"type": "text", "text": addition}, *parts]
    return f"{content}{separator}{addition}"


# -----------------------------------------------------------------------------
# Step context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TodoItem:
    text: str
    completed: bool = False


@dataclass(slots=True, frozen=True)
class StepContext:
    """Facts recomputed from the persisted log before each step."""

    todos: tuple[TodoItem, ...] = ()
    activated_tool_ids: tuple[str, ...] = ()
    page_editor_xml: str | None = None

    @property
    def has_open_todos(self) -> bool:
        return any(not item.completed for item in self.todos)


# -----------------------------------------------------------------------------
# Pipeline context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ProcessorStats:
    """Execution record accumulated while a pipeline runs."""

    executed: tuple[str, ...] = ()
    durations_ms: Mapping[str, float] = field(default_factory=dict)
    started_at: float = 0.0

    def record(self, name: str, duration_ms: float) -> "ProcessorStats":
        durations = dict(self.durations_ms)
        durations[name] = durations.get(name, 0.0) + duration_ms
        return replace(self, executed=self.executed + (name,), durations_ms=durations)

    @property
    def total_ms(self) -> float:
        return sum(self.durations_ms.values())


@dataclass(slots=True, frozen=True)
class PipelineContext:
    """Envelope threaded through every processor.

    Attributes:
        messages: Working message list.
        metadata: Provenance flags recorded by processors.
        stats: Executed processors and their timings.
        initial_state: Messages as they entered the pipeline.
        is_aborted: Set by a processor to stop the remaining stages.
        abort_reason: Why the pipeline was aborted.
    """

    messages: tuple[Message, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    stats: ProcessorStats = field(default_factory=ProcessorStats)
    initial_state: tuple[Message, ...] = ()
    is_aborted: bool = False
    abort_reason: str | None = None

    @classmethod
    def initial(cls, messages: Iterable[Message], *, metadata: Mapping[str, Any] | None = None) -> "PipelineContext":
        items = tuple(messages)
        return cls(
            messages=items,
            metadata=dict(metadata or {}),
            stats=ProcessorStats(started_at=time.time()),
            initial_state=items,
        )

    def with_messages(self, messages: Iterable[Message]) -> "PipelineContext":
        return replace(self, messages=tuple(messages))

    def with_metadata(self, **updates: Any) -> "PipelineContext":
        return replace(self, metadata={**self.metadata, **updates})

    def with_stats(self, stats: ProcessorStats) -> "PipelineContext":
        return replace(self, stats=stats)

    def abort(self, reason: str) -> "PipelineContext":
        return replace(self, is_aborted=True, abort_reason=reason)

