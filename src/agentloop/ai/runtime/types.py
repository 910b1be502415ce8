"""State, usage, instruction and event types for the agent run loop.

Every value here is immutable. Steps return new states through
:meth:`AgentState.with_updates`; usage and cost grow by merging deltas.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal, Mapping, Sequence, Union

from ..context.assembler import InitialContext
from ..context.types import Message, StepContext, ToolInvocation
from ..tools.types import HumanIntervention, ToolManifest

__all__ = [
    "AgentEvent",
    "AgentRuntimeContext",
    "AgentState",
    "AgentStatus",
    "BATCH_RESULT_PHASES",
    "CallLLM",
    "CallTool",
    "CallToolsBatch",
    "Cost",
    "EventType",
    "Finish",
    "FinishReason",
    "HumanUsage",
    "Instruction",
    "InterventionPolicy",
    "LLMCost",
    "LLMUsage",
    "Phase",
    "RequestHumanApprove",
    "ResolveAbortedTools",
    "RunResult",
    "SessionInfo",
    "StepResult",
    "ToolUsage",
    "Usage",
]


class AgentStatus:
    """Run-level states of :class:`AgentState`."""

    RUNNING = "running"
    WAITING_FOR_HUMAN = "waiting_for_human"
    INTERRUPTED = "interrupted"
    DONE = "done"
    ERROR = "error"

    TERMINAL = frozenset({DONE, ERROR})


class Phase(str, Enum):
    """Tag selecting how the agent decides the next step."""

    INIT = "init"
    USER_INPUT = "user_input"
    LLM_RESULT = "llm_result"
    TOOL_RESULT = "tool_result"
    TOOLS_BATCH_RESULT = "tools_batch_result"
    TASKS_BATCH_RESULT = "tasks_batch_result"
    HUMAN_APPROVED_TOOL = "human_approved_tool"
    HUMAN_ABORT = "human_abort"
    ERROR = "error"


# Phases after which the persisted log must be re-read before continuing.
BATCH_RESULT_PHASES = frozenset({Phase.TOOLS_BATCH_RESULT, Phase.TASKS_BATCH_RESULT})


class EventType:
    LLM_START = "llm_start"
    LLM_STREAM = "llm_stream"
    LLM_RESULT = "llm_result"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    HUMAN_APPROVE_REQUIRED = "human_approve_required"
    DONE = "done"
    ERROR = "error"
    INTERRUPTED = "interrupted"


class FinishReason:
    COMPLETED = "completed"
    MAX_STEPS_EXCEEDED = "max_steps_exceeded"
    USER_REQUESTED = "user_requested"
    ERROR = "error"


# -----------------------------------------------------------------------------
# Usage and cost
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LLMUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0
    total_tokens: int = 0
    api_calls: int = 0
    processing_time_ms: float = 0.0

    def merge(self, other: "LLMUsage") -> "LLMUsage":
        return LLMUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cached_tokens=self.cached_tokens + other.cached_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            api_calls=self.api_calls + other.api_calls,
            processing_time_ms=self.processing_time_ms + other.processing_time_ms,
        )


@dataclass(slots=True, frozen=True)
class ToolUsage:
    total_calls: int = 0
    by_tool: Mapping[str, int] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    def merge(self, other: "ToolUsage") -> "ToolUsage":
        by_tool = dict(self.by_tool)
        for name, count in other.by_tool.items():
            by_tool[name] = by_tool.get(name, 0) + count
        return ToolUsage(
            total_calls=self.total_calls + other.total_calls,
            by_tool=by_tool,
            execution_time_ms=self.execution_time_ms + other.execution_time_ms,
        )


@dataclass(slots=True, frozen=True)
class HumanUsage:
    approval_requests: int = 0
    total_wait_time_ms: float = 0.0

    def merge(self, other: "HumanUsage") -> "HumanUsage":
        return HumanUsage(
            approval_requests=self.approval_requests + other.approval_requests,
            total_wait_time_ms=self.total_wait_time_ms + other.total_wait_time_ms,
        )


@dataclass(slots=True, frozen=True)
class Usage:
    """Token, tool and human-wait totals for a run (or the delta of one step)."""

    llm: LLMUsage = field(default_factory=LLMUsage)
    tools: ToolUsage = field(default_factory=ToolUsage)
    humans: HumanUsage = field(default_factory=HumanUsage)

    def merge(self, other: "Usage | None") -> "Usage":
        if other is None:
            return self
        return Usage(
            llm=self.llm.merge(other.llm),
            tools=self.tools.merge(other.tools),
            humans=self.humans.merge(other.humans),
        )

    @classmethod
    def from_llm(cls, usage: Mapping[str, int], *, processing_time_ms: float = 0.0) -> "Usage":
        """Build a step delta from the provider's normalized usage dict."""
        input_tokens = int(usage.get("input_tokens", 0))
        output_tokens = int(usage.get("output_tokens", 0))
        return cls(
            llm=LLMUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cached_tokens=int(usage.get("cached_tokens", 0)),
                total_tokens=int(usage.get("total_tokens", input_tokens + output_tokens)),
                api_calls=1,
                processing_time_ms=processing_time_ms,
            )
        )

    @classmethod
    def from_tools(cls, calls: Sequence[ToolInvocation], *, execution_time_ms: float = 0.0) -> "Usage":
        by_tool: dict[str, int] = {}
        for call in calls:
            key = f"{call.identifier}/{call.api_name}"
            by_tool[key] = by_tool.get(key, 0) + 1
        return cls(tools=ToolUsage(total_calls=len(calls), by_tool=by_tool, execution_time_ms=execution_time_ms))


@dataclass(slots=True, frozen=True)
class LLMCost:
    input: float = 0.0
    output: float = 0.0
    cached: float = 0.0
    total: float = 0.0
    currency: str = "USD"

    def merge(self, other: "LLMCost") -> "LLMCost":
        return LLMCost(
            input=self.input + other.input,
            output=self.output + other.output,
            cached=self.cached + other.cached,
            total=self.total + other.total,
            currency=self.currency,
        )


@dataclass(slots=True, frozen=True)
class Cost:
    llm: LLMCost = field(default_factory=LLMCost)
    tools: float = 0.0
    total: float = 0.0

    def merge(self, other: "Cost | None") -> "Cost":
        if other is None:
            return self
        return Cost(llm=self.llm.merge(other.llm), tools=self.tools + other.tools, total=self.total + other.total)


# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class InterventionPolicy:
    """When a tool call must wait for a human.

    ``approval_mode`` is ``auto-run`` (only ``always`` APIs ask), ``allow-list``
    (``required`` APIs ask unless listed) or ``manual`` (every ``required``
    API asks).
    """

    approval_mode: str = "auto-run"
    allow_list: tuple[str, ...] = ()

    def requires_approval(self, call: ToolInvocation, manifest: ToolManifest | None) -> bool:
        api = manifest.get_api(call.api_name) if manifest is not None else None
        policy = api.human_intervention if api is not None else HumanIntervention.NEVER
        if policy == HumanIntervention.ALWAYS:
            return True
        if policy != HumanIntervention.REQUIRED:
            return False
        if self.approval_mode == "auto-run":
            return False
        if self.approval_mode == "allow-list":
            return not {call.identifier, f"{call.identifier}/{call.api_name}"} & set(self.allow_list)
        return True


@dataclass(slots=True, frozen=True)
class AgentState:
    """Everything the run loop carries from one step to the next."""

    operation_id: str
    status: str = AgentStatus.RUNNING
    messages: tuple[Message, ...] = ()
    usage: Usage = field(default_factory=Usage)
    cost: Cost = field(default_factory=Cost)
    step_count: int = 0
    max_steps: int | None = 400
    metadata: Mapping[str, Any] = field(default_factory=dict)
    tool_manifest_map: Mapping[str, ToolManifest] = field(default_factory=dict)
    pending_tool_calls: tuple[ToolInvocation, ...] = ()
    pending_human_prompt: Mapping[str, Any] | None = None
    error: Mapping[str, Any] | None = None
    created_at: float = field(default_factory=time.time)
    last_modified: float = field(default_factory=time.time)
    intervention_policy: InterventionPolicy = field(default_factory=InterventionPolicy)

    def with_updates(self, **changes: Any) -> "AgentState":
        if "messages" in changes:
            changes["messages"] = tuple(changes["messages"])
        if "pending_tool_calls" in changes:
            changes["pending_tool_calls"] = tuple(changes["pending_tool_calls"])
        return replace(self, last_modified=time.time(), **changes)

    def accumulate(self, usage: Usage | None, cost: Cost | None) -> "AgentState":
        """Add a step's usage and cost deltas to the running totals."""
        if usage is None and cost is None:
            return self
        return replace(self, usage=self.usage.merge(usage), cost=self.cost.merge(cost))

    @property
    def message_key(self) -> str:
        """Key of the persisted conversation this run writes to."""
        for key in ("message_key", "topic_id", "session_id"):
            value = self.metadata.get(key)
            if value:
                return str(value)
        return self.operation_id

    @property
    def is_over_step_budget(self) -> bool:
        return self.max_steps is not None and self.step_count >= self.max_steps


# -----------------------------------------------------------------------------
# Runtime context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SessionInfo:
    session_id: str = ""
    step_count: int = 0
    message_count: int = 0
    status: str = AgentStatus.RUNNING


@dataclass(slots=True, frozen=True)
class AgentRuntimeContext:
    """What the previous step produced, tagged by :class:`Phase`."""

    phase: Phase
    payload: Mapping[str, Any] = field(default_factory=dict)
    session: SessionInfo | None = None
    step_context: StepContext | None = None
    initial_context: InitialContext | None = None
    step_usage: Usage | None = None

    def with_step_context(self, step_context: StepContext) -> "AgentRuntimeContext":
        return replace(self, step_context=step_context)

    def with_initial_context(self, initial_context: InitialContext | None) -> "AgentRuntimeContext":
        return replace(self, initial_context=initial_context)


# -----------------------------------------------------------------------------
# Instructions
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CallLLM:
    model: str | None = None
    provider: str | None = None
    parent_message_id: str | None = None
    tools_enabled: bool = True
    force_finish: bool = False
    type: Literal["call_llm"] = field(default="call_llm", init=False)


@dataclass(slots=True, frozen=True)
class CallTool:
    tool_call: ToolInvocation
    parent_message_id: str | None = None
    type: Literal["call_tool"] = field(default="call_tool", init=False)


@dataclass(slots=True, frozen=True)
class CallToolsBatch:
    tool_calls: tuple[ToolInvocation, ...]
    parent_message_id: str | None = None
    type: Literal["call_tools_batch"] = field(default="call_tools_batch", init=False)


@dataclass(slots=True, frozen=True)
class RequestHumanApprove:
    pending_tool_calls: tuple[ToolInvocation, ...]
    parent_message_id: str | None = None
    reason: str = "human_intervention_required"
    type: Literal["request_human_approve"] = field(default="request_human_approve", init=False)


@dataclass(slots=True, frozen=True)
class ResolveAbortedTools:
    pending_tool_calls: tuple[ToolInvocation, ...]
    parent_message_id: str | None = None
    type: Literal["resolve_aborted_tools"] = field(default="resolve_aborted_tools", init=False)


@dataclass(slots=True, frozen=True)
class Finish:
    reason: str = FinishReason.COMPLETED
    reason_detail: str | None = None
    type: Literal["finish"] = field(default="finish", init=False)


Instruction = Union[CallLLM, CallTool, CallToolsBatch, RequestHumanApprove, ResolveAbortedTools, Finish]


# -----------------------------------------------------------------------------
# Step and run results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AgentEvent:
    type: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of one step; ``next_context`` is ``None`` when the run should stop."""

    events: tuple[AgentEvent, ...]
    new_state: AgentState
    next_context: AgentRuntimeContext | None = None
    usage: Usage | None = None
    cost: Cost | None = None


@dataclass(slots=True, frozen=True)
class RunResult:
    state: AgentState
    operation_id: str
    events: tuple[AgentEvent, ...] = ()

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def usage(self) -> Usage:
        return self.state.usage

    @property
    def cost(self) -> Cost:
        return self.state.cost
