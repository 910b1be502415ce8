"""Agent run loop: state, decisions, step executors and operation tracking."""

from .types import (
    AgentEvent,
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    CallLLM,
    CallTool,
    CallToolsBatch,
    Cost,
    EventType,
    Finish,
    FinishReason,
    Instruction,
    InterventionPolicy,
    LLMCost,
    LLMUsage,
    Phase,
    RequestHumanApprove,
    ResolveAbortedTools,
    RunResult,
    SessionInfo,
    StepResult,
    Usage,
)
from .operations import Operation, OperationContext, OperationRegistry, OperationScope, OperationStatus
from .store import InMemoryMessageStore, MessageStore
from .pricing import ModelPricing
from .step_context import compute_step_context
from .agent import GeneralChatAgent
from .executors import StepExecutors
from .runtime import Agent, AgentRuntime
from .event_log import RunEventLogger
from .loop import AgentRunLoop
from .factory import create_initial_state, create_run_loop

__all__ = [
    "Agent",
    "AgentEvent",
    "AgentRunLoop",
    "AgentRuntime",
    "AgentRuntimeContext",
    "AgentState",
    "AgentStatus",
    "CallLLM",
    "CallTool",
    "CallToolsBatch",
    "Cost",
    "EventType",
    "Finish",
    "FinishReason",
    "GeneralChatAgent",
    "InMemoryMessageStore",
    "Instruction",
    "InterventionPolicy",
    "LLMCost",
    "LLMUsage",
    "MessageStore",
    "ModelPricing",
    "Operation",
    "OperationContext",
    "OperationRegistry",
    "OperationScope",
    "OperationStatus",
    "Phase",
    "RequestHumanApprove",
    "ResolveAbortedTools",
    "RunEventLogger",
    "RunResult",
    "SessionInfo",
    "StepExecutors",
    "StepResult",
    "Usage",
    "compute_step_context",
    "create_initial_state",
    "create_run_loop",
]
