"""Single-step runtime: ask the agent for an instruction, then execute it."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..cancellation import CancellationToken
from ..context.assembler import InitialContext
from ..context.types import Message
from ..errors import AgentLoopError, ErrorCode
from ..tools.types import ToolManifest
from .executors import StepExecutors
from .types import (
    AgentEvent,
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    EventType,
    Instruction,
    InterventionPolicy,
    Phase,
    SessionInfo,
    StepResult,
)

__all__ = ["Agent", "AgentRuntime"]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class Agent(Protocol):
    """Decision policy consulted once per step."""

    def runner(self, context: AgentRuntimeContext, state: AgentState) -> Instruction:
        ...


class AgentRuntime:
    """Runs exactly one step per :meth:`step` call.

    Failures inside the agent or an executor never escape: they become an
    ``error`` event and a state with ``status="error"``.
    """

    def __init__(self, agent: Agent, executors: StepExecutors) -> None:
        self._agent = agent
        self._executors = executors

    @property
    def agent(self) -> Agent:
        return self._agent

    @property
    def executors(self) -> StepExecutors:
        return self._executors

    @property
    def model(self) -> str:
        return self._executors.engine_config.model

    async def step(
        self,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StepResult:
        try:
            instruction = self._agent.runner(context, state)
            LOGGER.debug("Phase %s -> %s", _phase_name(context.phase), instruction.type)
            return await self._executors.execute(instruction, state, context, cancellation=cancellation)
        except AgentLoopError as exc:
            LOGGER.warning("Step failed in phase %s: %s", _phase_name(context.phase), exc)
            return self._error_result(state, exc.to_dict())
        except Exception as exc:
            LOGGER.exception("Unexpected error in phase %s", _phase_name(context.phase))
            return self._error_result(state, {"type": ErrorCode.RUNTIME_ERROR, "message": str(exc)})

    @staticmethod
    def _error_result(state: AgentState, payload: Mapping[str, Any]) -> StepResult:
        new_state = state.with_updates(status=AgentStatus.ERROR, error=dict(payload))
        return StepResult(events=(AgentEvent(EventType.ERROR, {"error": dict(payload)}),), new_state=new_state)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @staticmethod
    def create_initial_state(
        *,
        operation_id: str | None = None,
        messages: Sequence[Message] = (),
        max_steps: int | None = 400,
        tools: Sequence[ToolManifest] = (),
        metadata: Mapping[str, Any] | None = None,
        intervention_policy: InterventionPolicy | None = None,
    ) -> AgentState:
        return AgentState(
            operation_id=operation_id or f"op_{uuid.uuid4().hex[:16]}",
            messages=tuple(messages),
            max_steps=max_steps,
            tool_manifest_map={manifest.identifier: manifest for manifest in tools},
            metadata=dict(metadata or {}),
            intervention_policy=intervention_policy or InterventionPolicy(),
        )

    @staticmethod
    def create_initial_context(
        state: AgentState,
        *,
        phase: Phase = Phase.USER_INPUT,
        payload: Mapping[str, Any] | None = None,
        initial_context: InitialContext | None = None,
    ) -> AgentRuntimeContext:
        merged = dict(payload or {})
        if not merged.get("parent_message_id"):
            merged["parent_message_id"] = state.messages[-1].id if state.messages else None
        return AgentRuntimeContext(
            phase=phase,
            payload=merged,
            session=SessionInfo(
                session_id=state.message_key,
                step_count=state.step_count,
                message_count=len(state.messages),
                status=state.status,
            ),
            initial_context=initial_context,
        )


def _phase_name(phase: Phase | str) -> str:
    return phase.value if isinstance(phase, Phase) else str(phase)
