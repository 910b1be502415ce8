"""Outer run loop driving :class:`AgentRuntime` until the run stops.

The loop owns everything between steps: cancellation polling, step-context
recomputation from the persisted log, usage accumulation, error annotation and
the operation lifecycle. Steps themselves never see the registry.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping

from ...utils.logging import OperationLogAdapter, get_operation_logger
from ..cancellation import CancellationToken
from ..context.assembler import InitialContext
from ..context.types import Role
from ..errors import AgentLoopError, ConfigurationError, ErrorCode
from .event_log import RunEventLogger
from .operations import OperationContext, OperationRegistry
from .runtime import AgentRuntime
from .step_context import PageXmlProvider, compute_step_context
from .store import MessageStore
from .types import (
    BATCH_RESULT_PHASES,
    AgentEvent,
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    EventType,
    Phase,
    RunResult,
    StepResult,
)

__all__ = ["AgentRunLoop", "RunNotifier"]

LOGGER = logging.getLogger(__name__)

RunNotifier = Callable[[RunResult], Awaitable[None] | None]

OPERATION_TYPE = "execAgentRuntime"


class AgentRunLoop:
    """Drives steps until the state is terminal or a step yields no next context."""

    def __init__(
        self,
        runtime: AgentRuntime,
        operations: OperationRegistry,
        store: MessageStore,
        *,
        notifier: RunNotifier | None = None,
        event_logger: RunEventLogger | None = None,
        page_xml_provider: PageXmlProvider | None = None,
        operation_retention_seconds: float | None = 300.0,
    ) -> None:
        self._runtime = runtime
        self._operations = operations
        self._store = store
        self._notifier = notifier
        self._event_logger = event_logger or RunEventLogger(enabled=False)
        self._page_xml_provider = page_xml_provider
        self._operation_retention = operation_retention_seconds

    @property
    def operations(self) -> OperationRegistry:
        return self._operations

    async def run(
        self,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        operation_id: str | None = None,
        operation_context: OperationContext | None = None,
        parent_operation_id: str | None = None,
    ) -> RunResult:
        """Run to completion and return the final state with every emitted event.

        Raises:
            ConfigurationError: When no model is configured. Nothing is persisted.
            Exception: Faults raised between steps (store I/O, step-context
                computation) propagate after the operation has been failed.
        """
        if not self._runtime.model:
            raise ConfigurationError(
                error_code=ErrorCode.MISSING_MODEL,
                message="No model configured for the agent run",
            )
        if self._operation_retention is not None:
            self._operations.prune_terminal(older_than_seconds=self._operation_retention)
        if operation_id is None or operation_id not in self._operations:
            operation_id = self._operations.start(
                OPERATION_TYPE,
                operation_context,
                parent_operation_id=parent_operation_id,
                operation_id=operation_id,
                metadata={"message_key": state.message_key},
            )
        token = self._operations.get(operation_id).cancellation
        log = get_operation_logger(__name__, operation_id)
        initial_context = context.initial_context
        events: list[AgentEvent] = []
        current = context
        step_index = 0

        with self._event_logger.start_run(operation_id=operation_id, state=state) as run_log:
            try:
                while state.status not in AgentStatus.TERMINAL:
                    if token.is_cancelled:
                        log.info("Cancelled before step %d; running cleanup step", step_index)
                        state = state.with_updates(status=AgentStatus.INTERRUPTED)
                        result = await self._step(state, current, initial_context, token)
                        state = await self._record(result, events, run_log, step_index, log)
                        break

                    result = await self._step(state, current, initial_context, token)
                    state = await self._record(result, events, run_log, step_index, log)
                    step_index += 1

                    if token.is_cancelled and state.status not in AgentStatus.TERMINAL:
                        log.info("Cancelled during step %d; running cleanup step", step_index - 1)
                        state = state.with_updates(status=AgentStatus.INTERRUPTED)
                        result = await self._step(state, result.next_context or current, initial_context, token)
                        state = await self._record(result, events, run_log, step_index, log)
                        break
                    if result.next_context is None:
                        break
                    current = result.next_context
            except Exception as exc:
                log.exception("Run loop failed outside a step")
                run_log.log_failure(message=str(exc), details={"type": exc.__class__.__name__})
                await self._abort_operation(operation_id, exc, log)
                raise
            run_log.log_completion(state)

        await self._finish_operation(operation_id, state, log)
        outcome = RunResult(state=state, operation_id=operation_id, events=tuple(events))
        await self._notify(outcome, log)
        return outcome

    async def resume_after_approval(
        self,
        state: AgentState,
        tool_call_id: str,
        *,
        operation_context: OperationContext | None = None,
        parent_operation_id: str | None = None,
    ) -> RunResult:
        """Continue a run paused for approval by executing one approved call.

        Calls of the same turn that are still pending are requested again once
        the approved call has run.
        """
        approved = next((call for call in state.pending_tool_calls if call.id == tool_call_id), None)
        if approved is None:
            raise ConfigurationError(
                message=f"No pending tool call with id {tool_call_id!r}",
                details={"pending": [call.id for call in state.pending_tool_calls]},
            )
        parent_id = (state.pending_human_prompt or {}).get("parent_message_id")
        resumed = state.with_updates(status=AgentStatus.RUNNING, pending_human_prompt=None)
        context = AgentRuntime.create_initial_context(
            resumed,
            phase=Phase.HUMAN_APPROVED_TOOL,
            payload={"approved_tool_call": approved, "parent_message_id": parent_id},
        )
        return await self.run(
            resumed,
            context,
            operation_context=operation_context,
            parent_operation_id=parent_operation_id,
        )

    async def reject_pending(
        self,
        state: AgentState,
        *,
        reason: str = "rejected",
        operation_context: OperationContext | None = None,
    ) -> RunResult:
        """Abort a run paused for approval; pending calls receive cancelled results."""
        parent_id = (state.pending_human_prompt or {}).get("parent_message_id")
        resumed = state.with_updates(status=AgentStatus.RUNNING, pending_human_prompt=None)
        context = AgentRuntime.create_initial_context(
            resumed,
            phase=Phase.HUMAN_ABORT,
            payload={"tool_calls": state.pending_tool_calls, "parent_message_id": parent_id, "reason": reason},
        )
        return await self.run(resumed, context, operation_context=operation_context)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _step(
        self,
        state: AgentState,
        context: AgentRuntimeContext,
        initial_context: InitialContext | None,
        token: CancellationToken,
    ) -> StepResult:
        persisted = await self._store.query(state.message_key)
        has_page = initial_context is not None and initial_context.page_editor is not None
        step_context = compute_step_context(
            persisted,
            page_xml_provider=self._page_xml_provider if has_page else None,
        )
        prepared = context.with_step_context(step_context)
        if prepared.initial_context is None and initial_context is not None:
            prepared = prepared.with_initial_context(initial_context)
        return await self._runtime.step(state, prepared, cancellation=token)

    async def _record(
        self,
        result: StepResult,
        events: list[AgentEvent],
        run_log: Any,
        index: int,
        log: OperationLogAdapter,
    ) -> AgentState:
        state = result.new_state.accumulate(result.usage, result.cost)
        events.extend(result.events)
        next_phase = result.next_context.phase if result.next_context is not None else None
        if next_phase in BATCH_RESULT_PHASES:
            state = state.with_updates(messages=await self._store.query(state.message_key))
        for event in result.events:
            if event.type == EventType.ERROR:
                await self._annotate_error(state, event.data.get("error") or {}, log)
        run_log.log_step(
            step_index=index,
            phase=next_phase.value if isinstance(next_phase, Phase) else next_phase,
            events=result.events,
        )
        log.for_step(index).debug(
            "status=%s steps=%s next=%s", state.status, state.step_count, next_phase
        )
        return state

    async def _annotate_error(self, state: AgentState, error: Mapping[str, Any], log: OperationLogAdapter) -> None:
        persisted = await self._store.query(state.message_key)
        target = next((m for m in reversed(persisted) if m.role == Role.ASSISTANT), None)
        if target is None:
            log.debug("No assistant message to annotate with error")
            return
        await self._store.update(state.message_key, target.id, {"error": dict(error)})

    async def _finish_operation(self, operation_id: str, state: AgentState, log: OperationLogAdapter) -> None:
        failures = await self._operations.run_after_completion(operation_id)
        if failures:
            log.warning("%d after-completion hook(s) failed", failures)
        if state.status == AgentStatus.ERROR:
            self._operations.fail(operation_id, state.error or {"type": ErrorCode.RUNTIME_ERROR})
        else:
            self._operations.complete(operation_id)

    async def _abort_operation(self, operation_id: str, exc: Exception, log: OperationLogAdapter) -> None:
        failures = await self._operations.run_after_completion(operation_id)
        if failures:
            log.warning("%d after-completion hook(s) failed", failures)
        error = exc.to_dict() if isinstance(exc, AgentLoopError) else {
            "type": ErrorCode.RUNTIME_ERROR,
            "message": str(exc) or exc.__class__.__name__,
        }
        self._operations.fail(operation_id, error)

    async def _notify(self, outcome: RunResult, log: OperationLogAdapter) -> None:
        if self._notifier is None:
            return
        try:
            pending = self._notifier(outcome)
            if inspect.isawaitable(pending):
                await pending
        except Exception:
            log.exception("Completion notifier failed")

