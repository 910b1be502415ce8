"""Operation registry: lifecycle, cancellation handles and parent/child links.

An operation is one tracked execution of the run loop. The registry stores
links between parent and child operations but never cascades cancellation on
its own; callers that want a cascade use :meth:`OperationRegistry.cancel_children`.
"""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from ..cancellation import CancellationToken
from ..errors import AgentLoopError, OperationNotFoundError

__all__ = [
    "AfterCompletionHook",
    "Operation",
    "OperationContext",
    "OperationRegistry",
    "OperationScope",
    "OperationStatus",
]

LOGGER = logging.getLogger(__name__)

AfterCompletionHook = Callable[[], Awaitable[None] | None]


class OperationStatus:
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETED, FAILED})


class OperationScope:
    """Who owns the messages an operation generates."""

    GROUP = "group"
    GROUP_AGENT = "group_agent"
    SUB_AGENT = "sub_agent"


@dataclass(slots=True, frozen=True)
class OperationContext:
    """Caller identity attached to an operation."""

    agent_id: str | None = None
    topic_id: str | None = None
    group_id: str | None = None
    sub_agent_id: str | None = None
    scope: str | None = None
    thread_id: str | None = None
    message_id: str | None = None

    @property
    def effective_agent_id(self) -> str | None:
        """Agent whose config drives the run; sub-agents borrow another agent's config."""
        if self.scope == OperationScope.SUB_AGENT and self.sub_agent_id:
            return self.sub_agent_id
        return self.agent_id


@dataclass(slots=True)
class Operation:
    id: str
    type: str
    context: OperationContext
    status: str = OperationStatus.RUNNING
    parent_operation_id: str | None = None
    children: list[str] = field(default_factory=list)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    label: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    after_completion: list[AfterCompletionHook] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    error: Mapping[str, Any] | None = None
    cancel_reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == OperationStatus.CANCELLED

    @property
    def is_terminal(self) -> bool:
        return self.status in OperationStatus.TERMINAL

    @property
    def duration_ms(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000


class OperationRegistry:
    """In-process table of operations keyed by id."""

    def __init__(self) -> None:
        self._operations: dict[str, Operation] = {}
        self._message_operations: dict[str, str] = {}

    def start(
        self,
        type: str,
        context: OperationContext | None = None,
        *,
        parent_operation_id: str | None = None,
        label: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        operation_id: str | None = None,
    ) -> str:
        """Register a running operation and return its id."""
        op_id = operation_id or f"op_{uuid.uuid4().hex[:16]}"
        if parent_operation_id is not None:
            parent = self.get(parent_operation_id)
            parent.children.append(op_id)
        self._operations[op_id] = Operation(
            id=op_id,
            type=type,
            context=context or OperationContext(),
            parent_operation_id=parent_operation_id,
            label=label,
            metadata=dict(metadata or {}),
        )
        if context is not None and context.message_id:
            self._message_operations[context.message_id] = op_id
        LOGGER.debug("Operation %s (%s) started; parent=%s", op_id, type, parent_operation_id)
        return op_id

    def get(self, operation_id: str) -> Operation:
        operation = self._operations.get(operation_id)
        if operation is None:
            raise OperationNotFoundError(message=f"Unknown operation: {operation_id}", operation_id=operation_id)
        return operation

    def find(self, operation_id: str) -> Operation | None:
        return self._operations.get(operation_id)

    def is_cancelled(self, operation_id: str) -> bool:
        return self.get(operation_id).is_cancelled

    def cancel(self, operation_id: str, reason: str | None = None) -> bool:
        """Flag the operation cancelled and trigger its token.

        Cooperative only: the run loop notices at its next check. Returns
        ``False`` when the operation was already cancelled or finished.
        """
        operation = self.get(operation_id)
        if operation.is_terminal or operation.is_cancelled:
            return False
        operation.status = OperationStatus.CANCELLED
        operation.cancel_reason = reason
        operation.cancellation.cancel(reason)
        LOGGER.debug("Operation %s cancelled: %s", operation_id, reason)
        return True

    def cancel_children(self, operation_id: str, reason: str | None = None) -> int:
        """Cancel every descendant of ``operation_id``; returns how many were cancelled."""
        cancelled = 0
        for child_id in list(self.get(operation_id).children):
            if self.cancel(child_id, reason):
                cancelled += 1
            cancelled += self.cancel_children(child_id, reason)
        return cancelled

    def complete(self, operation_id: str) -> None:
        operation = self.get(operation_id)
        if operation.is_terminal:
            return
        operation.status = OperationStatus.COMPLETED
        operation.finished_at = time.time()
        LOGGER.debug("Operation %s completed in %.0fms", operation_id, operation.duration_ms or 0.0)

    def fail(self, operation_id: str, error: AgentLoopError | Mapping[str, Any]) -> None:
        operation = self.get(operation_id)
        if operation.is_terminal:
            return
        operation.status = OperationStatus.FAILED
        operation.finished_at = time.time()
        operation.error = error.to_dict() if isinstance(error, AgentLoopError) else dict(error)
        LOGGER.debug("Operation %s failed: %s", operation_id, operation.error)

    def register_after_completion(self, operation_id: str, hook: AfterCompletionHook) -> None:
        """Queue ``hook`` to run once the whole run finishes, in registration order."""
        self.get(operation_id).after_completion.append(hook)

    def after_completion_hooks(self, operation_id: str) -> tuple[AfterCompletionHook, ...]:
        return tuple(self.get(operation_id).after_completion)

    async def run_after_completion(self, operation_id: str) -> int:
        """Run the queued hooks; a failing hook is logged and the rest still run."""
        hooks = self.after_completion_hooks(operation_id)
        if hooks:
            LOGGER.debug("Running %d after-completion hook(s) for %s", len(hooks), operation_id)
        failures = 0
        for hook in hooks:
            try:
                outcome = hook()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                failures += 1
                LOGGER.exception("After-completion hook failed for operation %s", operation_id)
        return failures

    def children(self, operation_id: str) -> list[Operation]:
        return [self._operations[child] for child in self.get(operation_id).children if child in self._operations]

    def associate_message(self, message_id: str, operation_id: str) -> None:
        self.get(operation_id)
        self._message_operations[message_id] = operation_id

    def operation_for_message(self, message_id: str) -> Operation | None:
        operation_id = self._message_operations.get(message_id)
        return self._operations.get(operation_id) if operation_id else None

    def running(self) -> list[Operation]:
        return [op for op in self._operations.values() if op.status == OperationStatus.RUNNING]

    def remove(self, operation_id: str) -> bool:
        """Drop a finished operation together with its message links.

        Returns ``False`` (and keeps the entry) while the operation is still
        running or cancelled-but-unfinished.
        """
        operation = self.get(operation_id)
        if not operation.is_terminal:
            return False
        del self._operations[operation_id]
        for message_id in [m for m, op_id in self._message_operations.items() if op_id == operation_id]:
            del self._message_operations[message_id]
        parent = self._operations.get(operation.parent_operation_id or "")
        if parent is not None and operation_id in parent.children:
            parent.children.remove(operation_id)
        LOGGER.debug("Operation %s removed (%s)", operation_id, operation.status)
        return True

    def prune_terminal(self, *, older_than_seconds: float = 0.0) -> int:
        """Remove every finished operation that ended at least ``older_than_seconds`` ago."""
        cutoff = time.time() - older_than_seconds
        expired = [
            op.id
            for op in self._operations.values()
            if op.is_terminal and op.finished_at is not None and op.finished_at <= cutoff
        ]
        for operation_id in expired:
            self.remove(operation_id)
        if expired:
            LOGGER.debug("Pruned %d finished operation(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._operations
