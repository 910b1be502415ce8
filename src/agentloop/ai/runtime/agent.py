"""Decision policy: which instruction follows a given phase."""

from __future__ import annotations

import logging
from typing import Sequence

from ..context.types import ToolInvocation
from .types import (
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    CallLLM,
    CallTool,
    CallToolsBatch,
    Finish,
    FinishReason,
    Instruction,
    Phase,
    RequestHumanApprove,
    ResolveAbortedTools,
)

__all__ = ["GeneralChatAgent"]

LOGGER = logging.getLogger(__name__)


class GeneralChatAgent:
    """Chat agent that alternates model calls and tool calls until the model stops."""

    def __init__(self, *, model: str | None = None, provider: str | None = None) -> None:
        self._model = model
        self._provider = provider

    def runner(self, context: AgentRuntimeContext, state: AgentState) -> Instruction:
        if state.status == AgentStatus.INTERRUPTED:
            return self._on_interrupted(context, state)

        payload = context.payload
        parent_id = payload.get("parent_message_id")
        match context.phase:
            case Phase.INIT | Phase.USER_INPUT:
                return self._call_llm(parent_id)
            case Phase.LLM_RESULT:
                return self._on_llm_result(context, state)
            case Phase.TOOL_RESULT | Phase.TOOLS_BATCH_RESULT | Phase.TASKS_BATCH_RESULT:
                return self._on_tool_result(context, state)
            case Phase.HUMAN_APPROVED_TOOL:
                approved: ToolInvocation = payload["approved_tool_call"]
                return CallTool(tool_call=approved, parent_message_id=parent_id)
            case Phase.HUMAN_ABORT:
                pending = tuple(payload.get("tool_calls") or ())
                if pending:
                    return ResolveAbortedTools(pending_tool_calls=pending, parent_message_id=parent_id)
                return Finish(reason=FinishReason.USER_REQUESTED, reason_detail=payload.get("reason"))
            case Phase.ERROR:
                return Finish(reason=FinishReason.ERROR, reason_detail=payload.get("message"))
        raise ValueError(f"Unhandled phase: {context.phase!r}")

    # ------------------------------------------------------------------
    # Phase handlers
    # ------------------------------------------------------------------
    def _call_llm(self, parent_id: str | None, *, force_finish: bool = False) -> CallLLM:
        return CallLLM(
            model=self._model,
            provider=self._provider,
            parent_message_id=parent_id,
            tools_enabled=not force_finish,
            force_finish=force_finish,
        )

    def _on_llm_result(self, context: AgentRuntimeContext, state: AgentState) -> Instruction:
        payload = context.payload
        parent_id = payload.get("parent_message_id")
        if payload.get("force_finish"):
            return Finish(reason=FinishReason.MAX_STEPS_EXCEEDED, reason_detail=f"max_steps={state.max_steps}")
        tool_calls: Sequence[ToolInvocation] = tuple(payload.get("tool_calls") or ())
        if not tool_calls:
            return Finish(reason=FinishReason.COMPLETED)

        needs_approval = [
            call
            for call in tool_calls
            if state.intervention_policy.requires_approval(call, state.tool_manifest_map.get(call.identifier))
        ]
        if needs_approval:
            LOGGER.debug("%d of %d tool call(s) need approval", len(needs_approval), len(tool_calls))
            return RequestHumanApprove(pending_tool_calls=tuple(tool_calls), parent_message_id=parent_id)
        if len(tool_calls) == 1:
            return CallTool(tool_call=tool_calls[0], parent_message_id=parent_id)
        return CallToolsBatch(tool_calls=tuple(tool_calls), parent_message_id=parent_id)

    def _on_tool_result(self, context: AgentRuntimeContext, state: AgentState) -> Instruction:
        parent_id = context.payload.get("parent_message_id")
        if state.pending_tool_calls:
            # Remaining calls from the same turn are still waiting for approval.
            return RequestHumanApprove(pending_tool_calls=state.pending_tool_calls, parent_message_id=parent_id)
        if state.is_over_step_budget:
            LOGGER.debug("Step budget reached (%s/%s); forcing a final answer", state.step_count, state.max_steps)
            return self._call_llm(parent_id, force_finish=True)
        return self._call_llm(parent_id)

    def _on_interrupted(self, context: AgentRuntimeContext, state: AgentState) -> Instruction:
        pending = tuple(state.pending_tool_calls)
        if not pending and context.phase in (Phase.LLM_RESULT, Phase.HUMAN_ABORT):
            pending = tuple(context.payload.get("tool_calls") or ())
        if pending:
            return ResolveAbortedTools(
                pending_tool_calls=pending,
                parent_message_id=context.payload.get("parent_message_id"),
            )
        return Finish(reason=FinishReason.USER_REQUESTED, reason_detail="operation cancelled")
