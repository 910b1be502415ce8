"""Tests for the chat agent's phase-to-instruction policy."""

from __future__ import annotations

import pytest

from agentloop.ai.context.types import ToolInvocation
from agentloop.ai.runtime import (
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    CallLLM,
    CallTool,
    CallToolsBatch,
    Finish,
    FinishReason,
    GeneralChatAgent,
    InterventionPolicy,
    Phase,
    RequestHumanApprove,
    ResolveAbortedTools,
)
from agentloop.ai.tools import HumanIntervention, ToolApi, ToolManifest

CALC = ToolInvocation(id="call_1", identifier="calc", api_name="add", arguments='{"a": 1, "b": 2}')
WIPE = ToolInvocation(id="call_2", identifier="fs", api_name="wipe")

MANIFESTS = {
    "calc": ToolManifest(identifier="calc", api=(ToolApi(name="add"),)),
    "fs": ToolManifest(identifier="fs", api=(ToolApi(name="wipe", human_intervention=HumanIntervention.ALWAYS),)),
}


def _state(**changes) -> AgentState:
    return AgentState(operation_id="op", tool_manifest_map=MANIFESTS, **changes)


def _context(phase: Phase, **payload) -> AgentRuntimeContext:
    return AgentRuntimeContext(phase=phase, payload={"parent_message_id": "msg_parent", **payload})


@pytest.fixture
def agent() -> GeneralChatAgent:
    return GeneralChatAgent(model="gpt-4o-mini", provider="openai")


class TestGeneralChatAgent:
    """Tests for GeneralChatAgent.runner."""

    @pytest.mark.parametrize("phase", [Phase.INIT, Phase.USER_INPUT])
    def test_user_input_calls_llm(self, agent: GeneralChatAgent, phase: Phase) -> None:
        instruction = agent.runner(_context(phase), _state())

        assert instruction == CallLLM(model="gpt-4o-mini", provider="openai", parent_message_id="msg_parent")

    def test_llm_without_tools_finishes(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.LLM_RESULT, tool_calls=[]), _state())

        assert instruction == Finish(reason=FinishReason.COMPLETED)

    def test_single_tool_call(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.LLM_RESULT, tool_calls=[CALC]), _state())

        assert instruction == CallTool(tool_call=CALC, parent_message_id="msg_parent")

    def test_multiple_tool_calls_run_as_batch(self, agent: GeneralChatAgent) -> None:
        second = ToolInvocation(id="call_3", identifier="calc", api_name="add")

        instruction = agent.runner(_context(Phase.LLM_RESULT, tool_calls=[CALC, second]), _state())

        assert isinstance(instruction, CallToolsBatch)
        assert instruction.tool_calls == (CALC, second)

    def test_any_call_needing_approval_holds_the_turn(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.LLM_RESULT, tool_calls=[CALC, WIPE]), _state())

        assert instruction == RequestHumanApprove(pending_tool_calls=(CALC, WIPE), parent_message_id="msg_parent")

    def test_allow_list_skips_approval(self, agent: GeneralChatAgent) -> None:
        manifests = {
            "fs": ToolManifest(
                identifier="fs",
                api=(ToolApi(name="wipe", human_intervention=HumanIntervention.REQUIRED),),
            )
        }
        state = AgentState(
            operation_id="op",
            tool_manifest_map=manifests,
            intervention_policy=InterventionPolicy(approval_mode="allow-list", allow_list=("fs",)),
        )

        assert isinstance(agent.runner(_context(Phase.LLM_RESULT, tool_calls=[WIPE]), state), CallTool)

    def test_force_finish_result_ends_run(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.LLM_RESULT, force_finish=True, tool_calls=[CALC]), _state(max_steps=3))

        assert instruction == Finish(reason=FinishReason.MAX_STEPS_EXCEEDED, reason_detail="max_steps=3")

    @pytest.mark.parametrize("phase", [Phase.TOOL_RESULT, Phase.TOOLS_BATCH_RESULT, Phase.TASKS_BATCH_RESULT])
    def test_tool_results_go_back_to_llm(self, agent: GeneralChatAgent, phase: Phase) -> None:
        instruction = agent.runner(_context(phase), _state(step_count=1))

        assert instruction == CallLLM(model="gpt-4o-mini", provider="openai", parent_message_id="msg_parent")

    def test_step_budget_forces_final_answer(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.TOOL_RESULT), _state(step_count=2, max_steps=2))

        assert isinstance(instruction, CallLLM)
        assert instruction.force_finish is True
        assert instruction.tools_enabled is False

    def test_remaining_pending_calls_are_requested_again(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.TOOL_RESULT), _state(pending_tool_calls=(WIPE,)))

        assert instruction == RequestHumanApprove(pending_tool_calls=(WIPE,), parent_message_id="msg_parent")

    def test_human_approved_tool_runs_it(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.HUMAN_APPROVED_TOOL, approved_tool_call=WIPE), _state())

        assert instruction == CallTool(tool_call=WIPE, parent_message_id="msg_parent")

    def test_human_abort_resolves_pending_calls(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.HUMAN_ABORT, tool_calls=[WIPE]), _state())

        assert instruction == ResolveAbortedTools(pending_tool_calls=(WIPE,), parent_message_id="msg_parent")

    def test_human_abort_without_calls_finishes(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.HUMAN_ABORT, reason="changed my mind"), _state())

        assert instruction == Finish(reason=FinishReason.USER_REQUESTED, reason_detail="changed my mind")

    def test_error_phase_finishes_with_error(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.ERROR, message="boom"), _state())

        assert instruction == Finish(reason=FinishReason.ERROR, reason_detail="boom")


class TestInterruptedRuns:
    """Tests for the cleanup step after cancellation."""

    def test_pending_calls_are_resolved(self, agent: GeneralChatAgent) -> None:
        state = _state(status=AgentStatus.INTERRUPTED, pending_tool_calls=(CALC,))

        instruction = agent.runner(_context(Phase.TOOL_RESULT), state)

        assert instruction == ResolveAbortedTools(pending_tool_calls=(CALC,), parent_message_id="msg_parent")

    def test_calls_from_last_llm_result_are_resolved(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.LLM_RESULT, tool_calls=[CALC]), _state(status=AgentStatus.INTERRUPTED))

        assert isinstance(instruction, ResolveAbortedTools)

    def test_nothing_pending_finishes(self, agent: GeneralChatAgent) -> None:
        instruction = agent.runner(_context(Phase.USER_INPUT), _state(status=AgentStatus.INTERRUPTED))

        assert instruction == Finish(reason=FinishReason.USER_REQUESTED, reason_detail="operation cancelled")
