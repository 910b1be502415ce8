"""Tests for run-loop state, usage accounting, pricing and step context."""

from __future__ import annotations

import pytest

from agentloop.ai.context.types import Message, TodoItem, ToolInvocation
from agentloop.ai.runtime import (
    AgentState,
    Cost,
    InterventionPolicy,
    LLMUsage,
    ModelPricing,
    Usage,
    compute_step_context,
)
from agentloop.ai.runtime.step_context import select_activated_tool_ids, select_todos
from agentloop.ai.tools import HumanIntervention, ToolApi, ToolManifest
from agentloop.services.settings import PricingSettings


def _call(identifier: str = "calc", api_name: str = "add") -> ToolInvocation:
    return ToolInvocation(id=f"call_{api_name}", identifier=identifier, api_name=api_name)


# -----------------------------------------------------------------------------
# Usage and cost
# -----------------------------------------------------------------------------


class TestUsage:
    """Tests for usage deltas and merging."""

    def test_from_llm_counts_one_api_call(self) -> None:
        usage = Usage.from_llm({"input_tokens": 10, "output_tokens": 5, "cached_tokens": 2}, processing_time_ms=12.5)

        assert usage.llm == LLMUsage(
            input_tokens=10,
            output_tokens=5,
            cached_tokens=2,
            total_tokens=15,
            api_calls=1,
            processing_time_ms=12.5,
        )

    def test_from_tools_groups_by_tool(self) -> None:
        usage = Usage.from_tools([_call(), _call(), _call("web", "search")], execution_time_ms=30.0)

        assert usage.tools.total_calls == 3
        assert usage.tools.by_tool == {"calc/add": 2, "web/search": 1}

    def test_merge_is_additive(self) -> None:
        first = Usage.from_llm({"input_tokens": 10, "output_tokens": 5})
        second = Usage.from_llm({"input_tokens": 1, "output_tokens": 1, "total_tokens": 2}).merge(
            Usage.from_tools([_call()])
        )

        merged = first.merge(second)

        assert merged.llm.input_tokens == 11
        assert merged.llm.total_tokens == 17
        assert merged.llm.api_calls == 2
        assert merged.tools.by_tool == {"calc/add": 1}
        assert first.merge(None) is first

    def test_state_accumulates_deltas(self) -> None:
        state = AgentState(operation_id="op")

        updated = state.accumulate(Usage.from_llm({"input_tokens": 4}), Cost(total=0.5))

        assert updated.usage.llm.input_tokens == 4
        assert updated.cost.total == 0.5
        assert state.usage == Usage()
        assert state.accumulate(None, None) is state


class TestModelPricing:
    """Tests for ModelPricing.cost_for."""

    def test_cached_tokens_billed_at_cached_rate(self) -> None:
        pricing = ModelPricing(input_per_million=2.0, output_per_million=8.0, cached_input_per_million=0.5)

        cost = pricing.cost_for(LLMUsage(input_tokens=1_000_000, cached_tokens=200_000, output_tokens=500_000))

        assert cost.llm.input == pytest.approx(1.6)
        assert cost.llm.cached == pytest.approx(0.1)
        assert cost.llm.output == pytest.approx(4.0)
        assert cost.total == pytest.approx(5.7)

    def test_from_settings(self) -> None:
        pricing = ModelPricing.from_settings(PricingSettings(input_per_million=1.0, currency="EUR"))

        assert pricing.input_per_million == 1.0
        assert pricing.cost_for(LLMUsage()).llm.currency == "EUR"


# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------


class TestAgentState:
    """Tests for AgentState helpers."""

    def test_message_key_prefers_metadata(self) -> None:
        assert AgentState(operation_id="op").message_key == "op"
        assert AgentState(operation_id="op", metadata={"topic_id": "tpc"}).message_key == "tpc"
        assert AgentState(operation_id="op", metadata={"message_key": "k", "topic_id": "tpc"}).message_key == "k"

    def test_with_updates_returns_new_state(self) -> None:
        state = AgentState(operation_id="op")

        updated = state.with_updates(messages=[Message.user("hi")], step_count=1)

        assert isinstance(updated.messages, tuple)
        assert updated.step_count == 1
        assert state.messages == ()
        assert updated.operation_id == "op"

    @pytest.mark.parametrize(("max_steps", "step_count", "expected"), [(None, 99, False), (2, 1, False), (2, 2, True)])
    def test_step_budget(self, max_steps, step_count, expected) -> None:
        assert AgentState(operation_id="op", max_steps=max_steps, step_count=step_count).is_over_step_budget is expected


class TestInterventionPolicy:
    """Tests for InterventionPolicy.requires_approval."""

    manifest = ToolManifest(
        identifier="fs",
        api=(
            ToolApi(name="read"),
            ToolApi(name="write", human_intervention=HumanIntervention.REQUIRED),
            ToolApi(name="delete", human_intervention=HumanIntervention.ALWAYS),
        ),
    )

    @pytest.mark.parametrize(
        ("policy", "api_name", "expected"),
        [
            (InterventionPolicy(), "read", False),
            (InterventionPolicy(), "write", False),
            (InterventionPolicy(), "delete", True),
            (InterventionPolicy(approval_mode="manual"), "write", True),
            (InterventionPolicy(approval_mode="manual"), "read", False),
            (InterventionPolicy(approval_mode="allow-list"), "write", True),
            (InterventionPolicy(approval_mode="allow-list", allow_list=("fs",)), "write", False),
            (InterventionPolicy(approval_mode="allow-list", allow_list=("fs/write",)), "write", False),
            (InterventionPolicy(approval_mode="allow-list", allow_list=("fs",)), "delete", True),
        ],
    )
    def test_policy_matrix(self, policy: InterventionPolicy, api_name: str, expected: bool) -> None:
        assert policy.requires_approval(_call("fs", api_name), self.manifest) is expected

    def test_unknown_tool_never_requires_approval(self) -> None:
        assert InterventionPolicy(approval_mode="manual").requires_approval(_call("ghost"), None) is False


# -----------------------------------------------------------------------------
# Step context
# -----------------------------------------------------------------------------


class TestStepContext:
    """Tests for facts recomputed from the message log."""

    def test_latest_todo_state_wins(self) -> None:
        messages = [
            Message.tool("v1", tool_call_id="a", plugin_state={"todos": ["old"]}),
            Message.tool(
                "v2",
                tool_call_id="b",
                plugin_state={"todos": {"items": [{"text": "draft", "status": "completed"}, {"content": "ship"}]}},
            ),
            Message.assistant("ok"),
        ]

        assert select_todos(messages) == (TodoItem(text="draft", completed=True), TodoItem(text="ship"))

    def test_no_todos(self) -> None:
        assert select_todos([Message.user("hi")]) == ()

    def test_malformed_todo_entries_are_skipped(self) -> None:
        todos = [3, "write tests", None, ["nested"], {"text": "ship"}]
        messages = [Message.tool("", tool_call_id="a", plugin_state={"todos": todos})]

        assert select_todos(messages) == (TodoItem(text="write tests"), TodoItem(text="ship"))
        assert select_todos([Message.tool("", tool_call_id="b", plugin_state={"todos": 7})]) == ()
        assert select_todos([Message.tool("", tool_call_id="c", plugin_state={"todos": {"items": "x"}})]) == ()

    def test_activated_tools_accumulate_in_order(self) -> None:
        messages = [
            Message.tool("", tool_call_id="a", plugin_state={"activatedTools": [{"identifier": "web"}]}),
            Message.tool("", tool_call_id="b", plugin_state={"activatedTools": ["calc", "web"]}),
        ]

        assert select_activated_tool_ids(messages) == ("web", "calc")

    def test_page_xml_provider_failures_are_ignored(self) -> None:
        def broken() -> str:
            raise RuntimeError("editor closed")

        assert compute_step_context([], page_xml_provider=broken).page_editor_xml is None
        assert compute_step_context([], page_xml_provider=lambda: "<doc/>").page_editor_xml == "<doc/>"

    def test_open_todos(self) -> None:
        step = compute_step_context([Message.tool("", tool_call_id="a", plugin_state={"todos": ["x"]})])

        assert step.has_open_todos
