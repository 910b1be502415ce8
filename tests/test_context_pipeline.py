"""Tests for the context pipeline runner and the messages engine."""

from __future__ import annotations

from typing import ClassVar

import pytest

from agentloop.ai.context import (
    AgentGroupConfig,
    BaseProcessor,
    ContextPipeline,
    GTDConfig,
    InitialContext,
    KnowledgeConfig,
    Message,
    MessagesEngine,
    MessagesEngineConfig,
    PageEditorState,
    PipelineContext,
    StepContext,
    TodoItem,
    ToolInvocation,
    ToolsConfig,
    UserMemoryConfig,
    build_processors,
    check_processor_order,
)
from agentloop.ai.context.processors import GroupAgentInfo
from agentloop.ai.context.prompts import FORCE_FINISH_PROMPT
from agentloop.ai.context.providers import KnowledgeFile
from agentloop.ai.errors import ConfigurationError
from agentloop.ai.tools import ToolApi, ToolManifest


class _Append(BaseProcessor):
    name: ClassVar[str] = "Append"

    def __init__(self, text: str) -> None:
        self._text = text

    def _process(self, context: PipelineContext) -> PipelineContext:
        return context.with_messages((*context.messages, Message.assistant(self._text)))


class _Abort(BaseProcessor):
    name: ClassVar[str] = "Abort"

    def _process(self, context: PipelineContext) -> PipelineContext:
        return context.abort("enough")


def _config(**overrides) -> MessagesEngineConfig:
    values = {"model": "gpt-4o-mini", "provider": "openai", "enable_system_date": False}
    values.update(overrides)
    return MessagesEngineConfig(**values)


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------


class TestContextPipeline:
    """Tests for ContextPipeline.run."""

    def test_runs_processors_in_sequence(self) -> None:
        pipeline = ContextPipeline([_Append("a"), _Append("b")])

        result = pipeline.run([Message.user("start")])

        assert [message.content for message in result.messages] == ["start", "a", "b"]
        assert result.stats.executed == ("Append", "Append")
        assert pipeline.processor_names == ("Append", "Append")
        assert not result.is_aborted

    def test_abort_skips_remaining_processors(self) -> None:
        result = ContextPipeline([_Append("a"), _Abort(), _Append("never")]).run([Message.user("start")])

        assert [message.content for message in result.messages] == ["start", "a"]
        assert result.is_aborted
        assert result.abort_reason == "enough"
        assert result.stats.executed == ("Append", "Abort")

    def test_input_messages_are_not_mutated(self) -> None:
        messages = [Message.user("start")]

        ContextPipeline([_Append("a")]).run(messages)

        assert messages == [Message.user("start")]

    def test_processor_errors_propagate(self) -> None:
        class _Boom(BaseProcessor):
            name: ClassVar[str] = "Boom"

            def _process(self, context: PipelineContext) -> PipelineContext:
                raise RuntimeError("bad stage")

        with pytest.raises(RuntimeError):
            ContextPipeline([_Boom()]).run([])


# -----------------------------------------------------------------------------
# Processor ordering
# -----------------------------------------------------------------------------


class TestProcessorOrder:
    """Tests for build_processors and the ordering rules."""

    def test_default_pipeline_shape(self) -> None:
        names = [processor.name for processor in build_processors(_config())]

        assert names[0] == "SystemRoleInjector"
        assert names[-1] == "MessageCleanupProcessor"
        assert names.index("KnowledgeInjector") < names.index("AgentCouncilFlattenProcessor")
        assert names.index("ToolCallProcessor") < names.index("ToolMessageReorder")
        assert "UserMemoryInjector" not in names
        assert "GroupOrchestrationFilterProcessor" not in names
        assert "ToolSystemRoleProvider" not in names

    def test_optional_stages_added_when_configured(self) -> None:
        config = _config(
            user_memory=UserMemoryConfig(enabled=True, memories={"facts": ["likes tea"]}),
            agent_group=AgentGroupConfig(agent_map={"a": GroupAgentInfo(name="A")}, current_agent_id="a"),
            tools_config=ToolsConfig(tools=("calc",), manifests=(ToolManifest(identifier="calc"),)),
        )

        names = [processor.name for processor in build_processors(config)]

        assert names.index("UserMemoryInjector") < names.index("GroupContextInjector")
        assert names.index("GroupOrchestrationFilterProcessor") < names.index("GroupRoleTransformProcessor")
        assert "ToolSystemRoleProvider" in names

    def test_same_config_builds_same_pipeline(self) -> None:
        config = _config(system_role="x")

        first = [processor.name for processor in build_processors(config)]
        second = [processor.name for processor in build_processors(config)]

        assert first == second
        check_processor_order(first)

    def test_violations_raise_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            check_processor_order(["AgentCouncilFlattenProcessor", "KnowledgeInjector"])
        with pytest.raises(ConfigurationError):
            check_processor_order(["ToolMessageReorder", "ToolCallProcessor"])
        with pytest.raises(ConfigurationError) as excinfo:
            check_processor_order(["MessageCleanupProcessor", "ForceFinishSummaryInjector"])
        assert excinfo.value.details["order"] == ["MessageCleanupProcessor", "ForceFinishSummaryInjector"]

    def test_missing_stages_are_not_violations(self) -> None:
        check_processor_order(["ToolCallProcessor", "MessageCleanupProcessor"])
        check_processor_order([])


# -----------------------------------------------------------------------------
# Messages engine
# -----------------------------------------------------------------------------


class TestMessagesEngine:
    """End-to-end assembly through MessagesEngine."""

    def test_knowledge_is_injected_before_the_user_message(self) -> None:
        engine = MessagesEngine(
            _config(
                system_role="You are helpful.",
                knowledge=KnowledgeConfig(file_contents=[KnowledgeFile(content="Refunds take 5 days.", name="faq")]),
            )
        )

        result = engine.process([Message.user("How long do refunds take?")])

        params = result.to_chat_params()
        assert [param["role"] for param in params] == ["system", "user", "user"]
        assert params[0]["content"] == "You are helpful."
        assert "Refunds take 5 days." in params[1]["content"]
        assert params[2]["content"] == "How long do refunds take?"
        assert result.metadata["knowledgeInjected"] is True

    def test_assembly_is_deterministic(self, conversation) -> None:
        config = _config(system_role="role", gtd=GTDConfig(enabled=True, todos=[TodoItem(text="step")]))

        first = MessagesEngine(config).process_messages(conversation)
        second = MessagesEngine(config).process_messages(conversation)

        assert first == second

    def test_tool_conversation_is_provider_ready(self, conversation) -> None:
        call = ToolInvocation(id="call_1", identifier="calc", api_name="add", arguments='{"a": 2, "b": 3}')
        messages = [
            *conversation,
            Message.assistant("", id="a1", tools=(call,)),
            Message.tool("5", tool_call_id="call_1", id="t1", plugin=call),
        ]
        config = _config(
            tools_config=ToolsConfig(
                tools=("calc",),
                manifests=(ToolManifest(identifier="calc", api=(ToolApi(name="add", description="Add"),)),),
            )
        )

        params = MessagesEngine(config).process_messages(messages)

        assert params[0]["role"] == "system"
        assert '<api identifier="add">Add</api>' in params[0]["content"]
        assert params[2]["tool_calls"] == [
            {"id": "call_1", "type": "function", "function": {"name": "calc____add", "arguments": '{"a": 2, "b": 3}'}}
        ]
        assert params[3] == {"role": "tool", "content": "5", "tool_call_id": "call_1", "name": "calc____add"}

    def test_system_date_respects_date_aware_tools(self, conversation) -> None:
        with_date = MessagesEngine(_config(enable_system_date=True)).process_messages(conversation)
        without_date = MessagesEngine(
            _config(enable_system_date=True, tools_config=ToolsConfig(tools=("lobe-web-browsing",)))
        ).process_messages(conversation)

        assert "Current date: " in with_date[0]["content"]
        assert "Current date: " not in without_date[0]["content"]

    def test_force_finish_adds_closing_instruction(self, conversation) -> None:
        params = MessagesEngine(_config(force_finish=True)).process_messages(conversation)

        assert params[-1] == {"role": "user", "content": FORCE_FINISH_PROMPT}

    def test_page_editor_uses_latest_step_xml(self, conversation) -> None:
        config = _config(
            initial_context=InitialContext(page_editor=PageEditorState(title="Doc", xml="<old/>")),
            step_context=StepContext(page_editor_xml="<new/>"),
        )

        params = MessagesEngine(config).process_messages(conversation)

        assert "<new/>" in params[-1]["content"]
        assert "<old/>" not in params[-1]["content"]

    def test_other_agents_speak_as_users(self) -> None:
        config = _config(
            agent_group=AgentGroupConfig(
                agent_map={"agt_1": GroupAgentInfo(name="Writer"), "agt_2": GroupAgentInfo(name="Editor")},
                current_agent_id="agt_1",
                current_agent_name="Writer",
            )
        )
        messages = [
            Message.user("Write a title", id="u1"),
            Message.assistant("Try 'Dawn'", id="a2", agent_id="agt_2"),
        ]

        params = MessagesEngine(config).process_messages(messages)

        assert [param["role"] for param in params] == ["user", "user", "user"]
        assert "<group_context>" in params[0]["content"]
        assert params[2]["content"].startswith('<speaker name="Editor">')
