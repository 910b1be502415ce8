"""Shared test helpers and stub classes.

Reusable fakes for the model provider and tools. Import from here instead of
duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Sequence

from agentloop.ai.client import AIStreamEvent, TokenCounterRegistry
from agentloop.ai.context.assembler import MessagesEngineConfig
from agentloop.ai.context.tool_names import ToolNameResolver
from agentloop.ai.context.types import Message
from agentloop.ai.runtime.agent import GeneralChatAgent
from agentloop.ai.runtime.executors import StepExecutors
from agentloop.ai.runtime.loop import AgentRunLoop
from agentloop.ai.runtime.operations import OperationRegistry
from agentloop.ai.runtime.runtime import AgentRuntime
from agentloop.ai.runtime.store import InMemoryMessageStore
from agentloop.ai.tools.executor import ExecutorConfig, ToolExecutor
from agentloop.ai.tools.registry import ToolRegistry
from agentloop.ai.tools.types import ToolApi, ToolManifest

NAMES = ToolNameResolver()


@dataclass
class ScriptedTurn:
    """One scripted model response."""

    content: str = ""
    tool_calls: Sequence[tuple[str, str, Mapping[str, Any]]] = ()
    finish_reason: str | None = None
    usage: Mapping[str, int] = field(default_factory=lambda: {"input_tokens": 10, "output_tokens": 5})


class ScriptedModel:
    """Model provider replaying :class:`ScriptedTurn` values, one per call.

    Tool calls are ``(identifier, api_name, arguments)`` tuples; ids are
    ``call_<turn>_<index>``.
    """

    def __init__(self, turns: Sequence[ScriptedTurn]) -> None:
        self._turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    async def stream_completion(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        cancellation: Any = None,
    ) -> AsyncIterator[AIStreamEvent]:
        turn_index = len(self.calls)
        self.calls.append({"messages": list(messages), "model": model, "tools": list(tools or ())})
        turn = self._turns[turn_index] if turn_index < len(self._turns) else ScriptedTurn(content="done")
        if turn.content:
            yield AIStreamEvent(type="content.delta", content=turn.content)
        for index, (identifier, api_name, arguments) in enumerate(turn.tool_calls):
            yield AIStreamEvent(
                type="tool_calls.function.arguments.done",
                tool_name=NAMES.generate(identifier, api_name),
                tool_index=index,
                tool_arguments=json.dumps(dict(arguments)),
                tool_call_id=f"call_{turn_index}_{index}",
            )
        reason = turn.finish_reason or ("tool_calls" if turn.tool_calls else "stop")
        yield AIStreamEvent(type="finish", finish_reason=reason, usage=dict(turn.usage))


class FailingModel:
    """Model provider whose stream raises ``error`` immediately."""

    def __init__(self, error: Exception) -> None:
        self._error = error

    async def stream_completion(self, messages, **kwargs) -> AsyncIterator[AIStreamEvent]:
        raise self._error
        yield  # pragma: no cover - makes this an async generator


def calculator_manifest(**api_overrides: Any) -> ToolManifest:
    return ToolManifest(
        identifier="calc",
        name="Calculator",
        api=(
            ToolApi(name="add", description="Add two numbers", **api_overrides),
            ToolApi(name="slow", description="Sleeps before answering"),
        ),
    )


def make_registry(*, slow_seconds: float = 10.0, **api_overrides: Any) -> ToolRegistry:
    registry = ToolRegistry()

    async def slow(args: Mapping[str, Any]) -> str:
        await asyncio.sleep(slow_seconds)
        return "slow done"

    registry.register_function(
        calculator_manifest(**api_overrides),
        {"add": lambda args: args["a"] + args["b"], "slow": slow},
    )
    return registry


@dataclass
class Harness:
    loop: AgentRunLoop
    store: InMemoryMessageStore
    operations: OperationRegistry
    registry: ToolRegistry
    model: Any

    async def seed(self, key: str, *messages: Message) -> None:
        for message in messages:
            await self.store.create(key, message)


def make_harness(
    model: Any,
    *,
    registry: ToolRegistry | None = None,
    engine_config: MessagesEngineConfig | None = None,
    notifier: Any = None,
    event_logger: Any = None,
    model_name: str = "test-model",
    store: InMemoryMessageStore | None = None,
    token_counters: TokenCounterRegistry | None = None,
) -> Harness:
    registry = registry or make_registry()
    store = store if store is not None else InMemoryMessageStore()
    operations = OperationRegistry()
    executors = StepExecutors(
        model=model,
        tool_executor=ToolExecutor(registry, ExecutorConfig(default_timeout=None)),
        store=store,
        engine_config=engine_config
        or MessagesEngineConfig(model=model_name, provider="openai", enable_system_date=False),
        token_counters=token_counters,
    )
    runtime = AgentRuntime(GeneralChatAgent(model=model_name, provider="openai"), executors)
    loop = AgentRunLoop(runtime, operations, store, notifier=notifier, event_logger=event_logger)
    return Harness(loop=loop, store=store, operations=operations, registry=registry, model=model)
