"""Step executors: one handler per instruction type.

Collaborators (model, tools, message store, context engine) are injected at
construction so tests can substitute fakes. Every handler reads the persisted
log rather than trusting ``state.messages``.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from ..cancellation import CancellationToken
from ..client import AIStreamEvent, ModelProvider, TokenCounterRegistry
from ..context.assembler import MessagesEngine, MessagesEngineConfig, ToolsConfig
from ..context.tool_names import ToolNameResolver
from ..context.types import Message, Role, ToolInvocation
from ..errors import ProviderError
from ..tools.executor import ToolExecutorProtocol
from ..tools.types import CANCELLED_TOOL_CONTENT, ToolResult
from .pricing import ModelPricing
from .store import MessageStore
from .types import (
    AgentEvent,
    AgentRuntimeContext,
    AgentState,
    AgentStatus,
    CallLLM,
    CallTool,
    CallToolsBatch,
    EventType,
    Finish,
    Instruction,
    Phase,
    RequestHumanApprove,
    ResolveAbortedTools,
    SessionInfo,
    StepResult,
    Usage,
)

__all__ = ["StepExecutors", "new_message_id"]

LOGGER = logging.getLogger(__name__)

EngineFactory = Callable[[MessagesEngineConfig], MessagesEngine]


def new_message_id(prefix: str = "msg") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


@dataclass(slots=True)
class _ToolCallBuffer:
    """Accumulates one streamed tool call."""

    index: int
    name: str = ""
    arguments: str = ""
    call_id: str | None = None

    def feed(self, event: AIStreamEvent) -> None:
        if event.tool_name:
            self.name = event.tool_name
        if event.tool_call_id:
            self.call_id = event.tool_call_id
        if event.type.endswith(".done") and event.tool_arguments is not None:
            self.arguments = event.tool_arguments
        elif event.arguments_delta:
            self.arguments += event.arguments_delta


@dataclass(slots=True)
class _StreamOutcome:
    content: str = ""
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    tool_calls: dict[int, _ToolCallBuffer] = field(default_factory=dict)
    events: list[AgentEvent] = field(default_factory=list)


class StepExecutors:
    """Runs instructions against the injected collaborators."""

    def __init__(
        self,
        *,
        model: ModelProvider,
        tool_executor: ToolExecutorProtocol,
        store: MessageStore,
        engine_config: MessagesEngineConfig,
        engine_factory: EngineFactory = MessagesEngine,
        pricing: ModelPricing | None = None,
        name_resolver: ToolNameResolver | None = None,
        temperature: float | None = None,
        emit_stream_events: bool = False,
        token_counters: TokenCounterRegistry | None = None,
    ) -> None:
        self._model = model
        self._tools = tool_executor
        self._store = store
        self._engine_config = engine_config
        self._engine_factory = engine_factory
        self._pricing = pricing or ModelPricing()
        self._names = name_resolver or ToolNameResolver()
        self._temperature = temperature
        self._emit_stream_events = emit_stream_events
        self._token_counters = token_counters or TokenCounterRegistry.global_instance()

    @property
    def engine_config(self) -> MessagesEngineConfig:
        return self._engine_config

    async def execute(
        self,
        instruction: Instruction,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StepResult:
        match instruction:
            case CallLLM():
                return await self.call_llm(instruction, state, context, cancellation=cancellation)
            case CallTool():
                return await self.call_tool(instruction, state, context, cancellation=cancellation)
            case CallToolsBatch():
                return await self.call_tools_batch(instruction, state, context, cancellation=cancellation)
            case RequestHumanApprove():
                return await self.request_human_approve(instruction, state, context)
            case ResolveAbortedTools():
                return await self.resolve_aborted_tools(instruction, state, context)
            case Finish():
                return await self.finish(instruction, state, context)
        raise TypeError(f"Unknown instruction: {instruction!r}")

    # ------------------------------------------------------------------
    # call_llm
    # ------------------------------------------------------------------
    async def call_llm(
        self,
        instruction: CallLLM,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StepResult:
        key = state.message_key
        history = await self._store.query(key)
        config = self._build_engine_config(instruction, state, context)
        assembled = self._engine_factory(config).process(history)
        tools = self._provider_tools(state) if instruction.tools_enabled else []

        assistant = Message.assistant(
            "",
            id=new_message_id(),
            parent_id=instruction.parent_message_id,
            agent_id=state.metadata.get("agent_id"),
            metadata={"model": config.model, "provider": config.provider},
        )
        await self._store.create(key, assistant)
        events = [AgentEvent(EventType.LLM_START, {"message_id": assistant.id, "model": config.model})]

        started = time.perf_counter()
        chat_messages = assembled.to_chat_params()
        outcome = await self._stream(
            chat_messages,
            model=config.model,
            tools=tools,
            cancellation=cancellation,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        events.extend(outcome.events)

        tool_calls = tuple(self._resolve_tool_call(buffer, state) for _, buffer in sorted(outcome.tool_calls.items()))
        await self._store.update(key, assistant.id, {"content": outcome.content, "tools": tool_calls})
        messages = await self._store.query(key)

        raw_usage = outcome.usage or self._estimate_usage(config.model, chat_messages, outcome)
        usage = Usage.from_llm(raw_usage, processing_time_ms=elapsed_ms)
        cost = self._pricing.cost_for(usage.llm)
        step_count = state.step_count if instruction.force_finish else state.step_count + 1
        new_state = state.with_updates(messages=messages, step_count=step_count, pending_tool_calls=tool_calls)

        result_payload = {
            "content": outcome.content,
            "tool_calls": [call.to_dict() for call in tool_calls],
            "finish_reason": outcome.finish_reason,
            "usage": dict(raw_usage),
        }
        if outcome.finish_reason == "error":
            error = ProviderError(
                message="Model provider ended the stream with an error",
                details={"model": config.model, "message_id": assistant.id},
                provider=config.provider,
            ).to_dict()
            LOGGER.warning("Model stream for %s finished with an error", assistant.id)
            events.append(AgentEvent(EventType.ERROR, {"error": error}))
            return StepResult(
                events=tuple(events),
                new_state=new_state.with_updates(status=AgentStatus.ERROR, error=error),
                usage=usage,
                cost=cost,
            )
        if outcome.finish_reason == "abort":
            LOGGER.debug("Model stream aborted with %d pending tool call(s)", len(tool_calls))
            next_context = self._next_context(
                Phase.HUMAN_ABORT,
                new_state,
                {
                    "parent_message_id": assistant.id,
                    "reason": "user_cancelled",
                    "has_tools_calling": bool(tool_calls),
                    "tool_calls": tool_calls,
                    "result": result_payload,
                },
                usage,
            )
        else:
            events.append(AgentEvent(EventType.LLM_RESULT, {"message_id": assistant.id, **result_payload}))
            next_context = self._next_context(
                Phase.LLM_RESULT,
                new_state,
                {
                    "parent_message_id": assistant.id,
                    "has_tools_calling": bool(tool_calls),
                    "tool_calls": tool_calls,
                    "force_finish": instruction.force_finish,
                    "result": result_payload,
                },
                usage,
            )
        return StepResult(events=tuple(events), new_state=new_state, next_context=next_context, usage=usage, cost=cost)

    def _build_engine_config(
        self, instruction: CallLLM, state: AgentState, context: AgentRuntimeContext
    ) -> MessagesEngineConfig:
        base = self._engine_config
        manifests = tuple(state.tool_manifest_map.values())
        tool_ids = tuple(state.tool_manifest_map)
        if context.step_context is not None:
            tool_ids += tuple(i for i in context.step_context.activated_tool_ids if i not in tool_ids)
        changes: dict[str, Any] = {
            "model": instruction.model or base.model,
            "provider": instruction.provider or base.provider,
            "step_context": context.step_context,
            "initial_context": context.initial_context or base.initial_context,
            "force_finish": instruction.force_finish,
        }
        if manifests or tool_ids:
            changes["tools_config"] = ToolsConfig(tools=tool_ids, manifests=manifests if instruction.tools_enabled else ())
        if base.gtd is not None and base.gtd.enabled and context.step_context and context.step_context.todos:
            changes["gtd"] = replace(base.gtd, todos=context.step_context.todos)
        return replace(base, **changes)

    def _provider_tools(self, state: AgentState) -> list[dict[str, Any]]:
        tools: list[dict[str, Any]] = []
        for manifest in state.tool_manifest_map.values():
            tools.extend(manifest.to_openai_tools(self._names.generate))
        return tools

    async def _stream(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str,
        tools: Sequence[Mapping[str, Any]],
        cancellation: CancellationToken | None,
    ) -> _StreamOutcome:
        outcome = _StreamOutcome()
        chunks: list[str] = []
        async for event in self._model.stream_completion(
            messages,
            model=model,
            tools=tools or None,
            temperature=self._temperature,
            cancellation=cancellation,
        ):
            if event.type == "content.delta" and event.content:
                chunks.append(event.content)
                if self._emit_stream_events:
                    outcome.events.append(AgentEvent(EventType.LLM_STREAM, {"content": event.content}))
            elif event.type.startswith("tool_calls.function.arguments"):
                index = event.tool_index if event.tool_index is not None else len(outcome.tool_calls)
                buffer = outcome.tool_calls.setdefault(index, _ToolCallBuffer(index=index))
                buffer.feed(event)
            elif event.type == "finish":
                outcome.finish_reason = event.finish_reason or "stop"
                outcome.usage = dict(event.usage)
        outcome.content = "".join(chunks)
        return outcome

    def _estimate_usage(
        self, model: str, messages: Sequence[Mapping[str, Any]], outcome: _StreamOutcome
    ) -> dict[str, int]:
        """Count tokens locally for providers that stream no usage block."""
        counter = self._token_counters.get(model)
        input_tokens = sum(counter.count(_prompt_text(message)) for message in messages)
        output_text = outcome.content + "".join(
            buffer.name + buffer.arguments for buffer in outcome.tool_calls.values()
        )
        output_tokens = counter.count(output_text)
        LOGGER.debug("Provider reported no usage; estimated %d in / %d out", input_tokens, output_tokens)
        return {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        }

    def _resolve_tool_call(self, buffer: _ToolCallBuffer, state: AgentState) -> ToolInvocation:
        call_id = buffer.call_id or new_message_id("call")
        try:
            resolved = self._names.resolve(buffer.name, state.tool_manifest_map)
        except ValueError:
            LOGGER.warning("Model requested unknown tool name %r", buffer.name)
            return ToolInvocation(id=call_id, identifier=buffer.name, api_name=buffer.name, arguments=buffer.arguments)
        return ToolInvocation(
            id=call_id,
            identifier=resolved.identifier,
            api_name=resolved.api_name,
            arguments=buffer.arguments or "{}",
            type=resolved.type,
        )

    # ------------------------------------------------------------------
    # call_tool / call_tools_batch
    # ------------------------------------------------------------------
    async def call_tool(
        self,
        instruction: CallTool,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StepResult:
        call = instruction.tool_call
        events = [AgentEvent(EventType.TOOL_START, {"tool_call": call.to_dict()})]
        started = time.perf_counter()
        results = await self._tools.execute_batch([call], cancellation=cancellation)
        elapsed_ms = (time.perf_counter() - started) * 1000
        tool_message = await self._write_tool_result(state, call, results[0], instruction.parent_message_id)
        events.append(AgentEvent(EventType.TOOL_RESULT, {"tool_call_id": call.id, **_result_summary(results[0])}))

        messages = await self._store.query(state.message_key)
        remaining = tuple(pending for pending in state.pending_tool_calls if pending.id != call.id)
        new_state = state.with_updates(messages=messages, pending_tool_calls=remaining)
        usage = Usage.from_tools([call], execution_time_ms=elapsed_ms)
        next_context = self._next_context(
            Phase.TOOL_RESULT,
            new_state,
            {"parent_message_id": tool_message.id, "tool_call_id": call.id, "result": _result_summary(results[0])},
            usage,
        )
        return StepResult(events=tuple(events), new_state=new_state, next_context=next_context, usage=usage)

    async def call_tools_batch(
        self,
        instruction: CallToolsBatch,
        state: AgentState,
        context: AgentRuntimeContext,
        *,
        cancellation: CancellationToken | None = None,
    ) -> StepResult:
        calls = instruction.tool_calls
        events = [AgentEvent(EventType.TOOL_START, {"tool_call": call.to_dict()}) for call in calls]
        started = time.perf_counter()
        results = await self._tools.execute_batch(calls, cancellation=cancellation)
        elapsed_ms = (time.perf_counter() - started) * 1000

        last_message_id = instruction.parent_message_id
        for call, result in zip(calls, results):
            message = await self._write_tool_result(state, call, result, instruction.parent_message_id)
            last_message_id = message.id
            events.append(AgentEvent(EventType.TOOL_RESULT, {"tool_call_id": call.id, **_result_summary(result)}))

        executed = {call.id for call in calls}
        remaining = tuple(pending for pending in state.pending_tool_calls if pending.id not in executed)
        new_state = state.with_updates(pending_tool_calls=remaining)
        usage = Usage.from_tools(calls, execution_time_ms=elapsed_ms)
        next_context = self._next_context(
            Phase.TOOLS_BATCH_RESULT,
            new_state,
            {
                "parent_message_id": last_message_id,
                "tool_count": len(calls),
                "cancelled": sum(1 for result in results if result.is_cancelled),
            },
            usage,
        )
        return StepResult(events=tuple(events), new_state=new_state, next_context=next_context, usage=usage)

    async def _write_tool_result(
        self, state: AgentState, call: ToolInvocation, result: ToolResult, parent_id: str | None
    ) -> Message:
        message = Message.tool(
            result.content,
            tool_call_id=call.id,
            id=new_message_id("tool"),
            parent_id=parent_id,
            agent_id=state.metadata.get("agent_id"),
            plugin=call,
            plugin_state=result.state,
            plugin_error=result.error,
        )
        return await self._store.create(state.message_key, message)

    # ------------------------------------------------------------------
    # Human intervention, abort cleanup, finish
    # ------------------------------------------------------------------
    async def request_human_approve(
        self, instruction: RequestHumanApprove, state: AgentState, context: AgentRuntimeContext
    ) -> StepResult:
        pending = instruction.pending_tool_calls
        prompt = {
            "reason": instruction.reason,
            "parent_message_id": instruction.parent_message_id,
            "tool_calls": [call.to_dict() for call in pending],
            "requested_at": time.time(),
        }
        if instruction.parent_message_id:
            await self._mark_pending_intervention(state, instruction.parent_message_id, pending)
        new_state = state.with_updates(
            status=AgentStatus.WAITING_FOR_HUMAN,
            pending_tool_calls=pending,
            pending_human_prompt=prompt,
        )
        usage = Usage()
        usage = replace(usage, humans=replace(usage.humans, approval_requests=1))
        event = AgentEvent(EventType.HUMAN_APPROVE_REQUIRED, {"pending_tool_calls": prompt["tool_calls"]})
        return StepResult(events=(event,), new_state=new_state, usage=usage)

    async def _mark_pending_intervention(
        self, state: AgentState, message_id: str, pending: Sequence[ToolInvocation]
    ) -> None:
        for message in await self._store.query(state.message_key):
            if message.id == message_id:
                metadata = {**message.metadata, "pendingIntervention": [call.id for call in pending]}
                await self._store.update(state.message_key, message_id, {"metadata": metadata})
                return

    async def resolve_aborted_tools(
        self, instruction: ResolveAbortedTools, state: AgentState, context: AgentRuntimeContext
    ) -> StepResult:
        """Write a cancelled result for every pending call that has none yet."""
        key = state.message_key
        answered = {m.tool_call_id for m in await self._store.query(key) if m.role == Role.TOOL}
        cancelled = ToolResult.cancelled()
        events: list[AgentEvent] = []
        for call in instruction.pending_tool_calls:
            if call.id in answered:
                continue
            await self._write_tool_result(state, call, cancelled, instruction.parent_message_id)
            answered.add(call.id)
            events.append(
                AgentEvent(EventType.TOOL_RESULT, {"tool_call_id": call.id, "content": CANCELLED_TOOL_CONTENT})
            )
        LOGGER.debug("Resolved %d aborted tool call(s)", len(events))
        messages = await self._store.query(key)
        new_state = state.with_updates(status=AgentStatus.DONE, messages=messages, pending_tool_calls=())
        events.append(AgentEvent(EventType.DONE, {"reason": "user_requested", "reason_detail": "tools aborted"}))
        return StepResult(events=tuple(events), new_state=new_state)

    async def finish(self, instruction: Finish, state: AgentState, context: AgentRuntimeContext) -> StepResult:
        new_state = state.with_updates(status=AgentStatus.DONE, pending_tool_calls=())
        event = AgentEvent(
            EventType.DONE,
            {"reason": instruction.reason, "reason_detail": instruction.reason_detail, "final_state": new_state.status},
        )
        return StepResult(events=(event,), new_state=new_state)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _next_context(
        phase: Phase, state: AgentState, payload: Mapping[str, Any], usage: Usage | None
    ) -> AgentRuntimeContext:
        return AgentRuntimeContext(
            phase=phase,
            payload=payload,
            session=SessionInfo(
                session_id=str(state.metadata.get("session_id") or state.operation_id),
                step_count=state.step_count,
                message_count=len(state.messages),
                status=state.status,
            ),
            step_usage=usage,
        )


def _result_summary(result: ToolResult) -> dict[str, Any]:
    summary: dict[str, Any] = {"success": result.success, "content": result.content}
    if result.error:
        summary["error"] = dict(result.error)
    if result.is_cancelled:
        summary["cancelled"] = True
    return summary


def _prompt_text(message: Mapping[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        text = content
    elif isinstance(content, Sequence):
        text = "".join(str(part.get("text", "")) for part in content if isinstance(part, Mapping))
    else:
        text = ""
    for call in message.get("tool_calls") or ():
        function = call.get("function") or {}
        text += str(function.get("name", "")) + str(function.get("arguments", ""))
    return text
