"""Wire settings, tools and collaborators into a ready-to-run loop."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping, Sequence

from ...services.settings import Settings
from ..client import AIClient, ModelProvider
from ..context.assembler import MessagesEngineConfig
from ..context.types import Message
from ..tools.executor import ExecutorConfig, ToolExecutor
from ..tools.registry import ToolRegistry
from .agent import GeneralChatAgent
from .event_log import RunEventLogger
from .executors import StepExecutors
from .loop import AgentRunLoop, RunNotifier
from .operations import OperationRegistry
from .pricing import ModelPricing
from .runtime import AgentRuntime
from .store import InMemoryMessageStore, MessageStore
from .types import AgentState, InterventionPolicy

__all__ = ["create_initial_state", "create_run_loop"]

LOGGER = logging.getLogger(__name__)


def create_run_loop(
    settings: Settings,
    registry: ToolRegistry,
    *,
    model: ModelProvider | None = None,
    store: MessageStore | None = None,
    operations: OperationRegistry | None = None,
    engine_config: MessagesEngineConfig | None = None,
    notifier: RunNotifier | None = None,
) -> AgentRunLoop:
    """Build an :class:`AgentRunLoop` from persisted settings.

    ``engine_config`` supplies the context features (system role, memory,
    knowledge, ...); model and provider always come from ``settings``.
    """
    store = store or InMemoryMessageStore()
    config = replace(
        engine_config or MessagesEngineConfig(model=settings.model, provider=settings.provider),
        model=settings.model,
        provider=settings.provider,
        enable_system_date=settings.context.enable_system_date,
    )
    tool_executor = ToolExecutor(
        registry,
        ExecutorConfig(
            default_timeout=settings.runtime.tool_timeout_seconds,
            parallel=settings.runtime.parallel_tool_calls,
            log_arguments=settings.debug_logging,
        ),
    )
    executors = StepExecutors(
        model=model or AIClient(settings.to_client_settings()),
        tool_executor=tool_executor,
        store=store,
        engine_config=config,
        pricing=ModelPricing.from_settings(settings.pricing),
        temperature=settings.temperature,
        emit_stream_events=settings.debug_event_logging,
    )
    runtime = AgentRuntime(GeneralChatAgent(model=settings.model, provider=settings.provider), executors)
    LOGGER.debug("Run loop ready (model=%s, tools=%d)", settings.model, len(registry))
    return AgentRunLoop(
        runtime,
        operations or OperationRegistry(),
        store,
        notifier=notifier,
        event_logger=RunEventLogger(enabled=settings.debug_event_logging),
        operation_retention_seconds=settings.runtime.operation_retention_seconds,
    )


def create_initial_state(
    settings: Settings,
    registry: ToolRegistry,
    *,
    messages: Sequence[Message] = (),
    metadata: Mapping[str, Any] | None = None,
    operation_id: str | None = None,
) -> AgentState:
    return AgentRuntime.create_initial_state(
        operation_id=operation_id,
        messages=messages,
        max_steps=settings.runtime.max_steps,
        tools=registry.manifests(),
        metadata=metadata,
        intervention_policy=InterventionPolicy(
            approval_mode=settings.runtime.approval_mode,
            allow_list=tuple(settings.runtime.allow_list),
        ),
    )
