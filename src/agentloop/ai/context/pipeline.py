"""Sequential runner for context processors.

The pipeline threads one immutable :class:`PipelineContext` through each
stage in order. Stages never see each other directly; a stage that aborts the
context short-circuits everything after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .base import ContextProcessor
from .types import Message, PipelineContext, ProcessorStats

__all__ = ["ContextPipeline", "PipelineResult"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PipelineResult:
    """Final messages plus the provenance gathered along the way."""

    messages: tuple[Message, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)
    stats: ProcessorStats = field(default_factory=ProcessorStats)
    is_aborted: bool = False
    abort_reason: str | None = None

    def to_chat_params(self) -> list[dict[str, Any]]:
        return [message.to_chat_param() for message in self.messages]


class ContextPipeline:
    """Runs processors strictly in sequence; exceptions propagate to the caller."""

    def __init__(self, processors: Iterable[ContextProcessor]) -> None:
        self._processors: tuple[ContextProcessor, ...] = tuple(processors)

    @property
    def processors(self) -> Sequence[ContextProcessor]:
        return self._processors

    @property
    def processor_names(self) -> tuple[str, ...]:
        return tuple(processor.name for processor in self._processors)

    def run(self, messages: Iterable[Message], *, metadata: Mapping[str, Any] | None = None) -> PipelineResult:
        context = PipelineContext.initial(messages, metadata=metadata)
        for processor in self._processors:
            if context.is_aborted:
                LOGGER.debug("Pipeline aborted before %s: %s", processor.name, context.abort_reason)
                break
            context = processor.process(context)

        if LOGGER.isEnabledFor(logging.DEBUG):
            for name, duration in context.stats.durations_ms.items():
                LOGGER.debug("context stage %s took %.2fms", name, duration)
            LOGGER.debug(
                "Context pipeline ran %d stage(s) in %.2fms: %d -> %d message(s)",
                len(context.stats.executed),
                context.stats.total_ms,
                len(context.initial_state),
                len(context.messages),
            )

        return PipelineResult(
            messages=context.messages,
            metadata=context.metadata,
            stats=context.stats,
            is_aborted=context.is_aborted,
            abort_reason=context.abort_reason,
        )
