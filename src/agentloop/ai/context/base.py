"""Base classes shared by every context processor."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import ClassVar, Protocol, runtime_checkable

from .types import Message, PipelineContext, Role, append_text

__all__ = [
    "BaseFirstUserContentProvider",
    "BaseLastUserContentProvider",
    "BaseProcessor",
    "BaseSystemRoleProvider",
    "ContextProcessor",
    "insert_before_first_user",
]

LOGGER = logging.getLogger(__name__)

SYSTEM_INJECTION_ID = "system-injection"


@runtime_checkable
class ContextProcessor(Protocol):
    """A single pipeline stage."""

    name: str

    def process(self, context: PipelineContext) -> PipelineContext:
        ...


class BaseProcessor(ABC):
    """Times the stage and records it in ``context.stats``."""

    name: ClassVar[str] = "BaseProcessor"

    def process(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        result = self._process(context)
        duration_ms = (time.perf_counter() - started) * 1000
        return result.with_stats(result.stats.record(self.name, duration_ms))

    @abstractmethod
    def _process(self, context: PipelineContext) -> PipelineContext:
        """Return the transformed context; never mutate ``context``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# -----------------------------------------------------------------------------
# Injector shapes
# -----------------------------------------------------------------------------


class BaseFirstUserContentProvider(BaseProcessor):
    """Injects content into a system-injection user message before the first user message.

    The first injector to run creates the injection message; later injectors
    append to it, so content appears in execution order. Without any user
    message the context passes through unchanged.
    """

    inject_type: ClassVar[str] = "context"

    @abstractmethod
    def build_content(self, context: PipelineContext) -> str | None:
        """Return the text to inject, or ``None`` to skip."""

    def _process(self, context: PipelineContext) -> PipelineContext:
        content = self.build_content(context)
        if not content:
            return context
        messages = list(context.messages)
        index = _first_user_index(messages)
        if index is None:
            LOGGER.debug("%s: no user message, skipping injection", self.name)
            return context
        anchor = messages[index]
        if anchor.is_system_injection:
            messages[index] = replace(anchor, content=append_text(anchor.content, content))
        else:
            messages.insert(
                index,
                Message.user(
                    content,
                    id=SYSTEM_INJECTION_ID,
                    metadata={"systemInjection": True, "injectType": self.inject_type},
                ),
            )
        return self.after_injection(context.with_messages(messages))

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        """Hook for recording metadata once content was injected."""
        return context


class BaseSystemRoleProvider(BaseProcessor):
    """Appends content to the first system message, creating one at index 0 if needed."""

    @abstractmethod
    def build_system_role_content(self, context: PipelineContext) -> str | None:
        """Return the text to append, or ``None`` to skip."""

    def _process(self, context: PipelineContext) -> PipelineContext:
        content = self.build_system_role_content(context)
        if not content:
            return context
        messages = list(context.messages)
        for index, message in enumerate(messages):
            if message.role == Role.SYSTEM:
                messages[index] = replace(message, content=append_text(message.content, content))
                break
        else:
            messages.insert(0, Message.system(content, id=f"{self.name}-system"))
        return self.after_injection(context.with_messages(messages))

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context


class BaseLastUserContentProvider(BaseProcessor):
    """Appends content to the last user message; no-op without one."""

    @abstractmethod
    def build_content(self, context: PipelineContext) -> str | None:
        """Return the text to append, or ``None`` to skip."""

    def _process(self, context: PipelineContext) -> PipelineContext:
        content = self.build_content(context)
        if not content:
            return context
        messages = list(context.messages)
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if message.role == Role.USER:
                messages[index] = replace(message, content=append_text(message.content, content))
                return self.after_injection(context.with_messages(messages))
        LOGGER.debug("%s: no user message, skipping injection", self.name)
        return context

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context


def insert_before_first_user(context: PipelineContext, message: Message) -> PipelineContext | None:
    """Insert a standalone message before the first user message.

    Returns ``None`` when the context has no user message.
    """
    messages = list(context.messages)
    index = _first_user_index(messages)
    if index is None:
        return None
    messages.insert(index, message)
    return context.with_messages(messages)


def _first_user_index(messages: list[Message]) -> int | None:
    for index, message in enumerate(messages):
        if message.role == Role.USER:
            return index
    return None
