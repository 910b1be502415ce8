"""Template and placeholder expansion for message text."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Any, Callable, ClassVar, Mapping

from ..base import BaseProcessor
from ..types import Message, PipelineContext, Role

__all__ = ["InputTemplateProcessor", "PlaceholderVariablesProcessor"]

LOGGER = logging.getLogger(__name__)

_TEXT_PLACEHOLDER = re.compile(r"\{\{\s*text\s*\}\}")
_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.-]*)\s*\}\}")


class InputTemplateProcessor(BaseProcessor):
    """Wraps each real user message in the agent's input template (``{{text}}`` marks the input)."""

    name: ClassVar[str] = "InputTemplateProcessor"

    def __init__(self, *, input_template: str | None = None) -> None:
        self._template = input_template or ""

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._template:
            return context
        if not _TEXT_PLACEHOLDER.search(self._template):
            LOGGER.warning("Input template has no {{text}} placeholder; leaving user messages unchanged")
            return context
        messages = [self._apply(message) for message in context.messages]
        return context.with_messages(messages).with_metadata(inputTemplateApplied=True)

    def _apply(self, message: Message) -> Message:
        if message.role != Role.USER or message.is_system_injection or not isinstance(message.content, str):
            return message
        text = message.content
        return replace(message, content=_TEXT_PLACEHOLDER.sub(lambda _match: text, self._template))


class PlaceholderVariablesProcessor(BaseProcessor):
    """Replaces ``{{name}}`` with the output of the matching generator.

    Each generator runs at most once per pipeline run; unknown placeholders are
    left intact.
    """

    name: ClassVar[str] = "PlaceholderVariablesProcessor"

    def __init__(self, *, variable_generators: Mapping[str, Callable[[], Any]] | None = None) -> None:
        self._generators = dict(variable_generators or {})

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._generators:
            return context
        cache: dict[str, str] = {}

        def resolve(match: re.Match[str]) -> str:
            key = match.group(1)
            generator = self._generators.get(key)
            if generator is None:
                return match.group(0)
            if key not in cache:
                cache[key] = str(generator())
            return cache[key]

        messages = [self._replace(message, resolve) for message in context.messages]
        if not cache:
            return context
        return context.with_messages(messages).with_metadata(placeholderVariables=sorted(cache))

    @staticmethod
    def _replace(message: Message, resolve: Callable[[re.Match[str]], str]) -> Message:
        content = message.content
        if isinstance(content, str):
            if "{{" not in content:
                return message
            return replace(message, content=_PLACEHOLDER.sub(resolve, content))
        if isinstance(content, list):
            parts = [
                {**part, "text": _PLACEHOLDER.sub(resolve, str(part.get("text", "")))}
                if isinstance(part, Mapping) and part.get("type") == "text"
                else part
                for part in content
            ]
            return replace(message, content=parts)
        return message
