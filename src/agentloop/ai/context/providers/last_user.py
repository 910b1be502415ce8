"""Injectors that append to user messages near the end of the conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Mapping, Sequence

from ..base import BaseLastUserContentProvider, BaseProcessor
from ..prompts import FORCE_FINISH_PROMPT, escape_xml, xml_block
from ..types import Message, PipelineContext, Role, TodoItem, append_text

__all__ = [
    "ForceFinishSummaryInjector",
    "GTDTodoInjector",
    "PageContentContext",
    "PageEditorContextInjector",
    "PageSelectionsInjector",
]

LOGGER = logging.getLogger(__name__)


class PageSelectionsInjector(BaseProcessor):
    """Appends the page text a user selected to the message that carried the selection."""

    name: ClassVar[str] = "PageSelectionsInjector"

    def __init__(self, *, enabled: bool = False) -> None:
        self._enabled = enabled

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        messages = list(context.messages)
        injected = 0
        for index, message in enumerate(messages):
            if message.role != Role.USER:
                continue
            selections: Sequence[Mapping[str, Any]] = message.metadata.get("pageSelections") or ()
            block = _format_selections(selections)
            if block:
                messages[index] = replace(message, content=append_text(message.content, block))
                injected += 1
        if not injected:
            return context
        return context.with_messages(messages).with_metadata(pageSelectionsInjected=injected)


def _format_selections(selections: Sequence[Mapping[str, Any]]) -> str:
    lines = []
    for selection in selections:
        text = str(selection.get("content") or selection.get("text") or "").strip()
        if text:
            lines.append(f"  <selection>{escape_xml(text)}</selection>")
    return xml_block("page_selections", lines) if lines else ""


@dataclass(slots=True, frozen=True)
class PageContentContext:
    markdown: str = ""
    xml: str = ""
    title: str = ""
    char_count: int | None = None
    line_count: int | None = None


class PageEditorContextInjector(BaseLastUserContentProvider):
    """Appends the current page document to the last user message."""

    name: ClassVar[str] = "PageEditorContextInjector"

    def __init__(self, *, enabled: bool = False, page_content_context: PageContentContext | None = None) -> None:
        self._enabled = enabled
        self._page = page_content_context

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._enabled or self._page is None:
            return None
        body = self._page.xml or self._page.markdown
        if not body:
            return None
        return xml_block(
            "current_page",
            [body],
            title=self._page.title or None,
            chars=self._page.char_count,
            lines=self._page.line_count,
            format="xml" if self._page.xml else "markdown",
        )

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        return context.with_metadata(pageEditorContextInjected=True)


class GTDTodoInjector(BaseLastUserContentProvider):
    """Appends the todo list to the last user message."""

    name: ClassVar[str] = "GTDTodoInjector"

    def __init__(self, *, todos: Sequence[TodoItem], enabled: bool = True) -> None:
        self._todos = tuple(todos)
        self._enabled = enabled

    def build_content(self, context: PipelineContext) -> str | None:
        if not self._enabled or not self._todos:
            return None
        lines = [
            f'  <todo status="{"completed" if item.completed else "pending"}">{escape_xml(item.text)}</todo>'
            for item in self._todos
        ]
        return xml_block("todo_list", lines)

    def after_injection(self, context: PipelineContext) -> PipelineContext:
        pending = sum(1 for item in self._todos if not item.completed)
        return context.with_metadata(gtdTodoInjected=True, gtdTodoPending=pending)


class ForceFinishSummaryInjector(BaseProcessor):
    """Appends a closing instruction once the step budget is exhausted."""

    name: ClassVar[str] = "ForceFinishSummaryInjector"

    def __init__(self, *, enabled: bool = False, prompt: str = FORCE_FINISH_PROMPT) -> None:
        self._enabled = enabled
        self._prompt = prompt

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        message = Message.user(
            self._prompt,
            id="force-finish-summary",
            metadata={"systemInjection": True, "injectType": "force-finish"},
        )
        LOGGER.debug("Step budget exhausted; injecting force-finish prompt")
        return context.with_messages((*context.messages, message)).with_metadata(forceFinishInjected=True)
