"""Per-step facts derived from the persisted message log."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..context.types import Message, Role, StepContext, TodoItem

__all__ = ["compute_step_context", "select_activated_tool_ids", "select_todos"]

LOGGER = logging.getLogger(__name__)

PageXmlProvider = Callable[[], str | None]


def select_todos(messages: Sequence[Message]) -> tuple[TodoItem, ...]:
    """Return the todo list from the most recent tool state that carries one."""
    for message in reversed(messages):
        state = message.plugin_state or {}
        todos = state.get("todos")
        if todos is None:
            continue
        items = todos.get("items", ()) if isinstance(todos, Mapping) else todos
        if isinstance(items, str) or not isinstance(items, Iterable):
            LOGGER.debug("Ignoring malformed todo list of type %s", type(items).__name__)
            return ()
        coerced = (_coerce_todo(item) for item in items if item)
        return tuple(todo for todo in coerced if todo is not None)
    return ()


def _coerce_todo(item: Any) -> TodoItem | None:
    if isinstance(item, TodoItem):
        return item
    if isinstance(item, str):
        return TodoItem(text=item)
    if not isinstance(item, Mapping):
        LOGGER.debug("Skipping todo entry of type %s", type(item).__name__)
        return None
    text = item.get("text") or item.get("content") or ""
    completed = bool(item.get("completed") or item.get("status") == "completed")
    return TodoItem(text=str(text), completed=completed)


def select_activated_tool_ids(messages: Iterable[Message]) -> tuple[str, ...]:
    """Accumulate tool identifiers activated during the conversation, first activation first."""
    seen: dict[str, None] = {}
    for message in messages:
        if message.role != Role.TOOL or not message.plugin_state:
            continue
        for entry in message.plugin_state.get("activatedTools") or ():
            identifier = entry.get("identifier") if isinstance(entry, dict) else entry
            if identifier:
                seen.setdefault(str(identifier), None)
    return tuple(seen)


def compute_step_context(
    messages: Sequence[Message],
    *,
    page_xml_provider: PageXmlProvider | None = None,
) -> StepContext:
    page_xml = None
    if page_xml_provider is not None:
        try:
            page_xml = page_xml_provider()
        except Exception:
            LOGGER.debug("Page XML unavailable for this step", exc_info=True)
    return StepContext(
        todos=select_todos(messages),
        activated_tool_ids=select_activated_tool_ids(messages),
        page_editor_xml=page_xml or None,
    )
