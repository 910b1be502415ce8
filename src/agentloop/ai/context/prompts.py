"""Text templates shared by the context providers."""

from __future__ import annotations

from typing import Iterable

__all__ = [
    "AVAILABLE_TOOLS_DESCRIPTION",
    "FORCE_FINISH_PROMPT",
    "HISTORY_SUMMARY_DOCSTRING",
    "escape_xml",
    "xml_block",
]

AVAILABLE_TOOLS_DESCRIPTION = (
    "These tools are installed but not yet enabled. Use activateTools to enable them when needed."
)

HISTORY_SUMMARY_DOCSTRING = "Users may have lots of chat messages, here is the summary of the history:"

FORCE_FINISH_PROMPT = (
    "You have reached the maximum number of steps for this task. Do not call any more tools. "
    "Summarize what has been done so far and give the user your best final answer."
)


def escape_xml(value: object) -> str:
    text = "" if value is None else str(value)
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def xml_block(tag: str, lines: Iterable[str], /, **attrs: object) -> str:
    """Wrap ``lines`` in ``<tag ...>`` ... ``</tag>``; attributes with ``None`` are skipped."""
    rendered = "".join(f' {key}="{escape_xml(value)}"' for key, value in attrs.items() if value is not None)
    body = "\n".join(line for line in lines if line)
    return f"<{tag}{rendered}>\n{body}\n</{tag}>"
