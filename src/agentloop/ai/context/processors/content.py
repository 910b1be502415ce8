"""Final content shaping: reaction feedback and multimodal user content."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, ClassVar

from ..base import BaseProcessor
from ..prompts import escape_xml, xml_block
from ..types import CapabilityCheck, Message, MessageFile, PipelineContext, Role, append_text

__all__ = [
    "FileContextConfig",
    "MessageContentProcessor",
    "ReactionFeedbackProcessor",
]

LOGGER = logging.getLogger(__name__)


class ReactionFeedbackProcessor(BaseProcessor):
    """Appends the user's emoji reactions to the assistant messages they reacted to."""

    name: ClassVar[str] = "ReactionFeedbackProcessor"

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled

    def _process(self, context: PipelineContext) -> PipelineContext:
        if not self._enabled:
            return context
        messages = list(context.messages)
        count = 0
        for index, message in enumerate(messages):
            if message.role != Role.ASSISTANT or not message.reactions:
                continue
            lines = [
                f'  <reaction emoji="{escape_xml(reaction.emoji)}" count="{reaction.count}" />'
                for reaction in message.reactions
            ]
            messages[index] = replace(message, content=append_text(message.content, xml_block("user_reactions", lines)))
            count += 1
        if not count:
            return context
        return context.with_messages(messages).with_metadata(reactionFeedbackInjected=count)


@dataclass(slots=True, frozen=True)
class FileContextConfig:
    enabled: bool = True
    include_file_url: bool = True


class MessageContentProcessor(BaseProcessor):
    """Builds provider content for user messages with attachments.

    Images and videos become content parts when the model supports them;
    every other attachment (and unsupported media) is described in a
    ``<files_info>`` block appended to the text.
    """

    name: ClassVar[str] = "MessageContentProcessor"

    def __init__(
        self,
        *,
        model: str,
        provider: str,
        file_context: FileContextConfig | None = None,
        is_can_use_vision: CapabilityCheck | None = None,
        is_can_use_video: CapabilityCheck | None = None,
    ) -> None:
        self._model = model
        self._provider = provider
        self._file_context = file_context or FileContextConfig()
        self._vision = is_can_use_vision(model, provider) if is_can_use_vision else True
        self._video = is_can_use_video(model, provider) if is_can_use_video else False

    def _process(self, context: PipelineContext) -> PipelineContext:
        messages = list(context.messages)
        count = 0
        for index, message in enumerate(messages):
            if message.role == Role.USER and message.files:
                messages[index] = self._build_user_content(message)
                count += 1
        if not count:
            return context
        return context.with_messages(messages).with_metadata(messageContentProcessed=count)

    def _build_user_content(self, message: Message) -> Message:
        media: list[dict[str, Any]] = []
        described: list[MessageFile] = []
        for file in message.files:
            if file.is_image and self._vision and file.url:
                media.append({"type": "image_url", "image_url": {"url": file.url, "detail": "auto"}})
            elif file.is_video and self._video and file.url:
                media.append({"type": "video_url", "video_url": {"url": file.url}})
            else:
                described.append(file)

        text = message.text
        if described and self._file_context.enabled:
            text = append_text(text, self._files_info(described))
        if not media:
            return replace(message, content=text)
        parts: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
        return replace(message, content=[*parts, *media])

    def _files_info(self, files: list[MessageFile]) -> str:
        lines = []
        for file in files:
            url = file.url if self._file_context.include_file_url else None
            attrs = {"id": file.id, "name": file.name or None, "type": file.file_type, "url": url or None}
            rendered = " ".join(f'{key}="{escape_xml(value)}"' for key, value in attrs.items() if value is not None)
            if file.content:
                lines.append(f"  <file {rendered}>{escape_xml(file.content)}</file>")
            else:
                lines.append(f"  <file {rendered} />")
        return xml_block("files_info", lines)
