"""Persisted message log consumed by the run loop."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import fields, replace
from typing import Any, Mapping, Protocol, runtime_checkable

from ..context.types import Message

__all__ = ["InMemoryMessageStore", "MessageStore"]

LOGGER = logging.getLogger(__name__)

_MESSAGE_FIELDS = frozenset(f.name for f in fields(Message))


@runtime_checkable
class MessageStore(Protocol):
    """Source of truth for a conversation; re-read before every step."""

    async def create(self, key: str, message: Message) -> Message:
        ...

    async def update(self, key: str, message_id: str, patch: Mapping[str, Any]) -> Message:
        ...

    async def query(self, key: str) -> list[Message]:
        ...


class InMemoryMessageStore:
    """Process-local store; each write is a read-modify-write of the latest list."""

    def __init__(self, initial: Mapping[str, list[Message]] | None = None) -> None:
        self._messages: dict[str, list[Message]] = defaultdict(list)
        for key, messages in (initial or {}).items():
            self._messages[key] = list(messages)
        self._lock = asyncio.Lock()

    async def create(self, key: str, message: Message) -> Message:
        stamped = message
        if not message.created_at:
            now = time.time()
            stamped = replace(message, created_at=now, updated_at=now)
        async with self._lock:
            current = list(self._messages[key])
            current.append(stamped)
            self._messages[key] = current
        return stamped

    async def update(self, key: str, message_id: str, patch: Mapping[str, Any]) -> Message:
        unknown = set(patch) - _MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Unknown message field(s): {sorted(unknown)}")
        async with self._lock:
            current = list(self._messages[key])
            for index, message in enumerate(current):
                if message.id == message_id:
                    updated = replace(message, **{**patch, "updated_at": time.time()})
                    current[index] = updated
                    self._messages[key] = current
                    return updated
        raise KeyError(f"Message {message_id!r} not found in {key!r}")

    async def query(self, key: str) -> list[Message]:
        return list(self._messages.get(key, ()))

    def snapshot(self, key: str) -> tuple[Message, ...]:
        return tuple(self._messages.get(key, ()))
