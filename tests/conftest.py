"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from agentloop.ai.context.types import Message


@pytest.fixture(autouse=True)
def _clear_agentloop_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment overrides out of settings tests."""
    for name in list(os.environ):
        if name.startswith("AGENTLOOP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def conversation() -> list[Message]:
    return [
        Message.system("You are helpful.", id="sys"),
        Message.user("What is 2 + 3?", id="u1"),
    ]
