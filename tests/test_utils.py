"""Tests for the logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from agentloop.utils import logging as logging_utils


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch):
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    monkeypatch.setattr(logging_utils, "_CONFIGURED", False)
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_resolve_level_accepts_names_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    assert logging_utils.resolve_level(logging.DEBUG) == logging.DEBUG
    assert logging_utils.resolve_level("warning") == logging.WARNING
    assert logging_utils.resolve_level("nonsense") == logging.INFO

    monkeypatch.setenv("AGENTLOOP_LOG_LEVEL", "error")
    assert logging_utils.resolve_level(None) == logging.ERROR


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_root_logging) -> None:
    path = logging_utils.setup_logging("DEBUG", log_dir=tmp_path, console=False)

    logging.getLogger("agentloop.test").info("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert path == tmp_path / "agentloop.log"
    assert logging_utils.get_log_path() == path
    assert "hello from test" in path.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_is_idempotent(tmp_path: Path, restore_root_logging) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)

    assert first == second


def test_operation_logger_prefixes_records(caplog: pytest.LogCaptureFixture) -> None:
    log = logging_utils.get_operation_logger("agentloop.test.op", "op_123")

    with caplog.at_level(logging.INFO, logger="agentloop.test.op"):
        log.info("started")
        log.for_step(2).info("stepped")

    assert caplog.messages == ["[op=op_123] started", "[op=op_123 step=2] stepped"]
