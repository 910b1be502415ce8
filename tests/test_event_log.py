"""Tests for the run event logging helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agentloop.ai.context.types import Message
from agentloop.ai.runtime import AgentEvent, AgentRuntime, AgentStatus, EventType, RunEventLogger
from tests.helpers import ScriptedModel, ScriptedTurn, calculator_manifest, make_harness


def _read_entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _state(**metadata):
    return AgentRuntime.create_initial_state(
        operation_id="op_log/1",
        messages=[Message.user("Hi", id="u1")],
        tools=[calculator_manifest()],
        metadata=metadata or {"topic_id": "t1"},
    )


def test_run_event_logger_writes_entries(tmp_path: Path) -> None:
    logger = RunEventLogger(enabled=True, base_dir=tmp_path)
    state = _state()
    run = logger.start_run(operation_id="op_log/1", state=state, metadata={"source": "test"})

    with run:
        run.log_step(step_index=0, phase="llm_result", events=[AgentEvent(EventType.LLM_START, {"model": "m"})])
        run.log_completion(state.with_updates(status=AgentStatus.DONE, step_count=1))

    log_files = list(tmp_path.glob("*.jsonl"))
    assert len(log_files) == 1
    assert log_files[0].name.startswith("run-")
    assert log_files[0].name.endswith("-oplog1.jsonl")
    entries = _read_entries(log_files[0])
    assert [entry["event"] for entry in entries] == ["start", "step", "completion"]
    assert entries[0]["message_key"] == "t1"
    assert entries[0]["tools"] == ["calc"]
    assert entries[0]["metadata"] == {"source": "test"}
    assert entries[0]["history"][0]["content"] == "Hi"
    assert entries[1]["events"] == [{"type": "llm_start", "model": "m"}]
    assert entries[-1]["status"] == AgentStatus.DONE
    assert entries[-1]["step_count"] == 1


def test_run_event_logger_records_failure_on_exception(tmp_path: Path) -> None:
    logger = RunEventLogger(enabled=True, base_dir=tmp_path)

    with pytest.raises(RuntimeError):
        with logger.start_run(operation_id="op_fail", state=_state()):
            raise RuntimeError("boom")

    entries = _read_entries(next(tmp_path.glob("*.jsonl")))
    assert entries[-1]["event"] == "failure"
    assert entries[-1]["message"] == "boom"


def test_run_event_logger_records_unfinished_run(tmp_path: Path) -> None:
    logger = RunEventLogger(enabled=True, base_dir=tmp_path)

    with logger.start_run(operation_id="op_open", state=_state()):
        pass

    entries = _read_entries(next(tmp_path.glob("*.jsonl")))
    assert entries[-1]["event"] == "failure"
    assert entries[-1]["message"] == "run ended without completion"


def test_run_event_logger_disabled_is_noop(tmp_path: Path) -> None:
    logger = RunEventLogger(enabled=False, base_dir=tmp_path)
    run = logger.start_run(operation_id="op_none", state=_state())

    with run:
        run.log_step(step_index=0, phase=None, events=())
        run.log_completion(_state())

    assert run.path is None
    assert list(tmp_path.glob("*.jsonl")) == []


@pytest.mark.asyncio
async def test_run_loop_writes_one_step_entry_per_step(tmp_path: Path) -> None:
    harness = make_harness(
        ScriptedModel([ScriptedTurn(content="hello")]),
        event_logger=RunEventLogger(enabled=True, base_dir=tmp_path),
    )
    state = _state()
    await harness.seed("t1", *state.messages)

    result = await harness.loop.run(state, AgentRuntime.create_initial_context(state))

    entries = _read_entries(next(tmp_path.glob("*.jsonl")))
    assert [entry["event"] for entry in entries] == ["start", "step", "step", "completion"]
    assert entries[1]["next_phase"] == "llm_result"
    assert entries[2]["next_phase"] is None
    assert entries[-1]["status"] == result.status == AgentStatus.DONE
    assert entries[-1]["usage"]["input_tokens"] == 10
