"""Debug event logging for agent runs (one JSONL file per operation)."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from ...utils import logging as logging_utils
from .types import AgentEvent, AgentState

LOGGER = logging.getLogger(__name__)


def _default_event_dir() -> Path:
    log_path = logging_utils.get_log_path()
    if log_path is not None:
        return log_path.parent / "events"
    return Path.home() / ".agentloop" / "logs" / "events"


@dataclass(slots=True)
class _NullRunEventLog:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None

    def __enter__(self) -> "_NullRunEventLog":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        return False

    def log_step(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class RunEventLog:
    """Context manager that writes structured JSONL entries for one run."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._finalized = False
        self._write_entry("start", context)

    def __enter__(self) -> "RunEventLog":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        if exc is not None and not self._finalized:
            self.log_failure(message=str(exc))
        elif not self._finalized:
            self.log_failure(message="run ended without completion")
        return False

    def close(self) -> None:
        try:
            self._file.close()
        except OSError:
            LOGGER.debug("Failed to close event log %s", self.path, exc_info=True)

    def log_step(
        self,
        *,
        step_index: int,
        phase: str | None,
        events: Sequence[AgentEvent],
    ) -> None:
        payload = {
            "step_index": step_index,
            "next_phase": phase,
            "events": [event.to_dict() for event in events],
        }
        self._write_entry("step", payload)

    def log_completion(self, state: AgentState) -> None:
        if self._finalized:
            return
        payload = {
            "status": state.status,
            "step_count": state.step_count,
            "message_count": len(state.messages),
            "usage": {
                "input_tokens": state.usage.llm.input_tokens,
                "output_tokens": state.usage.llm.output_tokens,
                "tool_calls": state.usage.tools.total_calls,
            },
            "cost": state.cost.total,
        }
        if state.error:
            payload["error"] = dict(state.error)
        self._write_entry("completion", payload)
        self._finalized = True
        self.close()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {"status": "failure", "message": message}
        if details:
            payload["details"] = dict(details)
        self._write_entry("failure", payload)
        self._finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        entry: dict[str, Any] = {
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                entry[key] = self._safe_json(value)
        json.dump(entry, self._file, ensure_ascii=False)
        self._file.write("\n")
        self._file.flush()

    def _safe_json(self, value: Any, *, depth: int = 0) -> Any:
        if depth > 6:
            return repr(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(key): self._safe_json(val, depth=depth + 1) for key, val in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [self._safe_json(item, depth=depth + 1) for item in value]
        if hasattr(value, "to_dict") and callable(value.to_dict):
            return self._safe_json(value.to_dict(), depth=depth + 1)
        return repr(value)


class RunEventLogger:
    """Factory for per-run event logs when debug logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _default_event_dir()

    def start_run(
        self,
        *,
        operation_id: str,
        state: AgentState,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunEventLog | _NullRunEventLog:
        if not self.enabled:
            return _NullRunEventLog()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(operation_id)
            context = {
                "operation_id": operation_id,
                "message_key": state.message_key,
                "max_steps": state.max_steps,
                "tools": list(state.tool_manifest_map),
                "metadata": dict(metadata or {}),
                "history": [message.to_dict() for message in state.messages],
            }
            log_run = RunEventLog(path, context=context)
            LOGGER.debug("Run event log started: %s", path)
            return log_run
        except OSError:
            LOGGER.debug("Failed to start run event log", exc_info=True)
            return _NullRunEventLog()

    def _allocate_path(self, operation_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        safe_id = "".join(ch for ch in operation_id if ch.isalnum())[:20] or "run"
        return self._base_dir / f"run-{timestamp}-{safe_id}.jsonl"


__all__ = [
    "RunEventLog",
    "RunEventLogger",
]
