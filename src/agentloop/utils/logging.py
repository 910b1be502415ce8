"""Logging helpers shared by the agent runtime and its collaborators."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, MutableMapping

__all__ = [
    "OperationLogAdapter",
    "get_log_path",
    "get_operation_logger",
    "resolve_level",
    "setup_logging",
]

_DEFAULT_LOG_DIR = Path.home() / ".agentloop" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LEVEL_ENV = "AGENTLOOP_LOG_LEVEL"
_CONFIGURED = False
_LOG_PATH: Path | None = None


class OperationLogAdapter(logging.LoggerAdapter):
    """Prefixes records with the operation id (and step when known)."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        operation_id = extra.get("operation_id") or "-"
        step = extra.get("step")
        prefix = f"[op={operation_id}]" if step is None else f"[op={operation_id} step={step}]"
        return f"{prefix} {msg}", kwargs

    def for_step(self, step: int) -> "OperationLogAdapter":
        return OperationLogAdapter(self.logger, {**(self.extra or {}), "step": step})


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating run log and optional console output."""

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    resolved_level = resolve_level(level)
    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "agentloop.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(resolved_level)
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(resolved_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(resolved_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def resolve_level(level: int | str | None) -> int:
    """Return a numeric level from an int, a level name, or ``AGENTLOOP_LOG_LEVEL``."""

    if isinstance(level, int):
        return level
    name = (level or os.environ.get(_LEVEL_ENV) or "INFO").strip().upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def get_operation_logger(name: str, operation_id: str, *, step: int | None = None) -> OperationLogAdapter:
    """Return a logger whose records carry the operation id."""

    return OperationLogAdapter(logging.getLogger(name), {"operation_id": operation_id, "step": step})


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("AGENTLOOP_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = logging.WARNING if root_level < logging.WARNING else root_level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
