"""Tool executor: runs registry tools and captures every failure as a result."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..cancellation import CancellationToken
from ..context.types import ToolInvocation
from ..errors import AgentLoopError, ErrorCode, ToolNotFoundError
from .registry import ToolRegistry
from .types import ToolResult, parse_tool_arguments

__all__ = [
    "ExecutorConfig",
    "ToolExecutor",
    "ToolExecutorProtocol",
]

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """Contract consumed by the ``call_tool`` steps."""

    async def execute(
        self,
        identifier: str,
        api_name: str,
        arguments: str | Mapping[str, Any] | None,
        *,
        call_id: str = "",
    ) -> ToolResult:
        ...

    async def execute_batch(
        self,
        calls: Sequence[ToolInvocation],
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[ToolResult]:
        ...


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        default_timeout: Per-call timeout in seconds; ``None`` disables it.
        parallel: Run batch calls concurrently.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
    """

    default_timeout: float | None = 60.0
    parallel: bool = True
    log_arguments: bool = False


class ToolExecutor:
    """Executor for running tools from a registry.

    Example:
        executor = ToolExecutor(registry)
        result = await executor.execute("calc", "add", '{"a": 1, "b": 2}')
    """

    def __init__(self, registry: ToolRegistry, config: ExecutorConfig | None = None) -> None:
        self._registry = registry
        self._config = config or ExecutorConfig()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def execute(
        self,
        identifier: str,
        api_name: str,
        arguments: str | Mapping[str, Any] | None,
        *,
        call_id: str = "",
        timeout: float | None = None,
    ) -> ToolResult:
        """Execute one API call; never raises for tool-level failures."""

        start_time = time.perf_counter()
        label = f"{identifier}.{api_name}"

        def elapsed() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            parsed = parse_tool_arguments(arguments)
        except ValueError as exc:
            LOGGER.warning("Failed to parse arguments for tool %s: %s", label, exc)
            return ToolResult.from_error(
                f"Invalid arguments: {exc}",
                error_type=ErrorCode.INVALID_ARGUMENTS,
                duration_ms=elapsed(),
            )

        try:
            tool = self._registry.get(identifier)
        except ToolNotFoundError as exc:
            LOGGER.warning("Tool %s requested but not registered", label)
            return ToolResult.from_error(exc.message, error_type=exc.error_code, duration_ms=elapsed())

        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s (call=%s) with %s", label, call_id, parsed)
        else:
            LOGGER.debug("Executing tool %s (call=%s)", label, call_id)

        effective_timeout = timeout if timeout is not None else self._config.default_timeout
        try:
            if effective_timeout is not None and effective_timeout > 0:
                raw_result = await asyncio.wait_for(tool.execute(api_name, parsed), timeout=effective_timeout)
            else:
                raw_result = await tool.execute(api_name, parsed)
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s timed out after %.1fs", label, effective_timeout)
            return ToolResult.from_error(
                f"Tool execution timed out after {effective_timeout}s",
                error_type=ErrorCode.TIMEOUT,
                duration_ms=elapsed(),
            )
        except AgentLoopError as exc:
            LOGGER.warning("Tool %s failed: %s", label, exc.message)
            return ToolResult.from_error(exc.message, error_type=exc.error_code, duration_ms=elapsed())
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            LOGGER.warning("Tool %s failed: %s", label, message)
            return ToolResult.from_error(message, duration_ms=elapsed())

        result = ToolResult.from_success(raw_result, duration_ms=elapsed())
        LOGGER.debug("Tool %s completed in %.1fms", label, result.duration_ms)
        return result

    async def execute_batch(
        self,
        calls: Sequence[ToolInvocation],
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[ToolResult]:
        """Execute every call and return results in call order.

        Cancellation is cooperative: a call that has started always runs to
        completion (bounded only by its timeout). Calls not yet started when
        ``cancellation`` fires are reported as cancelled results, so the
        output always has one entry per call.
        """

        if not calls:
            return []
        if cancellation is not None and cancellation.is_cancelled:
            return [ToolResult.cancelled() for _ in calls]

        if not self._config.parallel:
            results: list[ToolResult] = []
            for call in calls:
                if cancellation is not None and cancellation.is_cancelled:
                    results.append(ToolResult.cancelled())
                    continue
                results.append(await self._execute_invocation(call))
            return results

        # Parallel calls all start together, so none is left to skip.
        return list(await asyncio.gather(*(self._execute_invocation(call) for call in calls)))

    async def _execute_invocation(self, call: ToolInvocation) -> ToolResult:
        return await self.execute(call.identifier, call.api_name, call.arguments, call_id=call.id)
