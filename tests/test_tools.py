"""Tests for tool manifests, the registry and the tool executor."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from agentloop.ai.cancellation import CancellationToken
from agentloop.ai.context.tool_names import ToolNameResolver
from agentloop.ai.context.types import ToolInvocation
from agentloop.ai.errors import DuplicateToolError, ErrorCode, ToolExecutionError, ToolNotFoundError
from agentloop.ai.tools import (
    CANCELLED_TOOL_CONTENT,
    ExecutorConfig,
    ToolApi,
    ToolExecutor,
    ToolManifest,
    ToolRegistry,
    ToolResult,
    format_tool_result_content,
    parse_tool_arguments,
)


# -----------------------------------------------------------------------------
# Test Fixtures and Helpers
# -----------------------------------------------------------------------------


def make_registry() -> ToolRegistry:
    """Create a registry with a few test tools."""
    registry = ToolRegistry()

    async def greet(args: Mapping[str, Any]) -> dict:
        return {"greeting": f"Hello, {args.get('name', 'World')}!"}

    def fail(args: Mapping[str, Any]) -> None:
        raise RuntimeError("kaboom")

    def fail_typed(args: Mapping[str, Any]) -> None:
        raise ToolExecutionError(message="bad input", tool_name="util.fail_typed")

    async def sleepy(args: Mapping[str, Any]) -> str:
        await asyncio.sleep(args.get("seconds", 10))
        return "woke"

    registry.register_function(
        ToolManifest(
            identifier="util",
            api=(
                ToolApi(name="echo"),
                ToolApi(name="greet"),
                ToolApi(name="fail"),
                ToolApi(name="fail_typed"),
                ToolApi(name="sleepy"),
            ),
        ),
        {
            "echo": lambda args: {"echo": args.get("message", "")},
            "greet": greet,
            "fail": fail,
            "fail_typed": fail_typed,
            "sleepy": sleepy,
        },
    )
    return registry


def call(api_name: str, arguments: str = "{}", call_id: str | None = None) -> ToolInvocation:
    return ToolInvocation(id=call_id or f"call_{api_name}", identifier="util", api_name=api_name, arguments=arguments)


# -----------------------------------------------------------------------------
# Types
# -----------------------------------------------------------------------------


class TestToolTypes:
    """Tests for manifests and result helpers."""

    def test_manifest_openai_tools_use_generated_names(self) -> None:
        manifest = ToolManifest(
            identifier="calc",
            api=(ToolApi(name="add", description="Add", parameters={"type": "object", "properties": {"a": {}}}),),
        )

        tools = manifest.to_openai_tools(ToolNameResolver().generate)

        assert tools == [
            {
                "type": "function",
                "function": {
                    "name": "calc____add",
                    "description": "Add",
                    "parameters": {"type": "object", "properties": {"a": {}}},
                },
            }
        ]

    def test_manifest_defaults(self) -> None:
        manifest = ToolManifest(identifier="calc", api=[ToolApi(name="add")])

        assert isinstance(manifest.api, tuple)
        assert manifest.title == "calc"
        assert manifest.get_api("missing") is None
        assert manifest.to_openai_tools(ToolNameResolver().generate)[0]["function"]["parameters"] == {
            "type": "object",
            "properties": {},
        }

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, "null"), ("text", "text"), (True, "true"), (3, "3"), ({"a": 1}, '{"a": 1}'), ([1, 2], "[1, 2]")],
    )
    def test_format_tool_result_content(self, value: Any, expected: str) -> None:
        assert format_tool_result_content(value) == expected

    def test_parse_tool_arguments(self) -> None:
        assert parse_tool_arguments(None) == {}
        assert parse_tool_arguments("  ") == {}
        assert parse_tool_arguments({"a": 1}) == {"a": 1}
        assert parse_tool_arguments('{"a": 1}') == {"a": 1}
        with pytest.raises(ValueError):
            parse_tool_arguments("[1, 2]")
        with pytest.raises(ValueError):
            parse_tool_arguments("{oops")

    def test_result_from_success_splits_content_and_state(self) -> None:
        result = ToolResult.from_success({"content": "saved", "state": {"todos": ["a"]}})

        assert result.content == "saved"
        assert result.state == {"todos": ["a"]}

    def test_cancelled_result(self) -> None:
        result = ToolResult.cancelled()

        assert result.content == CANCELLED_TOOL_CONTENT
        assert result.is_cancelled
        assert not ToolResult.from_error("x").is_cancelled


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_and_get(self) -> None:
        registry = make_registry()

        assert "util" in registry
        assert len(registry) == 1
        assert registry.get("util").manifest.identifier == "util"

    def test_duplicate_registration_raises(self) -> None:
        registry = make_registry()

        with pytest.raises(DuplicateToolError):
            registry.register_function(ToolManifest(identifier="util"), {})

        registry.register_function(ToolManifest(identifier="util"), {}, allow_override=True)
        assert registry.get("util").manifest.api == ()

    def test_disabled_tools_are_hidden(self) -> None:
        registry = make_registry()
        registry.set_enabled("util", False)

        with pytest.raises(ToolNotFoundError):
            registry.get("util")
        assert registry.manifests() == []
        assert registry.manifest_map() == {}
        assert len(registry.manifests(enabled_only=False)) == 1

    def test_unregister(self) -> None:
        registry = make_registry()

        assert registry.unregister("util") is True
        assert registry.unregister("util") is False
        with pytest.raises(ToolNotFoundError):
            registry.set_enabled("util", True)


# -----------------------------------------------------------------------------
# Executor
# -----------------------------------------------------------------------------


class TestToolExecutor:
    """Tests for ToolExecutor.execute."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self) -> None:
        executor = ToolExecutor(make_registry())

        echo = await executor.execute("util", "echo", '{"message": "hi"}')
        greet = await executor.execute("util", "greet", {"name": "Ada"})

        assert echo.success and echo.content == '{"echo": "hi"}'
        assert greet.content == '{"greeting": "Hello, Ada!"}'
        assert echo.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_result(self) -> None:
        result = await ToolExecutor(make_registry()).execute("util", "echo", "{not json")

        assert not result.success
        assert result.error["type"] == ErrorCode.INVALID_ARGUMENTS
        assert result.content.startswith("Error: Invalid arguments")

    @pytest.mark.asyncio
    async def test_unknown_tool_and_api(self) -> None:
        executor = ToolExecutor(make_registry())

        missing_tool = await executor.execute("nope", "echo", "{}")
        missing_api = await executor.execute("util", "nope", "{}")

        assert missing_tool.error["type"] == ErrorCode.TOOL_NOT_FOUND
        assert missing_api.error["type"] == ErrorCode.TOOL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_exceptions_are_captured(self) -> None:
        executor = ToolExecutor(make_registry())

        generic = await executor.execute("util", "fail", "{}")
        typed = await executor.execute("util", "fail_typed", "{}")

        assert generic.error == {"type": ErrorCode.TOOL_EXECUTION_FAILED, "message": "kaboom"}
        assert typed.error["message"] == "bad input"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        executor = ToolExecutor(make_registry(), ExecutorConfig(default_timeout=0.01))

        result = await executor.execute("util", "sleepy", '{"seconds": 1}')

        assert result.error["type"] == ErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self) -> None:
        executor = ToolExecutor(make_registry(), ExecutorConfig(default_timeout=None))

        result = await executor.execute("util", "sleepy", '{"seconds": 1}', timeout=0.01)

        assert result.error["type"] == ErrorCode.TIMEOUT


class TestToolExecutorBatch:
    """Tests for ToolExecutor.execute_batch."""

    @pytest.mark.asyncio
    async def test_results_follow_call_order(self) -> None:
        executor = ToolExecutor(make_registry())
        calls = [call("greet", '{"name": "B"}'), call("echo", '{"message": "A"}'), call("fail")]

        results = await executor.execute_batch(calls)

        assert [r.success for r in results] == [True, True, False]
        assert "Hello, B!" in results[0].content

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        assert await ToolExecutor(make_registry()).execute_batch([]) == []

    @pytest.mark.asyncio
    async def test_cancel_mid_batch_does_not_interrupt_started_calls(self) -> None:
        executor = ToolExecutor(make_registry(), ExecutorConfig(default_timeout=None))
        token = CancellationToken()
        calls = [call("echo", call_id="a"), call("sleepy", '{"seconds": 0.2}', call_id="b"), call("greet", call_id="c")]

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            token.cancel("user")

        results, _ = await asyncio.gather(executor.execute_batch(calls, cancellation=token), cancel_soon())

        assert token.is_cancelled
        assert len(results) == 3
        assert all(result.success for result in results)
        assert results[1].content == "woke"

    @pytest.mark.asyncio
    async def test_single_side_effecting_call_completes_after_cancel(self) -> None:
        token = CancellationToken()
        applied: list[str] = []
        registry = ToolRegistry()

        async def write(args: Mapping[str, Any]) -> str:
            await asyncio.sleep(0.1)
            applied.append(args["path"])
            return "written"

        registry.register_function(ToolManifest(identifier="fs", api=(ToolApi(name="write"),)), {"write": write})
        executor = ToolExecutor(registry, ExecutorConfig(default_timeout=None))

        async def cancel_soon() -> None:
            await asyncio.sleep(0.02)
            token.cancel("user")

        results, _ = await asyncio.gather(
            executor.execute_batch(
                [ToolInvocation(id="w1", identifier="fs", api_name="write", arguments='{"path": "a.txt"}')],
                cancellation=token,
            ),
            cancel_soon(),
        )

        assert applied == ["a.txt"]
        assert results[0].content == "written"
        assert not results[0].is_cancelled

    @pytest.mark.asyncio
    async def test_already_cancelled_token_skips_execution(self) -> None:
        token = CancellationToken()
        token.cancel()

        results = await ToolExecutor(make_registry()).execute_batch([call("echo"), call("greet")], cancellation=token)

        assert all(result.is_cancelled for result in results)

    @pytest.mark.asyncio
    async def test_sequential_mode_stops_after_cancel(self) -> None:
        token = CancellationToken()
        registry = make_registry()
        registry.register_function(
            ToolManifest(identifier="stopper", api=(ToolApi(name="stop"),)),
            {"stop": lambda args: token.cancel("tool asked") and "stopped"},
        )
        executor = ToolExecutor(registry, ExecutorConfig(parallel=False))
        calls = [
            ToolInvocation(id="1", identifier="stopper", api_name="stop"),
            call("echo", call_id="2"),
        ]

        results = await executor.execute_batch(calls, cancellation=token)

        assert results[0].content == "stopped"
        assert results[1].is_cancelled
