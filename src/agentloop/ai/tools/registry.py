"""Tool registry keyed by manifest identifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..errors import DuplicateToolError, ToolNotFoundError
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, ToolManifest

__all__ = [
    "ToolRegistration",
    "ToolRegistry",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        identifier: Manifest identifier.
        tool: The tool implementation.
        manifest: Tool manifest.
        enabled: Whether the tool is offered to the model.
        metadata: Additional registration metadata.
    """

    identifier: str
    tool: Tool
    manifest: ToolManifest
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


class ToolRegistry:
    """Registry for registering, retrieving and listing tools.

    Example:
        registry = ToolRegistry()
        registry.register_function(
            ToolManifest(identifier="greeter", api=(ToolApi(name="greet"),)),
            {"greet": lambda args: f"Hello, {args['name']}!"},
        )
        tool = registry.get("greeter")
        result = await tool.execute("greet", {"name": "World"})
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the identifier is taken and ``allow_override`` is false.
        """
        identifier = tool.manifest.identifier
        if identifier in self._tools and not allow_override:
            raise DuplicateToolError(
                message=f"Tool '{identifier}' is already registered",
                tool_name=identifier,
            )
        registration = ToolRegistration(
            identifier=identifier,
            tool=tool,
            manifest=tool.manifest,
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[identifier] = registration
        LOGGER.debug("Registered tool: %s (%d api)", identifier, len(tool.manifest.api))
        return registration

    def register_function(
        self,
        manifest: ToolManifest,
        handlers: Mapping[str, ToolHandler | AsyncToolHandler],
        *,
        enabled: bool = True,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register plain callables, one per manifest API."""
        return self.register(
            SimpleTool(manifest=manifest, handlers=dict(handlers)),
            enabled=enabled,
            allow_override=allow_override,
        )

    def unregister(self, identifier: str) -> bool:
        if identifier in self._tools:
            del self._tools[identifier]
            LOGGER.debug("Unregistered tool: %s", identifier)
            return True
        return False

    def get(self, identifier: str) -> Tool:
        """Return the tool for ``identifier``.

        Raises:
            ToolNotFoundError: If no enabled tool is registered under that identifier.
        """
        registration = self._tools.get(identifier)
        if registration is None or not registration.enabled:
            raise ToolNotFoundError(message=f"Tool '{identifier}' not found", tool_name=identifier)
        return registration.tool

    def has(self, identifier: str) -> bool:
        return identifier in self._tools

    def set_enabled(self, identifier: str, enabled: bool) -> None:
        registration = self._tools.get(identifier)
        if registration is None:
            raise ToolNotFoundError(message=f"Tool '{identifier}' not found", tool_name=identifier)
        registration.enabled = enabled

    def manifests(self, *, enabled_only: bool = True) -> list[ToolManifest]:
        return [
            registration.manifest
            for registration in self._tools.values()
            if registration.enabled or not enabled_only
        ]

    def manifest_map(self) -> dict[str, ToolManifest]:
        """Return ``identifier -> manifest`` for every enabled tool."""
        return {manifest.identifier: manifest for manifest in self.manifests()}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._tools
