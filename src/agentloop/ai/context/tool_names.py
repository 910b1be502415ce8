"""Provider function-call names for manifest APIs.

Names take the form ``identifier____api`` (plus ``____type`` for non-default
tool types). Names longer than the provider limit replace the API part with
an md5 digest that :meth:`ToolNameResolver.resolve` maps back through the
manifest.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Mapping

from ..tools.types import ToolManifest

__all__ = ["ResolvedToolName", "ToolNameResolver"]

LOGGER = logging.getLogger(__name__)

SEPARATOR = "____"
MD5_PREFIX = "MD5HASH_"
MAX_NAME_LENGTH = 64


@dataclass(slots=True, frozen=True)
class ResolvedToolName:
    identifier: str
    api_name: str
    type: str = "default"


class ToolNameResolver:
    """Generates and parses provider function names."""

    def __init__(self, *, max_length: int = MAX_NAME_LENGTH) -> None:
        self._max_length = max_length

    def generate(self, identifier: str, api_name: str, tool_type: str = "default") -> str:
        name = f"{identifier}{SEPARATOR}{api_name}"
        if len(name) > self._max_length:
            name = f"{identifier}{SEPARATOR}{MD5_PREFIX}{_md5(api_name)}"
        if tool_type and tool_type != "default":
            name = f"{name}{SEPARATOR}{tool_type}"
        return name

    def resolve(self, name: str, manifests: Mapping[str, ToolManifest] | None = None) -> ResolvedToolName:
        """Split a generated name back into identifier, API and type.

        Raises:
            ValueError: If ``name`` was not produced by :meth:`generate`.
        """
        parts = name.split(SEPARATOR)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Not a generated tool name: {name!r}")
        identifier, api_name = parts[0], parts[1]
        tool_type = parts[2] if len(parts) > 2 and parts[2] else "default"
        if api_name.startswith(MD5_PREFIX):
            digest = api_name[len(MD5_PREFIX):]
            manifest = (manifests or {}).get(identifier)
            if manifest is not None:
                for api in manifest.api:
                    if _md5(api.name) == digest:
                        api_name = api.name
                        break
                else:
                    LOGGER.warning("No API of %s matches hashed name %s", identifier, digest)
        return ResolvedToolName(identifier=identifier, api_name=api_name, type=tool_type)


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()
