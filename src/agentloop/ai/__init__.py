"""Model client, context assembly, tools and the agent run loop."""

from .client import AIClient, AIStreamEvent, ApproxByteCounter, ClientSettings, ModelProvider, TokenCounterRegistry
from .errors import AgentLoopError, ConfigurationError, ErrorCode, ProviderError

__all__ = [
    "AIClient",
    "AIStreamEvent",
    "AgentLoopError",
    "ApproxByteCounter",
    "ClientSettings",
    "ConfigurationError",
    "ErrorCode",
    "ModelProvider",
    "ProviderError",
    "TokenCounterRegistry",
]
