"""Async model provider built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Protocol, Sequence, cast, runtime_checkable

import httpx
import tiktoken
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ProviderError

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_FINISH_REASONS = {"stop", "tool_calls", "abort", "error", "length"}


@runtime_checkable
class TokenCounterProtocol(Protocol):
    """Anything able to count tokens for a piece of text."""

    def count(self, text: str) -> int:
        ...

    def estimate(self, text: str) -> int:
        ...


@runtime_checkable
class CancellationProbe(Protocol):
    """Read-only view of a cancellation token consumed while streaming."""

    @property
    def is_cancelled(self) -> bool:
        ...


# -----------------------------------------------------------------------------
# Token counting
# -----------------------------------------------------------------------------

class ApproxByteCounter:
    """Deterministic counter that estimates tokens via byte length."""

    def __init__(self, *, model_name: str | None = None, bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode("utf-8", errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter:
    """Token counter backed by tiktoken encodings."""

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding_name = encoding_name
        self._encoding: Any = None
        self._fallback = ApproxByteCounter(model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is None:
            # Encodings are fetched on first use.
            self._encoding = self._load_encoding(self.model_name, self._encoding_name)
        return len(self._encoding.encode(text, disallowed_special=()))

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    @staticmethod
    def _load_encoding(model_name: str, encoding_name: str | None) -> Any:
        if encoding_name:
            return tiktoken.get_encoding(encoding_name)
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("No tiktoken mapping for model %s; using cl100k_base", model_name)
            return tiktoken.get_encoding("cl100k_base")


class TokenCounterRegistry:
    """Registry keeping one token counter per model name."""

    _shared: TokenCounterRegistry | None = None

    def __init__(self, *, fallback: TokenCounterProtocol | None = None) -> None:
        self._fallback = fallback or ApproxByteCounter()
        self._counters: Dict[str, TokenCounterProtocol] = {}

    @classmethod
    def global_instance(cls) -> "TokenCounterRegistry":
        if cls._shared is None:
            cls._shared = TokenCounterRegistry()
        return cls._shared

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = self._normalize_key(model_name)
        if not key:
            raise ValueError("model_name is required for token counter registration")
        self._counters[key] = counter

    def has(self, model_name: str | None) -> bool:
        key = self._normalize_key(model_name)
        return bool(key and key in self._counters)

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        key = self._normalize_key(model_name)
        return self._counters.get(key, self._fallback)

    def count(self, model_name: str | None, text: str) -> int:
        return self.get(model_name).count(text)

    @staticmethod
    def _normalize_key(model_name: str | None) -> str:
        return (model_name or "").strip().lower()


# -----------------------------------------------------------------------------
# Settings and events
# -----------------------------------------------------------------------------

@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas.

    ``type`` is one of ``content.delta``, ``tool_calls.function.arguments.delta``,
    ``tool_calls.function.arguments.done`` or ``finish``. The ``finish`` event is
    always the last one and carries ``finish_reason`` and ``usage``.
    """

    type: str
    content: str | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    arguments_delta: str | None = None
    tool_call_id: str | None = None
    finish_reason: str | None = None
    usage: Dict[str, int] = field(default_factory=dict)


@runtime_checkable
class ModelProvider(Protocol):
    """Streaming completion contract consumed by the ``call_llm`` step."""

    def stream_completion(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        cancellation: CancellationProbe | None = None,
    ) -> AsyncIterator[AIStreamEvent]:
        ...


# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------

class AIClient:
    """Async client providing streaming completions with retry semantics."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._token_registry = token_registry or TokenCounterRegistry.global_instance()
        self._register_default_token_counter()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_completion(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        model: str | None = None,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        cancellation: CancellationProbe | None = None,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream one completion, ending with a ``finish`` event.

        The stream stops early with ``finish_reason="abort"`` once
        ``cancellation.is_cancelled`` turns true.
        """

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model,
            tools=cast(Any, tools),
            temperature=temperature,
        )
        LOGGER.debug(
            "Starting streamed completion via %s with %s message(s)",
            payload["model"],
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        finish_reason: str | None = None
        usage: Dict[str, int] = {}
        tool_call_ids: Dict[int, str] = {}
        yielded = False
        try:
            async for attempt in self._retrying():
                with attempt:
                    try:
                        async with self._client.chat.completions.stream(**payload) as stream:
                            async for event in stream:
                                if cancellation is not None and cancellation.is_cancelled:
                                    LOGGER.debug("Completion stream cancelled by caller")
                                    finish_reason = "abort"
                                    break
                                if getattr(event, "type", None) == "chunk":
                                    finish_reason, usage = self._read_chunk(event, finish_reason, usage, tool_call_ids)
                                    continue
                                normalized = self._normalize_stream_event(event)
                                if normalized is not None:
                                    if normalized.tool_index is not None and not normalized.tool_call_id:
                                        normalized.tool_call_id = tool_call_ids.get(normalized.tool_index)
                                    yielded = True
                                    yield normalized
                    except (APIError, httpx.HTTPError) as exc:
                        # Deltas already handed to the caller cannot be replayed.
                        if yielded:
                            LOGGER.warning("Completion stream failed after partial output; not retrying")
                            raise self._provider_error(exc) from exc
                        raise
                    break
        except (APIError, httpx.HTTPError) as exc:
            raise self._provider_error(exc) from exc

        yield AIStreamEvent(type="finish", finish_reason=_normalize_finish_reason(finish_reason), usage=usage)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _provider_error(self, exc: BaseException) -> ProviderError:
        return ProviderError(
            message=str(exc) or exc.__class__.__name__,
            provider=self._settings.base_url,
            status_code=getattr(exc, "status_code", None),
        )

    def get_token_counter(self, model: str | None = None) -> TokenCounterProtocol:
        return self._token_registry.get(model or self._settings.model)

    def count_tokens(self, text: str, *, model: str | None = None, estimate_only: bool = False) -> int:
        if not text:
            return 0
        counter = self.get_token_counter(model)
        if estimate_only:
            return counter.estimate(text)
        return counter.count(text)

    def _register_default_token_counter(self) -> None:
        model_name = (self._settings.model or "").strip()
        if not model_name or self._token_registry.has(model_name):
            return
        self._token_registry.register(model_name, TiktokenCounter(model_name))

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIStatusError,
                    APIConnectionError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    @staticmethod
    def _coerce_messages(messages: Iterable[Mapping[str, Any]]) -> List[ChatCompletionMessageParam]:
        normalized = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a completion")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        model: str | None,
        tools: Iterable[ChatCompletionToolParam] | None,
        temperature: float | None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": list(messages),
            "stream_options": {"include_usage": True},
        }
        if self._settings.metadata:
            payload["metadata"] = dict(self._settings.metadata)
        if tools:
            payload["tools"] = list(tools)
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    @staticmethod
    def _read_chunk(
        event: ChatCompletionStreamEvent[Any],
        finish_reason: str | None,
        usage: Dict[str, int],
        tool_call_ids: Dict[int, str],
    ) -> tuple[str | None, Dict[str, int]]:
        chunk = getattr(event, "chunk", None)
        for choice in getattr(chunk, "choices", None) or ():
            reason = getattr(choice, "finish_reason", None)
            if reason:
                finish_reason = str(reason)
            delta = getattr(choice, "delta", None)
            for tool_call in getattr(delta, "tool_calls", None) or ():
                call_id = getattr(tool_call, "id", None)
                if call_id:
                    tool_call_ids[int(tool_call.index)] = str(call_id)
        raw_usage = getattr(chunk, "usage", None)
        if raw_usage is not None:
            usage = _normalize_usage(raw_usage)
        return finish_reason, usage

    @staticmethod
    def _normalize_stream_event(event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return AIStreamEvent(type=event_type, content=str(delta_text))
            return None
        if event_type in {"tool_calls.function.arguments.delta", "tool_calls.function.arguments.done"}:
            return AIStreamEvent(
                type=event_type,
                tool_name=getattr(event, "name", None),
                tool_index=getattr(event, "index", None),
                tool_arguments=getattr(event, "arguments", None),
                arguments_delta=getattr(event, "arguments_delta", None),
                tool_call_id=getattr(event, "id", None) or getattr(event, "tool_call_id", None),
            )
        return None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def _normalize_finish_reason(reason: str | None) -> str:
    if reason is None:
        return "stop"
    if reason == "function_call":
        return "tool_calls"
    return reason if reason in _FINISH_REASONS else "stop"


def _normalize_usage(raw: Any) -> Dict[str, int]:
    prompt = int(getattr(raw, "prompt_tokens", 0) or 0)
    completion = int(getattr(raw, "completion_tokens", 0) or 0)
    details = getattr(raw, "prompt_tokens_details", None)
    cached = int(getattr(details, "cached_tokens", 0) or 0) if details is not None else 0
    total = int(getattr(raw, "total_tokens", 0) or 0) or prompt + completion
    return {
        "input_tokens": prompt,
        "output_tokens": completion,
        "cached_tokens": cached,
        "total_tokens": total,
    }


__all__ = [
    "AIClient",
    "AIStreamEvent",
    "ApproxByteCounter",
    "CancellationProbe",
    "ClientSettings",
    "ModelProvider",
    "TiktokenCounter",
    "TokenCounterProtocol",
    "TokenCounterRegistry",
]
