"""Async provider clients for OpenAI-compatible and Anthropic endpoints.

Both adapters translate the provider neutral :class:`ConversationMessage`
history into the vendor's wire format, retry transient failures with
tenacity and surface everything else as :class:`ProviderError`.
"""

from __future__ import annotations

import base64
import inspect
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import httpx
from anthropic import APIConnectionError as AnthropicConnectionError
from anthropic import APIError as AnthropicAPIError
from anthropic import AsyncAnthropic
from anthropic import RateLimitError as AnthropicRateLimitError
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..services.settings import ProviderSettings, Settings
from .orchestration.conversation import ConversationManager
from .orchestration.providers import ProviderError, ProviderRegistry, ProviderResponse
from .orchestration.types import ConversationMessage, ToolCallRequest
from .tools.types import ToolDefinition

__all__ = ["OpenAIProvider", "AnthropicProvider", "build_provider_registry"]

LOGGER = logging.getLogger(__name__)

_OPENAI_RETRYABLE = (APIError, APIStatusError, APIConnectionError, RateLimitError, httpx.TimeoutException)
_ANTHROPIC_RETRYABLE = (AnthropicAPIError, AnthropicConnectionError, AnthropicRateLimitError, httpx.TimeoutException)
_ANTHROPIC_MAX_TOKENS = 4096


def _retrying(settings: ProviderSettings, exceptions: Tuple[type[BaseException], ...]) -> AsyncRetrying:
    return AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, settings.max_retries)),
        wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
        retry=retry_if_exception_type(exceptions),
    )


def _read_file_part(part: Mapping[str, Any], provider: str) -> Tuple[str, str]:
    """Return ``(mime_type, base64 data)`` for a ``file`` content part."""

    path = Path(str(part.get("file_path") or ""))
    mime_type = str(part.get("mime_type") or "application/octet-stream")
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ProviderError(f"Unable to read attached file {path}: {exc}", provider=provider, cause=exc) from exc
    return mime_type, base64.b64encode(data).decode("ascii")


def _parse_arguments(raw: Any, tool_name: str) -> Dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        LOGGER.warning("Discarding unparsable arguments for tool %s: %r", tool_name, raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _log_payload(payload: Mapping[str, Any]) -> None:
    try:
        serialized = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        LOGGER.debug("AI prompt payload (unserializable): %s", payload)
    else:
        LOGGER.debug("AI prompt payload:\n%s", serialized)


async def _close(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


# -----------------------------------------------------------------------------
# OpenAI
# -----------------------------------------------------------------------------


class OpenAIProvider:
    """Chat-completions client for OpenAI and compatible endpoints."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        name: str = "openai",
        client: AsyncOpenAI | None = None,
        debug_logging: bool = False,
    ) -> None:
        self.name = name
        self._settings = settings
        self._debug_logging = debug_logging
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )

    @property
    def settings(self) -> ProviderSettings:
        return self._settings

    async def call(
        self,
        system_blocks: Sequence[str],
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> ProviderResponse:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": self._build_messages(system_blocks, messages),
        }
        if tools:
            payload["tools"] = [tool.to_provider_schema() for tool in tools]
            payload["tool_choice"] = "auto"

        LOGGER.debug("Calling %s model %s with %d message(s)", self.name, model, len(payload["messages"]))
        if self._debug_logging:
            _log_payload(payload)

        try:
            async for attempt in _retrying(self._settings, _OPENAI_RETRYABLE):
                with attempt:
                    completion = await self._client.chat.completions.create(**payload)
        except _OPENAI_RETRYABLE as exc:
            raise ProviderError(f"{self.name} request failed: {exc}", provider=self.name, cause=exc) from exc
        return self._parse_completion(completion)

    def _build_messages(
        self, system_blocks: Sequence[str], messages: Sequence[ConversationMessage]
    ) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = [{"role": "system", "content": block} for block in system_blocks]
        for message in ConversationManager.to_provider_messages(messages):
            content = message.get("content")
            if message["role"] == "user" and isinstance(content, list):
                message = {**message, "content": [self._convert_part(part) for part in content]}
            converted.append(message)
        return converted

    def _convert_part(self, part: Any) -> Dict[str, Any]:
        if isinstance(part, str):
            return {"type": "text", "text": part}
        if part.get("type") == "file":
            mime_type, data = _read_file_part(part, self.name)
            return {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{data}"}}
        return dict(part)

    def _parse_completion(self, completion: Any) -> ProviderResponse:
        choices = getattr(completion, "choices", None)
        if not choices:
            raise ProviderError(f"{self.name} returned no choices", provider=self.name)
        message = getattr(choices[0], "message", None)
        if message is None:
            raise ProviderError(f"{self.name} returned a choice without a message", provider=self.name)

        calls: List[ToolCallRequest] = []
        for call in getattr(message, "tool_calls", None) or ():
            function = getattr(call, "function", None)
            name = getattr(function, "name", None)
            if not name:
                raise ProviderError(f"{self.name} returned a tool call without a name", provider=self.name)
            calls.append(
                ToolCallRequest(
                    call_id=str(getattr(call, "id", "") or ""),
                    name=name,
                    arguments=_parse_arguments(getattr(function, "arguments", None), name),
                )
            )
        return ProviderResponse(content=getattr(message, "content", None), tool_calls=tuple(calls))

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        await _close(self._client)


# -----------------------------------------------------------------------------
# Anthropic
# -----------------------------------------------------------------------------


class AnthropicProvider:
    """Messages API client for Anthropic models."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        name: str = "anthropic",
        client: AsyncAnthropic | None = None,
        max_tokens: int = _ANTHROPIC_MAX_TOKENS,
        debug_logging: bool = False,
    ) -> None:
        self.name = name
        self._settings = settings
        self._max_tokens = max_tokens
        self._debug_logging = debug_logging
        client_kwargs: Dict[str, Any] = {
            "api_key": settings.api_key,
            "timeout": settings.request_timeout,
            "max_retries": 0,
        }
        if settings.base_url:
            client_kwargs["base_url"] = settings.base_url
        self._client = client or AsyncAnthropic(**client_kwargs)

    async def call(
        self,
        system_blocks: Sequence[str],
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> ProviderResponse:
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": self._max_tokens,
            "messages": self._build_messages(messages),
        }
        system = "\n\n".join(block.strip() for block in system_blocks if block.strip())
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.to_provider_schema()["function"]["parameters"],
                }
                for tool in tools
            ]

        LOGGER.debug("Calling %s model %s with %d message(s)", self.name, model, len(payload["messages"]))
        if self._debug_logging:
            _log_payload(payload)

        try:
            async for attempt in _retrying(self._settings, _ANTHROPIC_RETRYABLE):
                with attempt:
                    response = await self._client.messages.create(**payload)
        except _ANTHROPIC_RETRYABLE as exc:
            raise ProviderError(f"{self.name} request failed: {exc}", provider=self.name, cause=exc) from exc
        return self._parse_response(response)

    def _build_messages(self, messages: Sequence[ConversationMessage]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if message.text.strip():
                    blocks.append({"type": "text", "text": message.text})
                for call in message.tool_calls:
                    blocks.append(
                        {"type": "tool_use", "id": call.call_id, "name": call.name, "input": dict(call.arguments)}
                    )
                converted.append({"role": "assistant", "content": blocks or [{"type": "text", "text": ""}]})
            elif message.role == "tool_result":
                block = {
                    "type": "tool_result",
                    "tool_use_id": str(message.metadata.get("tool_call_id") or ""),
                    "content": message.text,
                }
                if message.metadata.get("success") is False:
                    block["is_error"] = True
                # Results of one turn share a single user message.
                if converted and converted[-1]["role"] == "user" and _is_tool_result_list(converted[-1]["content"]):
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            else:
                converted.append({"role": "user", "content": self._convert_content(message.content)})
        return converted

    def _convert_content(self, content: Any) -> Any:
        if not isinstance(content, list):
            return content
        blocks: List[Dict[str, Any]] = []
        for part in content:
            if isinstance(part, str):
                blocks.append({"type": "text", "text": part})
            elif part.get("type") == "file":
                mime_type, data = _read_file_part(part, self.name)
                blocks.append({"type": "image", "source": {"type": "base64", "media_type": mime_type, "data": data}})
            else:
                blocks.append(dict(part))
        return blocks

    def _parse_response(self, response: Any) -> ProviderResponse:
        content = getattr(response, "content", None)
        if content is None:
            raise ProviderError(f"{self.name} returned a response without content", provider=self.name)

        text_chunks: List[str] = []
        calls: List[ToolCallRequest] = []
        for block in content:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_chunks.append(getattr(block, "text", ""))
            elif block_type == "tool_use":
                name = getattr(block, "name", "")
                calls.append(
                    ToolCallRequest(
                        call_id=str(getattr(block, "id", "") or ""),
                        name=name,
                        arguments=_parse_arguments(getattr(block, "input", None), name),
                    )
                )
        text = "".join(text_chunks).strip()
        return ProviderResponse(content=text or None, tool_calls=tuple(calls))

    async def aclose(self) -> None:
        """Close the underlying Anthropic client."""

        await _close(self._client)


def _is_tool_result_list(content: Any) -> bool:
    return isinstance(content, list) and bool(content) and content[0].get("type") == "tool_result"


# -----------------------------------------------------------------------------
# Registry Factory
# -----------------------------------------------------------------------------


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Create clients for every provider with an API key in ``settings``.

    ``openai`` and ``anthropic`` map to their native clients. Any other
    provider name with a ``base_url`` is treated as OpenAI compatible.
    """

    registry = ProviderRegistry()
    for name, provider_settings in settings.providers.items():
        if not provider_settings.api_key:
            LOGGER.debug("Skipping provider %s without an API key", name)
            continue
        if name == "anthropic":
            client: Any = AnthropicProvider(provider_settings, debug_logging=settings.debug_logging)
        elif name == "openai" or provider_settings.base_url:
            client = OpenAIProvider(provider_settings, name=name, debug_logging=settings.debug_logging)
        else:
            LOGGER.warning("Provider %s has no base_url and is not a known provider; skipping", name)
            continue
        registry.register(name, client)
    LOGGER.info("Configured AI providers: %s", ", ".join(registry.names()) or "<none>")
    return registry
