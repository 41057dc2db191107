"""Provider boundary of the conversation engine.

The loop talks to AI providers only through :class:`ProviderClient`.
Concrete adapters live in :mod:`datamachine.ai.client`.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

from ..tools.types import ToolDefinition
from .types import ConversationMessage, ToolCallRequest

__all__ = [
    "ProviderClient",
    "ProviderError",
    "ProviderRegistry",
    "ProviderResponse",
]

LOGGER = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a provider call fails or returns an unusable response."""

    def __init__(self, message: str, *, provider: str = "", cause: Exception | None = None) -> None:
        self.provider = provider
        self.cause = cause
        super().__init__(message)


@dataclass(slots=True, frozen=True)
class ProviderResponse:
    """Normalized provider reply: final text or tool call requests."""

    content: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@runtime_checkable
class ProviderClient(Protocol):
    """Anything that can answer a conversation turn."""

    async def call(
        self,
        system_blocks: Sequence[str],
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> ProviderResponse:
        """Send one turn and return the reply.

        Raises:
            ProviderError: On transport, authentication or parsing failure.
        """
        ...


class ProviderRegistry:
    """Maps provider names (``openai``, ``anthropic`` ...) to clients."""

    def __init__(self, clients: dict[str, ProviderClient] | None = None) -> None:
        self._clients: dict[str, ProviderClient] = dict(clients or {})

    def register(self, name: str, client: ProviderClient) -> None:
        if not name:
            raise ValueError("Provider name is required")
        self._clients[name] = client
        LOGGER.debug("Registered provider %s", name)

    def get(self, name: str) -> ProviderClient:
        """Return the client for ``name``.

        Raises:
            ProviderError: If no client is registered under ``name``.
        """
        client = self._clients.get(name)
        if client is None:
            raise ProviderError(f"AI provider '{name}' is not configured", provider=name)
        return client

    def names(self) -> list[str]:
        return sorted(self._clients)

    def __contains__(self, name: object) -> bool:
        return name in self._clients

    async def aclose(self) -> None:
        """Close every registered client that holds network resources."""

        for name, client in self._clients.items():
            close = getattr(client, "aclose", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result
            LOGGER.debug("Closed provider %s", name)
