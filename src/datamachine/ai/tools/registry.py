"""Tool provider registry.

Tools reach the engine from three independent sources:

* handler-scoped providers, asked for the tools of one handler slug with
  that handler's configuration,
* global tools, available to every agent subject to gating,
* chat-only tools, always available to chat agents.

Global and chat tools are registered by name up front and may be given as
thunks (:class:`~.types.LazyDefinition`) that are evaluated once on first use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Protocol, runtime_checkable

from .errors import DuplicateToolError, ToolNotFoundError
from .types import DefinitionSource, LazyDefinition, ToolDefinition, resolve_definition

__all__ = [
    "HandlerToolRequest",
    "ToolProvider",
    "StaticToolProvider",
    "ToolRegistry",
]

LOGGER = logging.getLogger(__name__)

_GLOBAL = "global"
_CHAT = "chat"


# -----------------------------------------------------------------------------
# Provider Protocol
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class HandlerToolRequest:
    """What a handler provider is asked for.

    Attributes:
        handler_slug: Slug of the handler configured on the adjacent step.
        handler_config: That handler's configuration for the step.
        engine_data: Engine snapshot of the running job.
    """

    handler_slug: str
    handler_config: Mapping[str, Any] = field(default_factory=dict)
    engine_data: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class ToolProvider(Protocol):
    """Contributes the tools of one handler."""

    def list_tools(self, request: HandlerToolRequest) -> Mapping[str, DefinitionSource]:
        """Return tool name to definition (or definition thunk)."""
        ...


class StaticToolProvider:
    """Handler provider backed by a fixed set of definitions."""

    def __init__(self, tools: Mapping[str, DefinitionSource] | None = None) -> None:
        self._tools: dict[str, DefinitionSource] = {}
        for name, source in (tools or {}).items():
            self.add(name, source)

    def add(self, name: str, source: DefinitionSource) -> None:
        if name in self._tools:
            raise DuplicateToolError(name, "handler")
        # Wrap plain thunks so they are evaluated at most once.
        if callable(source) and not isinstance(source, (ToolDefinition, LazyDefinition, Mapping)):
            source = LazyDefinition(source, name=name)
        self._tools[name] = source

    def list_tools(self, request: HandlerToolRequest) -> Mapping[str, DefinitionSource]:
        return dict(self._tools)


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Registry for global, chat-only and handler-scoped tool sources.

    Example:
        registry = ToolRegistry()
        registry.register_global("web_fetch", lambda: ToolDefinition(...))
        registry.register_handler_tool("wordpress", "wordpress_publish", definition)

        tools = registry.global_tools()
    """

    def __init__(self) -> None:
        self._sources: dict[str, tuple[str, DefinitionSource]] = {}
        self._lazy: dict[str, LazyDefinition] = {}
        self._handler_providers: dict[str, list[ToolProvider]] = {}
        self._static_handlers: dict[str, StaticToolProvider] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_global(self, name: str, definition: DefinitionSource) -> None:
        """Register a global tool.

        Raises:
            DuplicateToolError: If ``name`` is already a global or chat tool.
        """
        self._register(_GLOBAL, name, definition)

    def register_chat(self, name: str, definition: DefinitionSource) -> None:
        """Register a chat-only tool.

        Raises:
            DuplicateToolError: If ``name`` is already a global or chat tool.
        """
        self._register(_CHAT, name, definition)

    def register_handler_provider(self, handler_slug: str, provider: ToolProvider) -> None:
        """Attach a provider that contributes tools for ``handler_slug``."""

        if not handler_slug:
            raise ValueError("handler_slug is required")
        self._handler_providers.setdefault(handler_slug, []).append(provider)
        LOGGER.debug("Registered tool provider for handler %s", handler_slug)

    def register_handler_tool(self, handler_slug: str, name: str, definition: DefinitionSource) -> None:
        """Register one fixed tool for ``handler_slug``."""

        static = self._static_handlers.get(handler_slug)
        if static is None:
            static = StaticToolProvider()
            self._static_handlers[handler_slug] = static
            self.register_handler_provider(handler_slug, static)
        static.add(name, definition)

    def unregister(self, name: str) -> None:
        """Remove a global or chat tool.

        Raises:
            ToolNotFoundError: If no such tool is registered.
        """
        if name not in self._sources:
            raise ToolNotFoundError(name)
        del self._sources[name]
        self._lazy.pop(name, None)

    def clear_cache(self) -> None:
        """Forget memoized definitions so thunks are evaluated again."""

        for name, (_, source) in self._sources.items():
            if isinstance(source, LazyDefinition):
                source.reset()
            self._lazy[name] = LazyDefinition(self._thunk_for(name, source), name=name)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def has_global(self, name: str) -> bool:
        entry = self._sources.get(name)
        return entry is not None and entry[0] == _GLOBAL

    def get_global(self, name: str) -> ToolDefinition:
        """Return the resolved global tool ``name``.

        Raises:
            ToolNotFoundError: If ``name`` is not a global tool.
        """
        if not self.has_global(name):
            raise ToolNotFoundError(name)
        return self._lazy[name].resolve()

    def global_tools(self) -> dict[str, ToolDefinition]:
        """Return all global tools, resolving thunks on first use."""

        return self._resolve_kind(_GLOBAL)

    def chat_tools(self) -> dict[str, ToolDefinition]:
        """Return all chat-only tools, resolving thunks on first use."""

        return self._resolve_kind(_CHAT)

    def handler_slugs(self) -> list[str]:
        return sorted(self._handler_providers)

    def handler_tools(
        self,
        handler_slug: str,
        handler_config: Mapping[str, Any] | None = None,
        engine_data: Mapping[str, Any] | None = None,
    ) -> dict[str, ToolDefinition]:
        """Ask every provider of ``handler_slug`` for its tools.

        Tools bound to ``handler_slug`` that carry no configuration of their
        own receive ``handler_config``.
        """
        request = HandlerToolRequest(
            handler_slug=handler_slug,
            handler_config=dict(handler_config or {}),
            engine_data=dict(engine_data or {}),
        )
        contributed: dict[str, ToolDefinition] = {}
        for provider in self._handler_providers.get(handler_slug, ()):
            for name, source in provider.list_tools(request).items():
                definition = self._safe_resolve(name, source)
                if definition is None:
                    continue
                if name in contributed:
                    LOGGER.warning("Handler %s contributed tool %s twice; keeping the first", handler_slug, name)
                    continue
                if definition.handler_binding == handler_slug and not definition.handler_config:
                    definition = definition.with_handler_config(request.handler_config)
                contributed[name] = definition
        return contributed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _register(self, kind: str, name: str, definition: DefinitionSource) -> None:
        if not name:
            raise ValueError("Tool name is required")
        existing = self._sources.get(name)
        if existing is not None:
            raise DuplicateToolError(name, existing[0])
        self._sources[name] = (kind, definition)
        self._lazy[name] = LazyDefinition(self._thunk_for(name, definition), name=name)
        LOGGER.debug("Registered %s tool: %s", kind, name)

    @staticmethod
    def _thunk_for(name: str, source: DefinitionSource):
        if isinstance(source, LazyDefinition):
            return source.resolve
        return lambda: resolve_definition(name, source)

    def _resolve_kind(self, kind: str) -> dict[str, ToolDefinition]:
        resolved: dict[str, ToolDefinition] = {}
        for name, (entry_kind, _) in self._sources.items():
            if entry_kind != kind:
                continue
            definition = self._safe_resolve(name, self._lazy[name])
            if definition is not None:
                resolved[name] = definition
        return resolved

    @staticmethod
    def _safe_resolve(name: str, source: DefinitionSource) -> ToolDefinition | None:
        try:
            return resolve_definition(name, source)
        except TypeError as exc:
            LOGGER.warning("Skipping tool %s: %s", name, exc)
            return None

    def __iter__(self) -> Iterator[str]:
        return iter(self._sources)

    def __len__(self) -> int:
        return len(self._sources)
