"""Tool discovery for pipeline and chat agents."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .availability import ToolAvailabilityGate
from .types import ToolDefinition

__all__ = ["ToolDiscovery", "handler_slugs_for"]

LOGGER = logging.getLogger(__name__)


def handler_slugs_for(step_config: Mapping[str, Any] | None) -> list[str]:
    """Return the handler slugs configured on a flow step.

    Supports both the ``handler_slugs`` list and the single ``handler_slug``.
    """
    if not step_config:
        return []
    slugs = step_config.get("handler_slugs")
    if slugs:
        return [str(slug) for slug in slugs if slug]
    slug = step_config.get("handler_slug")
    return [str(slug)] if slug else []


class ToolDiscovery:
    """Collects the tools an agent may call in one conversation.

    For an AI pipeline step the visible set is the union of the tools of
    the handlers on the previous and the next flow step, plus the gated
    global tools. Chat agents see gated global tools plus chat-only tools.

    When two sources contribute the same name the first one wins, in the
    order previous step, next step, global, chat.
    """

    def __init__(self, gate: ToolAvailabilityGate) -> None:
        self._gate = gate
        self._registry = gate.registry

    def get_available_tools(
        self,
        previous_step: Mapping[str, Any] | None = None,
        next_step: Mapping[str, Any] | None = None,
        current_context_id: str | None = None,
        engine_data: Mapping[str, Any] | None = None,
    ) -> dict[str, ToolDefinition]:
        """Return the tools visible to the AI step between two flow steps.

        Args:
            previous_step: Flow step config before the AI step, if any.
            next_step: Flow step config after the AI step, if any.
            current_context_id: Pipeline step id of the AI step.
            engine_data: Engine snapshot handed to handler providers.

        Returns:
            Tool name to definition, in discovery order.
        """
        available: dict[str, ToolDefinition] = {}

        for step_config in (previous_step, next_step):
            if not step_config:
                continue
            handler_configs = step_config.get("handler_configs") or {}
            for slug in handler_slugs_for(step_config):
                handler_config = handler_configs.get(slug, step_config.get("handler_config") or {})
                contributed = self._registry.handler_tools(slug, handler_config, engine_data)
                allowed = self._allowed_tools(contributed, slug, current_context_id)
                self._merge(available, allowed, source=f"handler:{slug}")

        global_tools = self._allowed_tools(self._registry.global_tools(), None, current_context_id)
        self._merge(available, global_tools, source="global")
        LOGGER.debug(
            "Discovered %d tool(s) for step %s: %s",
            len(available),
            current_context_id,
            sorted(available),
        )
        return available

    def get_available_tools_for_chat(self) -> dict[str, ToolDefinition]:
        """Return gated global tools plus every chat-only tool."""

        available = self._gate.get_available_tools_for_chat()
        LOGGER.debug("Discovered %d tool(s) for chat: %s", len(available), sorted(available))
        return available

    def _allowed_tools(
        self,
        tools: Mapping[str, ToolDefinition],
        handler_slug: str | None,
        context_id: str | None,
    ) -> dict[str, ToolDefinition]:
        allowed: dict[str, ToolDefinition] = {}
        for name, definition in tools.items():
            if definition.handler_binding:
                # Handler tools are scoped by adjacency only.
                if definition.handler_binding == handler_slug:
                    allowed[name] = definition
                continue
            if self._gate.is_available(name, context_id):
                allowed[name] = definition
        return allowed

    @staticmethod
    def _merge(
        target: dict[str, ToolDefinition],
        incoming: Mapping[str, ToolDefinition],
        *,
        source: str,
    ) -> None:
        for name, definition in incoming.items():
            existing = target.get(name)
            if existing is None:
                target[name] = definition
            elif existing != definition:
                LOGGER.warning("Tool %s from %s shadowed by an earlier source; ignoring", name, source)

