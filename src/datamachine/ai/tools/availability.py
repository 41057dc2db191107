"""Tool availability gating.

A global tool is available to an agent when it passes three checks in
order:

1. it exists in the global tool set,
2. for pipeline agents, the step's ``disabled_tools`` list does not name it
   (a step-level exclusion is final),
3. it is globally enabled and, if it requires configuration, configured.

Global enablement is opt-out: once the enabled-tools selection has been
saved, only tools flagged true in it are enabled. Before the first save every
tool that is configured or needs no configuration counts as enabled.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

from ...services.settings import Settings
from .registry import ToolRegistry
from .types import ToolDefinition

__all__ = [
    "ToolSelectionStore",
    "SettingsSelectionStore",
    "ToolAvailabilityGate",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Selection Store
# -----------------------------------------------------------------------------


class ToolSelectionStore(Protocol):
    """Persisted tool selections, read-only from the engine's perspective."""

    def get_enabled_tools(self) -> Mapping[str, Any]:
        """Return the saved global selection, disabled entries included.

        An empty mapping means the selection was never saved.
        """
        ...

    def get_step_disabled_tools(self, context_id: str) -> Sequence[str]:
        """Return tool ids disabled for one pipeline step."""
        ...

    def is_tool_configured(self, tool_id: str) -> bool:
        """Return whether the tool's required configuration is present."""
        ...


class SettingsSelectionStore:
    """Selection store backed by :class:`Settings` plus per-step tool lists."""

    def __init__(
        self,
        settings: Settings,
        step_disabled_tools: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._settings = settings
        self._step_disabled: dict[str, list[str]] = {
            step_id: list(tool_ids) for step_id, tool_ids in (step_disabled_tools or {}).items()
        }

    def get_enabled_tools(self) -> Mapping[str, Any]:
        return dict(self._settings.enabled_tools)

    def get_step_disabled_tools(self, context_id: str) -> Sequence[str]:
        return list(self._step_disabled.get(context_id, ()))

    def set_step_disabled_tools(self, context_id: str, tool_ids: Sequence[str]) -> None:
        self._step_disabled[context_id] = list(tool_ids)

    def is_tool_configured(self, tool_id: str) -> bool:
        return bool(self._settings.tool_configs.get(tool_id))


# -----------------------------------------------------------------------------
# Gate
# -----------------------------------------------------------------------------


class ToolAvailabilityGate:
    """Decides which global tools an agent may see.

    None of the public checks raise: a failing store lookup is logged and
    the tool is reported unavailable.
    """

    def __init__(self, registry: ToolRegistry, store: ToolSelectionStore) -> None:
        self._registry = registry
        self._store = store

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Configuration status
    # ------------------------------------------------------------------

    def requires_configuration(self, tool_id: str) -> bool:
        definition = self._registry.global_tools().get(tool_id)
        return bool(definition and definition.requires_config)

    def is_tool_configured(self, tool_id: str) -> bool:
        if not self.requires_configuration(tool_id):
            return True
        return bool(self._store.is_tool_configured(tool_id))

    # ------------------------------------------------------------------
    # Global enablement
    # ------------------------------------------------------------------

    def get_globally_enabled_tools(self) -> list[str]:
        return [tool_id for tool_id, flag in self._store.get_enabled_tools().items() if flag]

    def is_globally_enabled(self, tool_id: str) -> bool:
        enabled = self._store.get_enabled_tools()
        if not enabled:
            return self.is_tool_configured(tool_id) or not self.requires_configuration(tool_id)
        return bool(enabled.get(tool_id))

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def is_available(self, tool_id: str, context_id: str | None = None) -> bool:
        """Return whether ``tool_id`` is usable in the given context.

        Args:
            tool_id: Global tool name.
            context_id: Pipeline step id, or ``None`` for chat.
        """
        try:
            return self._check(tool_id, context_id)
        except Exception:
            LOGGER.warning(
                "Availability check failed for tool %s (context %s)", tool_id, context_id, exc_info=True
            )
            return False

    def _check(self, tool_id: str, context_id: str | None) -> bool:
        definition = self._registry.global_tools().get(tool_id)
        if definition is None:
            return False

        if context_id:
            if tool_id in self._store.get_step_disabled_tools(context_id):
                return False

        if not self.is_globally_enabled(tool_id):
            return False

        return not definition.requires_config or self.is_tool_configured(tool_id)

    def available_global_tools(self, context_id: str | None = None) -> dict[str, ToolDefinition]:
        return {
            name: definition
            for name, definition in self._registry.global_tools().items()
            if self.is_available(name, context_id)
        }

    def get_available_tools_for_chat(self) -> dict[str, ToolDefinition]:
        """Return gated global tools plus every chat-only tool."""

        tools = self.available_global_tools(None)
        for name, definition in self._registry.chat_tools().items():
            tools.setdefault(name, definition)
        return tools

    # ------------------------------------------------------------------
    # Selection validation and listings
    # ------------------------------------------------------------------

    def get_step_disabled_tools(self, context_id: str | None) -> list[str]:
        if not context_id:
            return []
        return list(self._store.get_step_disabled_tools(context_id))

    def validate_tool_selection(self, tool_id: str) -> bool:
        """Return whether ``tool_id`` may be selected for a step."""

        definition = self._registry.global_tools().get(tool_id)
        if definition is None:
            return False
        if definition.requires_config and not self.is_tool_configured(tool_id):
            return False
        return self.is_globally_enabled(tool_id)

    def filter_valid_tools(self, tool_ids: Sequence[str]) -> list[str]:
        return [tool_id for tool_id in tool_ids if self.validate_tool_selection(tool_id)]

    def get_opt_out_defaults(self) -> list[str]:
        """Tool ids that start out enabled when the selection is first saved."""

        return [tool_id for tool_id in self._registry.global_tools() if self.is_tool_configured(tool_id)]

    def get_tools_for_api(self) -> dict[str, dict[str, Any]]:
        formatted: dict[str, dict[str, Any]] = {}
        for tool_id, definition in self._registry.global_tools().items():
            formatted[tool_id] = {
                "label": definition.label or tool_id.replace("_", " ").capitalize(),
                "description": definition.description,
                "requires_config": definition.requires_config,
                "configured": self.is_tool_configured(tool_id),
                "globally_enabled": self.is_globally_enabled(tool_id),
            }
        return formatted
