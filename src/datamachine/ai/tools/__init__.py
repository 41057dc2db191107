"""Tool model, registry, gating, discovery and dispatch.

Example:
    from datamachine.ai.tools import (
        ToolAvailabilityGate,
        ToolDefinition,
        ToolDiscovery,
        ToolExecutor,
        ToolRegistry,
    )

    registry = ToolRegistry()
    registry.register_global("web_fetch", lambda: ToolDefinition(name="web_fetch", ...))
    gate = ToolAvailabilityGate(registry, SettingsSelectionStore(settings))
    tools = ToolDiscovery(gate).get_available_tools_for_chat()
    result = await ToolExecutor().execute("web_fetch", {"url": "..."}, tools, payload)
"""

from .types import (
    DefinitionSource,
    LazyDefinition,
    ToolDefinition,
    ToolParameter,
    ToolResult,
    resolve_definition,
)

from .errors import (
    DuplicateToolError,
    ErrorCode,
    ToolNotFoundError,
)

from .registry import (
    HandlerToolRequest,
    StaticToolProvider,
    ToolProvider,
    ToolRegistry,
)

from .availability import (
    SettingsSelectionStore,
    ToolAvailabilityGate,
    ToolSelectionStore,
)

from .discovery import ToolDiscovery, handler_slugs_for
from .parameters import ToolParameterBuilder

from .executor import (
    ExecutableResolutionError,
    ExecutorConfig,
    ToolExecutor,
    missing_required_parameters,
)

from .result_finder import ToolResultFinder

__all__ = [
    # types.py
    "DefinitionSource",
    "LazyDefinition",
    "ToolDefinition",
    "ToolParameter",
    "ToolResult",
    "resolve_definition",
    # errors.py
    "DuplicateToolError",
    "ErrorCode",
    "ToolNotFoundError",
    # registry.py
    "HandlerToolRequest",
    "StaticToolProvider",
    "ToolProvider",
    "ToolRegistry",
    # availability.py
    "SettingsSelectionStore",
    "ToolAvailabilityGate",
    "ToolSelectionStore",
    # discovery.py
    "ToolDiscovery",
    "handler_slugs_for",
    # parameters.py
    "ToolParameterBuilder",
    # executor.py
    "ExecutableResolutionError",
    "ExecutorConfig",
    "ToolExecutor",
    "missing_required_parameters",
    # result_finder.py
    "ToolResultFinder",
]
