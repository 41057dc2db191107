"""Error codes and exceptions for the tool system.

Caller-facing tool failures are reported as :class:`~.types.ToolResult`
values carrying one of the :class:`ErrorCode` constants. The exceptions
here signal registration bugs and are raised to the code that wires tools
together, never to the AI.
"""

from __future__ import annotations

__all__ = ["ErrorCode", "DuplicateToolError", "ToolNotFoundError"]


class ErrorCode:
    """Constants for error codes used in tool result envelopes."""

    TOOL_NOT_FOUND = "tool_not_found"
    MISSING_PARAMETER = "missing_parameter"
    EXECUTABLE_MISSING = "executable_missing"
    EXECUTABLE_NOT_FOUND = "executable_not_found"
    EXECUTION_FAILED = "execution_failed"


class DuplicateToolError(Exception):
    """Raised when a tool name is registered twice."""

    def __init__(self, name: str, existing_source: str = "") -> None:
        self.name = name
        self.existing_source = existing_source
        suffix = f" as a {existing_source} tool" if existing_source else ""
        super().__init__(f"Tool '{name}' is already registered{suffix}")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")
