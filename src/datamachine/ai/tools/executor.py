"""Tool dispatcher.

:meth:`ToolExecutor.execute` runs one AI-requested tool call through a
fixed sequence of gates. Every caller-visible failure comes back as a
failed :class:`~.types.ToolResult` so the AI can react to it on its next
turn; the dispatcher never raises for a bad tool call.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import ErrorCode
from .parameters import ToolParameterBuilder
from .types import ToolDefinition, ToolResult

__all__ = [
    "ToolExecutor",
    "ExecutorConfig",
    "ExecutableResolutionError",
    "missing_required_parameters",
    "resolve_executable",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Executable Resolution
# -----------------------------------------------------------------------------


class ExecutableResolutionError(Exception):
    """Raised when a tool's executable reference cannot be resolved."""

    def __init__(self, message: str, code: str) -> None:
        self.code = code
        super().__init__(message)


def resolve_executable(definition: ToolDefinition) -> Any:
    """Turn ``definition.executable_ref`` into something callable.

    Import paths use ``"package.module:Attribute"`` (a dotted
    ``"package.module.Attribute"`` is accepted too).

    Raises:
        ExecutableResolutionError: If the reference is missing or unresolvable.
    """
    ref = definition.executable_ref
    if ref is None or ref == "":
        raise ExecutableResolutionError(
            f"Tool '{definition.name}' is missing required executable. "
            "This may indicate the tool was not properly resolved from its definition.",
            ErrorCode.EXECUTABLE_MISSING,
        )
    if not isinstance(ref, str):
        return _require_invocable(definition, ref)

    module_name, separator, attribute = ref.partition(":")
    if not separator:
        module_name, _, attribute = ref.rpartition(".")
    try:
        module = importlib.import_module(module_name)
        executable = getattr(module, attribute)
    except (ImportError, AttributeError, ValueError) as exc:
        raise ExecutableResolutionError(f"Tool class '{ref}' not found", ErrorCode.EXECUTABLE_NOT_FOUND) from exc
    return _require_invocable(definition, executable)


def _require_invocable(definition: ToolDefinition, executable: Any) -> Any:
    if hasattr(executable, "handle_tool_call") or (callable(executable) and not inspect.isclass(executable)):
        return executable
    raise ExecutableResolutionError(
        f"Executable for tool '{definition.name}' has no handle_tool_call method",
        ErrorCode.EXECUTABLE_NOT_FOUND,
    )


def missing_required_parameters(ai_parameters: Mapping[str, Any], definition: ToolDefinition) -> list[str]:
    """Return every required parameter that is absent, ``None`` or ``""``."""

    missing: list[str] = []
    for name in definition.required_parameters:
        value = ai_parameters.get(name)
        if value is None or value == "":
            missing.append(name)
    return missing


# -----------------------------------------------------------------------------
# Executor Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        log_arguments: Whether to log built parameters (may contain content).
        log_results: Whether to log result envelopes.
    """

    log_arguments: bool = False
    log_results: bool = False


# -----------------------------------------------------------------------------
# Tool Executor
# -----------------------------------------------------------------------------


class ToolExecutor:
    """Dispatches AI tool calls to their executables."""

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        parameter_builder: type[ToolParameterBuilder] = ToolParameterBuilder,
    ) -> None:
        self._config = config or ExecutorConfig()
        self._parameter_builder = parameter_builder

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def execute(
        self,
        tool_name: str,
        ai_parameters: Mapping[str, Any],
        available_tools: Mapping[str, ToolDefinition],
        payload: Mapping[str, Any],
    ) -> ToolResult:
        """Execute one tool call.

        Args:
            tool_name: Name requested by the AI.
            ai_parameters: Arguments supplied by the AI.
            available_tools: Tools visible in this conversation.
            payload: Execution payload used for parameter building.

        Returns:
            The tool's own result, or a failed result describing why the
            call could not be made.
        """
        definition = available_tools.get(tool_name)
        if definition is None:
            LOGGER.warning("AI requested unknown tool %s", tool_name)
            return ToolResult.fail(tool_name, f"Tool '{tool_name}' not found", code=ErrorCode.TOOL_NOT_FOUND)

        missing = missing_required_parameters(ai_parameters, definition)
        if missing:
            LOGGER.info("Tool %s called without required parameter(s): %s", tool_name, ", ".join(missing))
            return ToolResult.fail(
                tool_name,
                f"{definition.display_name} requires the following parameters: {', '.join(missing)}. "
                "Please provide these parameters and try again.",
                code=ErrorCode.MISSING_PARAMETER,
            )

        parameters = self._parameter_builder.build_parameters(ai_parameters, payload, definition)

        try:
            executable = resolve_executable(definition)
        except ExecutableResolutionError as exc:
            LOGGER.error("Tool %s could not be resolved: %s", tool_name, exc)
            return ToolResult.fail(tool_name, str(exc), code=exc.code)

        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s with parameters: %s", tool_name, parameters)
        else:
            LOGGER.debug("Executing tool %s", tool_name)

        start = time.perf_counter()
        raw_result = await _invoke(executable, parameters, definition)
        result = ToolResult.coerce(raw_result, tool_name)
        duration_ms = (time.perf_counter() - start) * 1000

        if self._config.log_results:
            LOGGER.debug("Tool %s finished in %.1fms: %s", tool_name, duration_ms, result.to_dict())
        else:
            LOGGER.debug(
                "Tool %s finished in %.1fms (success=%s, pending=%s)",
                tool_name,
                duration_ms,
                result.success,
                result.pending,
            )
        return result


async def _invoke(executable: Any, parameters: dict[str, Any], definition: ToolDefinition) -> Any:
    if inspect.isclass(executable):
        executable = executable()
    handle = getattr(executable, "handle_tool_call", None)
    outcome = (handle or executable)(parameters, definition)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome
