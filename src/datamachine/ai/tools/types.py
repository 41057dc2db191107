"""Core types for AI tools.

Tools are described by :class:`ToolDefinition` values contributed at
discovery time. Their outcomes are :class:`ToolResult` values: a tagged
result that is either a success, a failure, or a pending background job.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Union

from .errors import ErrorCode

__all__ = [
    "ToolParameter",
    "ToolDefinition",
    "ToolResult",
    "LazyDefinition",
    "DefinitionSource",
    "resolve_definition",
]


# -----------------------------------------------------------------------------
# Tool Definition
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolParameter:
    """One named argument of a tool.

    Attributes:
        type: JSON schema type name (``string``, ``integer``, ``array`` ...).
        required: Whether the AI must supply a non-empty value.
        description: Text shown to the AI.
    """

    type: str = "string"
    required: bool = False
    description: str = ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ToolParameter":
        return cls(
            type=str(payload.get("type") or "string"),
            required=bool(payload.get("required", False)),
            description=str(payload.get("description") or ""),
        )

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    """Description of one callable capability.

    Attributes:
        name: Unique tool name.
        description: Description shown to the AI.
        parameters: Ordered mapping of parameter name to :class:`ToolParameter`.
        handler_binding: Handler slug for handler-scoped tools, else ``None``.
        requires_config: Whether the tool must be configured before use.
        is_async: Whether the tool schedules background work and answers
            with a pending marker.
        executable_ref: Callable, class, or ``"module:attr"`` import path of
            the unit performing the call.
        handler_config: Configuration of the contributing handler.
        label: Human readable name for listings.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, ToolParameter] = field(default_factory=dict)
    handler_binding: str | None = None
    requires_config: bool = False
    is_async: bool = False
    executable_ref: Any = None
    handler_config: Mapping[str, Any] = field(default_factory=dict)
    label: str | None = None

    @classmethod
    def from_mapping(cls, name: str, payload: Mapping[str, Any]) -> "ToolDefinition":
        """Build a definition from a plain mapping contribution.

        Accepts the keys of this dataclass plus the short forms ``handler``,
        ``async``, ``executable`` and ``class``.
        """
        raw_parameters = payload.get("parameters") or {}
        parameters = {
            str(param_name): spec if isinstance(spec, ToolParameter) else ToolParameter.from_mapping(spec)
            for param_name, spec in raw_parameters.items()
            if isinstance(spec, (ToolParameter, Mapping))
        }
        executable = payload.get("executable_ref", payload.get("executable", payload.get("class")))
        return cls(
            name=str(payload.get("name") or name),
            description=str(payload.get("description") or ""),
            parameters=parameters,
            handler_binding=payload.get("handler_binding", payload.get("handler")),
            requires_config=bool(payload.get("requires_config", False)),
            is_async=bool(payload.get("is_async", payload.get("async", False))),
            executable_ref=executable,
            handler_config=dict(payload.get("handler_config") or {}),
            label=payload.get("label"),
        )

    @property
    def is_handler_tool(self) -> bool:
        return bool(self.handler_binding)

    @property
    def required_parameters(self) -> list[str]:
        """Names of required parameters in declaration order."""

        return [name for name, spec in self.parameters.items() if spec.required]

    @property
    def display_name(self) -> str:
        """Tool name as words, e.g. ``wordpress_publish`` -> ``Wordpress Publish``."""

        return self.name.replace("_", " ").title()

    def with_handler_config(self, handler_config: Mapping[str, Any]) -> "ToolDefinition":
        return replace(self, handler_config=dict(handler_config))

    def to_provider_schema(self) -> dict[str, Any]:
        """Convert to the function-tool format accepted by chat providers."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {name: spec.to_schema() for name, spec in self.parameters.items()},
                    "required": self.required_parameters,
                },
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize the descriptive fields (the executable is omitted)."""

        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                name: {"type": spec.type, "required": spec.required, "description": spec.description}
                for name, spec in self.parameters.items()
            },
            "handler": self.handler_binding,
            "requires_config": self.requires_config,
            "async": self.is_async,
            "handler_config": dict(self.handler_config),
        }


# -----------------------------------------------------------------------------
# Lazy Definitions
# -----------------------------------------------------------------------------


class LazyDefinition:
    """Definition thunk evaluated on first use and memoized afterwards."""

    __slots__ = ("name", "_factory", "_resolved")

    def __init__(self, factory: Callable[[], Any], *, name: str | None = None) -> None:
        self.name = name
        self._factory = factory
        self._resolved: ToolDefinition | None = None

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not None

    def reset(self) -> None:
        self._resolved = None

    def resolve(self) -> ToolDefinition:
        if self._resolved is None:
            produced = self._factory()
            self._resolved = _coerce_definition(self.name, produced)
        return self._resolved

    def __repr__(self) -> str:
        state = "resolved" if self._resolved is not None else "pending"
        return f"LazyDefinition(name={self.name!r}, {state})"


DefinitionSource = Union[ToolDefinition, LazyDefinition, Mapping[str, Any], Callable[[], Any]]


def resolve_definition(name: str | None, source: DefinitionSource) -> ToolDefinition:
    """Resolve any supported definition source into a :class:`ToolDefinition`.

    Raises:
        TypeError: If the source does not produce a definition.
    """
    if isinstance(source, LazyDefinition):
        return source.resolve()
    if callable(source) and not isinstance(source, (ToolDefinition, Mapping)):
        return _coerce_definition(name, source())
    return _coerce_definition(name, source)


def _coerce_definition(name: str | None, produced: Any) -> ToolDefinition:
    if isinstance(produced, ToolDefinition):
        return produced
    if isinstance(produced, Mapping):
        if not (name or produced.get("name")):
            raise TypeError("Tool definition mapping requires a name")
        return ToolDefinition.from_mapping(str(name or produced.get("name")), produced)
    raise TypeError(f"Tool definition for {name!r} resolved to {type(produced).__name__}")


# -----------------------------------------------------------------------------
# Tool Result
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation.

    Exactly one of three shapes: success (``success`` true, optional
    ``data``), failure (``success`` false, ``error`` set) or pending
    (``success`` and ``pending`` true, ``job_reference`` set).
    """

    success: bool
    tool_name: str = ""
    data: Any = None
    error: str | None = None
    code: str | None = None
    pending: bool = False
    job_reference: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, tool_name: str, data: Any = None, **extra: Any) -> "ToolResult":
        return cls(success=True, tool_name=tool_name, data=data, extra=dict(extra))

    @classmethod
    def fail(cls, tool_name: str, error: str, *, code: str | None = None) -> "ToolResult":
        return cls(success=False, tool_name=tool_name, error=error, code=code)

    @classmethod
    def pending_job(cls, tool_name: str, job_reference: str, data: Any = None) -> "ToolResult":
        return cls(success=True, tool_name=tool_name, data=data, pending=True, job_reference=str(job_reference))

    @classmethod
    def coerce(cls, value: Any, tool_name: str) -> "ToolResult":
        """Normalize what a tool returned into a :class:`ToolResult`.

        Mapping envelopes keep every key; unknown keys land in ``extra``.
        Any other value is treated as successful result data.
        """
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, Mapping):
            known = {"success", "tool_name", "data", "error", "code", "pending", "job_reference"}
            success = bool(value.get("success", False))
            return cls(
                success=success,
                tool_name=str(value.get("tool_name") or tool_name),
                data=value.get("data"),
                error=value.get("error"),
                code=value.get("code") or (None if success else ErrorCode.EXECUTION_FAILED),
                pending=bool(value.get("pending", False)),
                job_reference=value.get("job_reference"),
                extra={key: item for key, item in value.items() if key not in known},
            )
        return cls.ok(tool_name, data=value)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire envelope."""

        payload: dict[str, Any] = {"success": self.success, "tool_name": self.tool_name}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.code is not None:
            payload["code"] = self.code
        if self.pending:
            payload["pending"] = True
            payload["job_reference"] = self.job_reference
        payload.update(self.extra)
        return payload
