"""Core types for the conversation loop.

Messages are immutable and provider neutral. Provider adapters convert
them to their own wire format; callers persist them with
:meth:`ConversationMessage.to_dict`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Sequence

from ..tools.types import ToolResult

__all__ = [
    "MessageRole",
    "ToolCallRequest",
    "ConversationMessage",
    "ToolExecutionRecord",
    "LoopState",
    "LoopResult",
]


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------

MessageRole = Literal["user", "assistant", "tool_result"]


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    """A tool call requested by the AI inside an assistant message.

    Attributes:
        call_id: Provider-assigned identifier linking the call to its result.
        name: Requested tool name.
        arguments: Parsed arguments.
    """

    call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ToolCallRequest":
        arguments = payload.get("arguments") or payload.get("parameters") or {}
        return cls(
            call_id=str(payload.get("call_id") or payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            arguments=dict(arguments) if isinstance(arguments, Mapping) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"call_id": self.call_id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass(slots=True, frozen=True)
class ConversationMessage:
    """One entry of the conversation history.

    Attributes:
        role: ``user``, ``assistant`` or ``tool_result``.
        content: Text, or structured content parts (e.g. an attached file).
        metadata: Engine bookkeeping (message type, tool name, turn).
        tool_calls: Calls requested by an assistant message.
    """

    role: MessageRole
    content: Any = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    tool_calls: tuple[ToolCallRequest, ...] = ()

    @classmethod
    def user(cls, content: Any, **metadata: Any) -> "ConversationMessage":
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Sequence[ToolCallRequest] = (),
        **metadata: Any,
    ) -> "ConversationMessage":
        return cls(role="assistant", content=content, metadata=metadata, tool_calls=tuple(tool_calls))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ConversationMessage":
        role = payload.get("role") or "user"
        if role == "tool":
            role = "tool_result"
        return cls(
            role=role,
            content=payload.get("content", ""),
            metadata=dict(payload.get("metadata") or {}),
            tool_calls=tuple(
                call if isinstance(call, ToolCallRequest) else ToolCallRequest.from_mapping(call)
                for call in payload.get("tool_calls") or ()
            ),
        )

    @property
    def text(self) -> str:
        return self.content if isinstance(self.content, str) else ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        if self.tool_calls:
            payload["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        return payload


# -----------------------------------------------------------------------------
# Tool Execution Records
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolExecutionRecord:
    """One dispatched tool call, kept for the caller's output projection.

    Attributes:
        tool_name: Name the AI requested.
        parameters: Arguments the AI supplied.
        result: Outcome returned by the dispatcher.
        is_handler_tool: Whether the tool is bound to a handler.
        turn_count: Conversation turn in which the call was made (1-based,
            continuing the numbering already present in the history).
        call_id: Provider call identifier.
    """

    tool_name: str
    parameters: Mapping[str, Any]
    result: ToolResult
    is_handler_tool: bool
    turn_count: int
    call_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "parameters": dict(self.parameters),
            "result": self.result.to_dict(),
            "is_handler_tool": self.is_handler_tool,
            "turn_count": self.turn_count,
            "call_id": self.call_id,
        }


# -----------------------------------------------------------------------------
# Loop Result
# -----------------------------------------------------------------------------


class LoopState(str, Enum):
    """States of the conversation loop."""

    RUNNING = "running"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    COMPLETED = "completed"
    ERROR = "error"
    MAX_TURNS_REACHED = "max_turns_reached"


@dataclass(slots=True, frozen=True)
class LoopResult:
    """Output of one :meth:`ConversationLoop.execute` call.

    ``completed`` is true only when the last provider response contained
    no tool calls. ``error`` is set only for provider failures, in which
    case ``final_content`` is empty. ``turn_count`` counts the provider
    calls made by this invocation only.
    """

    messages: tuple[ConversationMessage, ...]
    final_content: str = ""
    completed: bool = False
    turn_count: int = 0
    tool_execution_results: tuple[ToolExecutionRecord, ...] = ()
    last_tool_calls: tuple[ToolCallRequest, ...] = ()
    error: str | None = None
    warning: str | None = None
    max_turns_reached: bool = False
    state: LoopState = LoopState.RUNNING

    def __post_init__(self) -> None:
        if self.error is not None and self.final_content:
            raise ValueError("LoopResult cannot carry both an error and final content")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [message.to_dict() for message in self.messages],
            "final_content": self.final_content,
            "completed": self.completed,
            "turn_count": self.turn_count,
            "tool_execution_results": [record.to_dict() for record in self.tool_execution_results],
            "last_tool_calls": [call.to_dict() for call in self.last_tool_calls],
            "error": self.error,
            "warning": self.warning,
            "max_turns_reached": self.max_turns_reached,
            "state": self.state.value,
        }
