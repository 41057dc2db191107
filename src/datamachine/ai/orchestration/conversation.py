"""Conversation message construction and formatting."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from ..tools.types import ToolResult
from .types import ConversationMessage, ToolCallRequest

__all__ = ["ConversationManager"]

LOGGER = logging.getLogger(__name__)

_ROLE_ALIASES = {"tool": "tool_result"}
_VALID_ROLES = {"user", "assistant", "tool_result"}
_MAX_RESULT_CHARS = 4_000


def _display_name(tool_name: str) -> str:
    return tool_name.replace("_", " ").title()


def _dump(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


class ConversationManager:
    """Builds the messages the loop appends to a conversation.

    All methods are pure; none of them mutate messages they are given.
    """

    @staticmethod
    def build_conversation_message(
        role: str,
        content: Any,
        metadata: Mapping[str, Any] | None = None,
    ) -> ConversationMessage:
        """Create a message envelope.

        Args:
            role: ``user``, ``assistant`` or ``tool_result`` (``tool`` is
                accepted as an alias).
            content: Text or structured content parts.
            metadata: Optional bookkeeping stored with the message.

        Raises:
            ValueError: If ``role`` is not a conversation role.
        """
        resolved = _ROLE_ALIASES.get(role, role)
        if resolved not in _VALID_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        return ConversationMessage(role=resolved, content=content, metadata=dict(metadata or {}))

    @staticmethod
    def format_tool_call_message(
        tool_calls: Sequence[ToolCallRequest],
        content: str | None,
        turn_count: int,
    ) -> ConversationMessage:
        """Assistant message recording the calls requested in one turn."""

        return ConversationMessage.assistant(
            content or "",
            tool_calls,
            type="tool_call",
            turn=turn_count,
        )

    @classmethod
    def format_tool_result_message(
        cls,
        call: ToolCallRequest,
        result: ToolResult,
        turn_count: int,
        *,
        is_handler_tool: bool = False,
    ) -> ConversationMessage:
        """Tool-result message the AI reads on its next turn.

        Failures are phrased so the AI can correct itself; successful and
        pending results are summarized by :meth:`generate_success_message`.
        """
        if result.success:
            content = cls.generate_success_message(call.name, result, call.arguments)
        else:
            content = f"TOOL ERROR: {_display_name(call.name)} failed: {result.error or 'unknown error'}"
        metadata: dict[str, Any] = {
            "type": "tool_result",
            "tool_name": call.name,
            "tool_call_id": call.call_id,
            "success": result.success,
            "turn": turn_count,
            "is_handler_tool": is_handler_tool,
        }
        if result.pending:
            metadata["pending"] = True
            metadata["job_reference"] = result.job_reference
        if result.data is not None:
            metadata["tool_data"] = result.data
        return ConversationMessage(role="tool_result", content=content, metadata=metadata)

    @staticmethod
    def generate_success_message(
        tool_name: str,
        result: ToolResult,
        parameters: Mapping[str, Any] | None = None,
    ) -> str:
        """Human readable summary of a tool outcome."""

        display = _display_name(tool_name)
        if not result.success:
            return f"{display} failed: {result.error or 'unknown error'}"
        if result.pending:
            return (
                f"{display} started a background job (reference {result.job_reference}). "
                "The outcome will be reported separately; do not call the tool again for this request."
            )

        data = result.data
        if isinstance(data, Mapping) and isinstance(data.get("message"), str) and data["message"]:
            return f"SUCCESS: {data['message']}"
        message = f"SUCCESS: {display} completed successfully."
        if data is None or data == {} or data == []:
            if parameters:
                return f"{message} Parameters: {_dump(dict(parameters))}"
            return message
        rendered = data if isinstance(data, str) else _dump(data)
        if len(rendered) > _MAX_RESULT_CHARS:
            LOGGER.debug("Truncating %s result from %d characters", tool_name, len(rendered))
            rendered = rendered[:_MAX_RESULT_CHARS] + "..."
        return f"{message} Result: {rendered}"

    @staticmethod
    def to_provider_messages(messages: Sequence[ConversationMessage]) -> list[dict[str, Any]]:
        """Convert messages to OpenAI-style chat completion parameters."""

        params: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "tool_result":
                params.append(
                    {
                        "role": "tool",
                        "tool_call_id": str(message.metadata.get("tool_call_id") or ""),
                        "content": message.text,
                    }
                )
            elif message.role == "assistant":
                payload: dict[str, Any] = {"role": "assistant", "content": message.text or None}
                if message.tool_calls:
                    payload["tool_calls"] = [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": _dump(dict(call.arguments))},
                        }
                        for call in message.tool_calls
                    ]
                params.append(payload)
            else:
                params.append({"role": "user", "content": message.content})
        return params
