"""Chat agent service.

Chat requests run the conversation loop one turn at a time: the client
sends a message with :meth:`ChatService.handle_chat`, then polls
:meth:`ChatService.handle_continue` until the response reports
``completed``. Each call holds the connection for a single provider
round trip.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..ai.agent_context import AgentType, agent_context
from ..ai.orchestration.conversation import ConversationManager
from ..ai.orchestration.loop import ConversationLoop
from ..ai.orchestration.types import LoopResult
from ..ai.tools.discovery import ToolDiscovery
from ..services.settings import Settings
from .sessions import ChatSession, ChatSessionStore, InMemoryChatSessionStore

__all__ = ["ChatError", "ChatService"]

LOGGER = logging.getLogger(__name__)

_MAX_LIST_LIMIT = 100


class ChatError(Exception):
    """Request-level chat failure with an HTTP-style status."""

    def __init__(self, code: str, message: str, status: int = 500) -> None:
        self.code = code
        self.message = message
        self.status = status
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": {"status": self.status}}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ChatService:
    """Session-backed chat front end of the conversation loop."""

    def __init__(
        self,
        loop: ConversationLoop,
        discovery: ToolDiscovery,
        settings: Settings,
        *,
        store: ChatSessionStore | None = None,
    ) -> None:
        self._loop = loop
        self._discovery = discovery
        self._settings = settings
        self._store = store or InMemoryChatSessionStore()

    @property
    def store(self) -> ChatSessionStore:
        return self._store

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def handle_chat(
        self,
        *,
        user_id: int,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        session_id: str | None = None,
        selected_pipeline_id: int | None = None,
    ) -> dict[str, Any]:
        """Append ``message`` to a session and run one conversation turn.

        A new session is created when ``session_id`` is not given.

        Raises:
            ChatError: ``provider_required``/``model_required`` (400),
                ``session_not_found`` (404), ``session_access_denied`` (403)
                or a failed AI request (500).
        """
        provider = (provider or self._settings.default_provider).strip()
        model = (model or self._settings.default_model).strip()
        max_turns = self._settings.max_turns
        if not provider:
            raise ChatError(
                "provider_required",
                "AI provider is required. Please set a default provider in Data Machine settings "
                "or provide one in the request.",
                400,
            )
        if not model:
            raise ChatError(
                "model_required",
                "AI model is required. Please set a default model in Data Machine settings "
                "or provide one in the request.",
                400,
            )

        if session_id:
            messages = list(self._owned_session(session_id, user_id).messages)
        else:
            session_id = self._store.create_session(user_id, {"started_at": _now(), "message_count": 0})
            messages = []

        messages.append(
            ConversationManager.build_conversation_message("user", message, {"type": "text"}).to_dict()
        )
        # Persist the user message before the provider call.
        self._store.update_session(
            session_id,
            messages,
            {"status": "processing", "started_at": _now(), "message_count": len(messages)},
            provider,
            model,
        )

        result = await self.execute_conversation_turn(
            session_id,
            messages,
            provider,
            model,
            single_turn=True,
            max_turns=max_turns,
            selected_pipeline_id=selected_pipeline_id,
        )

        conversation = [item.to_dict() for item in result.messages]
        metadata = self._turn_metadata(result, conversation, result.turn_count, selected_pipeline_id)
        self._store.update_session(session_id, conversation, metadata, provider, model)

        response: dict[str, Any] = {
            "session_id": session_id,
            "response": result.final_content,
            "tool_calls": [call.to_dict() for call in result.last_tool_calls],
            "conversation": conversation,
            "metadata": metadata,
            "completed": result.completed,
            "max_turns": max_turns,
            "turn_number": result.turn_count,
        }
        if result.warning is not None:
            response["warning"] = result.warning
        if result.max_turns_reached or (not result.completed and result.turn_count >= max_turns):
            response["max_turns_reached"] = True
        return response

    async def handle_continue(self, *, user_id: int, session_id: str) -> dict[str, Any]:
        """Run the next turn of a session with pending tool results.

        The turn budget is cumulative across the session: once
        ``current_turn`` reaches ``max_turns`` no further turn is run.

        Raises:
            ChatError: ``session_not_found`` (404), ``session_access_denied``
                (403) or a failed AI request (500).
        """
        max_turns = self._settings.max_turns
        session = self._owned_session(session_id, user_id)
        metadata = session.metadata
        current_turn = int(metadata.get("current_turn") or 0)

        if metadata.get("status") == "completed" and not metadata.get("has_pending_tools"):
            return {
                "session_id": session_id,
                "new_messages": [],
                "final_content": "",
                "tool_calls": [],
                "completed": True,
                "turn_number": current_turn,
                "max_turns": max_turns,
            }

        if current_turn >= max_turns:
            LOGGER.warning("Chat session %s has used its %d turns", session_id, max_turns)
            return {
                "session_id": session_id,
                "new_messages": [],
                "final_content": "",
                "tool_calls": [],
                "completed": False,
                "turn_number": current_turn,
                "max_turns": max_turns,
                "max_turns_reached": True,
                "warning": f"Maximum conversation turns ({max_turns}) reached. The response may be incomplete.",
            }

        provider = session.provider or self._settings.default_provider
        model = session.model or self._settings.default_model
        selected_pipeline_id = metadata.get("selected_pipeline_id")
        message_count_before = len(session.messages)

        result = await self.execute_conversation_turn(
            session_id,
            session.messages,
            provider,
            model,
            single_turn=True,
            max_turns=max_turns,
            selected_pipeline_id=selected_pipeline_id,
        )

        conversation = [item.to_dict() for item in result.messages]
        current_turn += result.turn_count
        max_turns_reached = result.max_turns_reached or (not result.completed and current_turn >= max_turns)
        updated = self._turn_metadata(result, conversation, current_turn, selected_pipeline_id)
        self._store.update_session(session_id, conversation, updated, provider, model)

        response: dict[str, Any] = {
            "session_id": session_id,
            "new_messages": conversation[message_count_before:],
            "final_content": result.final_content,
            "tool_calls": [call.to_dict() for call in result.last_tool_calls],
            "completed": result.completed,
            "turn_number": current_turn,
            "max_turns": max_turns,
            "max_turns_reached": max_turns_reached,
        }
        if result.warning is not None:
            response["warning"] = result.warning
        return response

    async def handle_ping(
        self,
        *,
        message: str,
        prompt: str = "",
        context: Mapping[str, Any] | None = None,
        user_id: int = 1,
    ) -> dict[str, Any]:
        """Run a complete multi-turn conversation for a system-level request.

        Raises:
            ChatError: ``provider_required`` (500) when no default provider
                and model are configured, or a failed AI request (500).
        """
        provider = self._settings.default_provider
        model = self._settings.default_model
        if not provider or not model:
            raise ChatError("provider_required", "Default AI provider and model must be configured.", 500)

        full_message = f"{prompt}\n\n{message}" if prompt else message
        if context:
            rendered = json.dumps(dict(context), indent=4, ensure_ascii=False, default=str)
            full_message += f"\n\n**Pipeline Context:**\n```json\n{rendered}\n```"

        session_id = self._store.create_session(
            user_id, {"started_at": _now(), "message_count": 0, "source": "ping"}
        )
        messages = [
            ConversationManager.build_conversation_message("user", full_message, {"type": "text"}).to_dict()
        ]
        self._store.update_session(
            session_id,
            messages,
            {"status": "processing", "started_at": _now(), "message_count": len(messages)},
            provider,
            model,
        )

        result = await self.execute_conversation_turn(
            session_id, messages, provider, model, single_turn=False, max_turns=self._settings.max_turns
        )
        conversation = [item.to_dict() for item in result.messages]
        self._store.update_session(
            session_id,
            conversation,
            {
                "status": "completed",
                "last_activity": _now(),
                "message_count": len(conversation),
                "source": "ping",
            },
            provider,
            model,
        )
        LOGGER.info("Chat ping completed in session %s after %d turn(s)", session_id, result.turn_count)
        return {
            "session_id": session_id,
            "response": result.final_content,
            "turns": result.turn_count,
            "completed": True,
        }

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, *, user_id: int, session_id: str) -> dict[str, Any]:
        session = self._owned_session(session_id, user_id)
        return {
            "session_id": session.session_id,
            "conversation": list(session.messages),
            "metadata": dict(session.metadata),
        }

    def list_sessions(
        self,
        *,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
        agent_type: AgentType | None = None,
    ) -> dict[str, Any]:
        limit = min(_MAX_LIST_LIMIT, max(1, int(limit)))
        offset = max(0, int(offset))
        sessions = self._store.get_user_sessions(user_id, limit, offset, agent_type)
        return {
            "sessions": [session.to_dict() for session in sessions],
            "total": self._store.get_user_session_count(user_id, agent_type),
            "limit": limit,
            "offset": offset,
            "agent_type": agent_type.value if agent_type else None,
        }

    def delete_session(self, *, user_id: int, session_id: str) -> dict[str, Any]:
        self._owned_session(session_id, user_id)
        if not self._store.delete_session(session_id):
            raise ChatError("session_delete_failed", "Failed to delete session", 500)
        return {"session_id": session_id, "deleted": True}

    # ------------------------------------------------------------------
    # Conversation turn
    # ------------------------------------------------------------------

    async def execute_conversation_turn(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        provider: str,
        model: str,
        *,
        single_turn: bool = False,
        max_turns: int | None = None,
        selected_pipeline_id: int | None = None,
    ) -> LoopResult:
        """Run the loop for a session under the chat agent context.

        Failures are recorded on the session (``status`` ``error`` with the
        message) before being raised.

        Raises:
            ChatError: If the provider call fails (``ai_request_failed``) or
                the loop raises (``chat_error``).
        """
        loop_context: dict[str, Any] = {"session_id": session_id}
        if selected_pipeline_id:
            loop_context["selected_pipeline_id"] = selected_pipeline_id

        with agent_context(AgentType.CHAT):
            try:
                tools = self._discovery.get_available_tools_for_chat()
                result = await self._loop.execute(
                    messages,
                    tools,
                    provider,
                    model,
                    AgentType.CHAT,
                    loop_context,
                    max_turns if max_turns is not None else self._settings.max_turns,
                    single_turn,
                )
            except Exception as exc:
                LOGGER.exception("AI loop failed with exception in chat session %s", session_id)
                self._record_error(session_id, messages, provider, model, str(exc))
                raise ChatError("chat_error", str(exc), 500) from exc

        if result.error is not None:
            LOGGER.error("AI loop returned error in chat session %s: %s", session_id, result.error)
            self._record_error(session_id, messages, provider, model, result.error)
            raise ChatError("ai_request_failed", result.error, 500)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owned_session(self, session_id: str, user_id: int) -> ChatSession:
        session = self._store.get_session(session_id)
        if session is None:
            raise ChatError("session_not_found", "Session not found", 404)
        if session.user_id != int(user_id):
            raise ChatError("session_access_denied", "Access denied to this session", 403)
        return session

    def _record_error(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        provider: str,
        model: str,
        error: str,
    ) -> None:
        self._store.update_session(
            session_id,
            messages,
            {
                "status": "error",
                "error_message": error,
                "last_activity": _now(),
                "message_count": len(messages),
            },
            provider,
            model,
        )

    @staticmethod
    def _turn_metadata(
        result: LoopResult,
        conversation: Sequence[Mapping[str, Any]],
        current_turn: int,
        selected_pipeline_id: int | None,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "status": "completed" if result.completed else "processing",
            "last_activity": _now(),
            "message_count": len(conversation),
            "current_turn": current_turn,
            "has_pending_tools": not result.completed,
        }
        if selected_pipeline_id:
            metadata["selected_pipeline_id"] = selected_pipeline_id
        return metadata
