"""Chat session storage."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Protocol, Sequence

from ..ai.agent_context import AgentType

__all__ = ["ChatSession", "ChatSessionStore", "InMemoryChatSessionStore"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatSession:
    """A persisted chat conversation.

    ``messages`` hold serialized :class:`ConversationMessage` mappings in
    chronological order.
    """

    session_id: str
    user_id: int
    agent_type: AgentType = AgentType.CHAT
    messages: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    provider: str | None = None
    model: str | None = None
    title: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def status(self) -> str:
        return str(self.metadata.get("status") or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "agent_type": self.agent_type.value,
            "title": self.title,
            "provider": self.provider,
            "model": self.model,
            "messages": [dict(message) for message in self.messages],
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ChatSessionStore(Protocol):
    """Persistence boundary for chat sessions."""

    def create_session(
        self, user_id: int, metadata: Mapping[str, Any], agent_type: AgentType = AgentType.CHAT
    ) -> str:
        ...

    def get_session(self, session_id: str) -> ChatSession | None:
        ...

    def update_session(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        metadata: Mapping[str, Any],
        provider: str | None = None,
        model: str | None = None,
    ) -> bool:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def get_user_sessions(
        self, user_id: int, limit: int = 20, offset: int = 0, agent_type: AgentType | None = None
    ) -> list[ChatSession]:
        ...

    def get_user_session_count(self, user_id: int, agent_type: AgentType | None = None) -> int:
        ...


class InMemoryChatSessionStore:
    """Thread-safe, process-local :class:`ChatSessionStore`.

    Sessions are returned as copies; changes go through :meth:`update_session`.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}
        self._lock = threading.Lock()

    def create_session(
        self, user_id: int, metadata: Mapping[str, Any], agent_type: AgentType = AgentType.CHAT
    ) -> str:
        session = ChatSession(
            session_id=uuid.uuid4().hex,
            user_id=int(user_id),
            agent_type=AgentType(agent_type),
            metadata=dict(metadata),
        )
        with self._lock:
            self._sessions[session.session_id] = session
        LOGGER.debug("Created chat session %s for user %s", session.session_id, user_id)
        return session.session_id

    def get_session(self, session_id: str) -> ChatSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return self._copy(session) if session is not None else None

    def update_session(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        metadata: Mapping[str, Any],
        provider: str | None = None,
        model: str | None = None,
    ) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                LOGGER.warning("Cannot update unknown chat session %s", session_id)
                return False
            session.messages = [dict(message) for message in messages]
            session.metadata = {**session.metadata, **metadata}
            session.provider = provider or session.provider
            session.model = model or session.model
            session.updated_at = time.time()
        return True

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def get_user_sessions(
        self, user_id: int, limit: int = 20, offset: int = 0, agent_type: AgentType | None = None
    ) -> list[ChatSession]:
        sessions = self._user_sessions(user_id, agent_type)
        sessions.sort(key=lambda item: item.updated_at, reverse=True)
        return [self._copy(session) for session in sessions[offset : offset + limit]]

    def get_user_session_count(self, user_id: int, agent_type: AgentType | None = None) -> int:
        return len(self._user_sessions(user_id, agent_type))

    def _user_sessions(self, user_id: int, agent_type: AgentType | None) -> list[ChatSession]:
        with self._lock:
            return [
                session
                for session in self._sessions.values()
                if session.user_id == int(user_id) and (agent_type is None or session.agent_type == agent_type)
            ]

    @staticmethod
    def _copy(session: ChatSession) -> ChatSession:
        return replace(
            session,
            messages=[dict(message) for message in session.messages],
            metadata=dict(session.metadata),
        )
