"""Interactive chat agent."""

from .service import ChatError, ChatService
from .sessions import ChatSession, ChatSessionStore, InMemoryChatSessionStore

__all__ = ["ChatError", "ChatService", "ChatSession", "ChatSessionStore", "InMemoryChatSessionStore"]
