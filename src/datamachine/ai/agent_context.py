"""Request-scoped agent context shared by discovery, dispatch and tools.

The active :class:`AgentContext` is held in a :class:`contextvars.ContextVar`
so concurrent requests served by one event loop never observe each other's
context. It is only ever entered through :func:`agent_context`, which
restores the previous value on every exit path.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

__all__ = [
    "AgentType",
    "AgentContext",
    "agent_context",
    "get_agent_context",
    "current_agent_type",
]


class AgentType(str, Enum):
    """The two consumers of the conversation engine."""

    PIPELINE = "pipeline"
    CHAT = "chat"


@dataclass(slots=True, frozen=True)
class AgentContext:
    """Which agent is running and, for pipelines, which step.

    Attributes:
        agent_type: Pipeline automation or interactive chat.
        context_id: Pipeline step id for pipeline agents; ``None`` for chat.
    """

    agent_type: AgentType
    context_id: str | None = None

    @property
    def is_pipeline(self) -> bool:
        return self.agent_type is AgentType.PIPELINE


_CURRENT: contextvars.ContextVar[AgentContext | None] = contextvars.ContextVar(
    "datamachine_agent_context", default=None
)


@contextmanager
def agent_context(
    agent_type: AgentType | str,
    context_id: str | None = None,
) -> Iterator[AgentContext]:
    """Set the ambient agent context for the duration of the block.

    Args:
        agent_type: Agent type or its string value.
        context_id: Pipeline step id (ignored for chat agents).

    Yields:
        The context that is active inside the block.
    """
    resolved_type = AgentType(agent_type)
    context = AgentContext(
        agent_type=resolved_type,
        context_id=context_id if resolved_type is AgentType.PIPELINE else None,
    )
    token = _CURRENT.set(context)
    try:
        yield context
    finally:
        _CURRENT.reset(token)


def get_agent_context() -> AgentContext | None:
    """Return the active agent context, or ``None`` outside any loop."""

    return _CURRENT.get()


def current_agent_type() -> AgentType | None:
    context = _CURRENT.get()
    return context.agent_type if context is not None else None
