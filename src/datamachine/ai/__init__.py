"""AI conversation engine: agent context, tools and orchestration."""

from .agent_context import AgentContext, AgentType, agent_context, current_agent_type, get_agent_context

__all__ = ["AgentContext", "AgentType", "agent_context", "current_agent_type", "get_agent_context"]
