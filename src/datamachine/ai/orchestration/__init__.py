"""Conversation orchestration: messages, directives, providers and the loop."""

from .types import (
    ConversationMessage,
    LoopResult,
    LoopState,
    MessageRole,
    ToolCallRequest,
    ToolExecutionRecord,
)
from .conversation import ConversationManager
from .directives import (
    Directive,
    DirectiveComposer,
    DirectivePriority,
    DirectiveRegistration,
    build_workflow_visualization,
)
from .providers import ProviderClient, ProviderError, ProviderRegistry, ProviderResponse
from .loop import DEFAULT_MAX_TURNS, ConversationLoop, LoopConfig

__all__ = [
    # Types
    "ConversationMessage",
    "LoopResult",
    "LoopState",
    "MessageRole",
    "ToolCallRequest",
    "ToolExecutionRecord",
    # Messages
    "ConversationManager",
    # Directives
    "Directive",
    "DirectiveComposer",
    "DirectivePriority",
    "DirectiveRegistration",
    "build_workflow_visualization",
    # Providers
    "ProviderClient",
    "ProviderError",
    "ProviderRegistry",
    "ProviderResponse",
    # Loop
    "ConversationLoop",
    "LoopConfig",
    "DEFAULT_MAX_TURNS",
]
