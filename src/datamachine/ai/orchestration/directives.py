"""System directive composition.

Before every provider call the loop asks the :class:`DirectiveComposer`
for the system blocks of the turn. Directives are grouped in five tiers
that are always emitted in this order:

====  =====================================================
10    plugin core behaviour rules
20    global system prompt
30    pipeline goals and workflow visualization
40    tool definitions and workflow context
50    site context
====  =====================================================

Within a tier directives keep their registration order. Directives that
produce nothing are left out entirely.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from ...core import EngineData, execution_order, split_flow_step_id
from ...services.settings import Settings
from ..agent_context import AgentType, current_agent_type
from ..tools.types import ToolDefinition

__all__ = [
    "Directive",
    "DirectivePriority",
    "DirectiveRegistration",
    "DirectiveComposer",
    "PluginCoreDirective",
    "GlobalSystemPromptDirective",
    "PipelineSystemPromptDirective",
    "ToolDefinitionsDirective",
    "SiteContextDirective",
    "build_workflow_visualization",
]

LOGGER = logging.getLogger(__name__)

ALL_AGENTS: frozenset[AgentType] = frozenset(AgentType)


class DirectivePriority:
    """Fixed tier numbers; lower tiers are emitted first."""

    PLUGIN_CORE = 10
    GLOBAL_SYSTEM_PROMPT = 20
    PIPELINE_SYSTEM_PROMPT = 30
    TOOL_DEFINITIONS = 40
    SITE_CONTEXT = 50


class Directive(Protocol):
    """Contributes zero or more system blocks for a turn."""

    def get_outputs(
        self,
        provider: str,
        tools: Mapping[str, ToolDefinition],
        step_id: str | None,
        payload: Mapping[str, Any],
    ) -> Sequence[str]:
        ...


@dataclass(slots=True, frozen=True)
class DirectiveRegistration:
    directive: Directive
    priority: int
    agent_types: frozenset[AgentType] = ALL_AGENTS
    name: str = ""


# -----------------------------------------------------------------------------
# Composer
# -----------------------------------------------------------------------------


class DirectiveComposer:
    """Ordered collection of directives filtered by agent type."""

    def __init__(self) -> None:
        self._registrations: list[DirectiveRegistration] = []

    @classmethod
    def default(
        cls,
        settings: Settings,
        *,
        handler_labels: Mapping[str, str] | None = None,
        site_context: Callable[[], Mapping[str, Any] | str | None] | None = None,
    ) -> "DirectiveComposer":
        """Composer with the built-in directive of every tier."""

        composer = cls()
        composer.register(
            PluginCoreDirective(PIPELINE_CORE_RULES),
            DirectivePriority.PLUGIN_CORE,
            agent_types=[AgentType.PIPELINE],
        )
        composer.register(
            PluginCoreDirective(CHAT_CORE_RULES),
            DirectivePriority.PLUGIN_CORE,
            agent_types=[AgentType.CHAT],
        )
        composer.register(
            GlobalSystemPromptDirective(lambda: settings.global_system_prompt),
            DirectivePriority.GLOBAL_SYSTEM_PROMPT,
        )
        composer.register(
            PipelineSystemPromptDirective(handler_labels),
            DirectivePriority.PIPELINE_SYSTEM_PROMPT,
            agent_types=[AgentType.PIPELINE],
        )
        composer.register(ToolDefinitionsDirective(), DirectivePriority.TOOL_DEFINITIONS)
        if site_context is not None and settings.site_context_enabled:
            composer.register(SiteContextDirective(site_context), DirectivePriority.SITE_CONTEXT)
        return composer

    def register(
        self,
        directive: Directive,
        priority: int,
        *,
        agent_types: Iterable[AgentType | str] | None = None,
        name: str | None = None,
    ) -> DirectiveRegistration:
        types = frozenset(AgentType(item) for item in agent_types) if agent_types is not None else ALL_AGENTS
        registration = DirectiveRegistration(
            directive=directive,
            priority=int(priority),
            agent_types=types,
            name=name or type(directive).__name__,
        )
        self._registrations.append(registration)
        return registration

    @property
    def registrations(self) -> tuple[DirectiveRegistration, ...]:
        return tuple(sorted(self._registrations, key=lambda item: item.priority))

    def compose(
        self,
        provider: str,
        tools: Mapping[str, ToolDefinition],
        step_id: str | None,
        payload: Mapping[str, Any],
        *,
        agent_type: AgentType | str | None = None,
    ) -> list[str]:
        """Return the system blocks for one turn, lowest tier first.

        Args:
            provider: Provider name of the turn.
            tools: Tools offered to the AI.
            step_id: Pipeline step id, ``None`` for chat.
            payload: Execution payload of the caller.
            agent_type: Agent to compose for. Defaults to the ambient
                agent context, then to chat.
        """
        resolved = AgentType(agent_type) if agent_type else (current_agent_type() or AgentType.CHAT)
        blocks: list[str] = []
        for registration in self.registrations:
            if resolved not in registration.agent_types:
                continue
            outputs = registration.directive.get_outputs(provider, tools, step_id, payload)
            blocks.extend(block for block in outputs if block and block.strip())
        LOGGER.debug("Composed %d directive block(s) for %s agent", len(blocks), resolved.value)
        return blocks


# -----------------------------------------------------------------------------
# Built-in directives
# -----------------------------------------------------------------------------

PIPELINE_CORE_RULES = (
    "You are an automation agent inside a content pipeline. You receive data packets from the "
    "previous step and must complete the task described by the pipeline goals.\n"
    "- Use the available tools to act; describe nothing you have not done.\n"
    "- When a handler tool is available for the next step, finish by calling it with complete, "
    "publication-ready parameters.\n"
    "- If a tool returns an error, correct the parameters or choose another tool."
)

CHAT_CORE_RULES = (
    "You are the assistant of a content automation system. Help the user inspect and configure "
    "pipelines and flows.\n"
    "- Use tools to read or change configuration instead of guessing.\n"
    "- Report tool errors plainly and suggest the next step."
)


class PluginCoreDirective:
    """Fixed behaviour rules for one agent type."""

    def __init__(self, rules: str) -> None:
        self._rules = rules

    def get_outputs(self, provider, tools, step_id, payload) -> list[str]:
        return [self._rules]


class GlobalSystemPromptDirective:
    """Site-wide prompt configured by the operator."""

    def __init__(self, prompt: Callable[[], str | None]) -> None:
        self._prompt = prompt

    def get_outputs(self, provider, tools, step_id, payload) -> list[str]:
        prompt = (self._prompt() or "").strip()
        return [prompt] if prompt else []


class PipelineSystemPromptDirective:
    """Pipeline goals of the running AI step, prefixed by the workflow map."""

    def __init__(self, handler_labels: Mapping[str, str] | None = None) -> None:
        self._handler_labels = dict(handler_labels or {})

    def get_outputs(self, provider, tools, step_id, payload) -> list[str]:
        if not step_id or payload.get("engine") is None:
            return []
        engine = EngineData.wrap(payload.get("engine"))
        system_prompt = str(engine.get_pipeline_step_config(step_id).get("system_prompt") or "").strip()
        if not system_prompt:
            return []

        current_pipeline_step_id, _ = split_flow_step_id(payload.get("flow_step_id"))
        visualization = build_workflow_visualization(
            engine.flow_config, current_pipeline_step_id, self._handler_labels
        )
        content = f"WORKFLOW: {visualization}\n\n" if visualization else ""
        return [f"{content}PIPELINE GOALS:\n{system_prompt}"]


def build_workflow_visualization(
    flow_config: Mapping[str, Mapping[str, Any]],
    current_pipeline_step_id: str | None,
    handler_labels: Mapping[str, str] | None = None,
) -> str:
    """Render a flow as e.g. ``RSS FETCH → AI (YOU ARE HERE) → WORDPRESS PUBLISH``.

    Steps with a negative, missing or null ``execution_order`` are skipped.
    """
    labels = handler_labels or {}
    ordered: list[tuple[int, str, Mapping[str, Any]]] = []
    for flow_step_id, step_config in flow_config.items():
        if not isinstance(step_config, Mapping):
            continue
        order = execution_order(step_config)
        if order >= 0:
            ordered.append((order, flow_step_id, step_config))
    ordered.sort(key=lambda item: item[0])

    parts: list[str] = []
    for _, flow_step_id, step_config in ordered:
        step_type = str(step_config.get("step_type") or "")
        handler_slug = step_config.get("handler_slug") or ""
        handler_slugs = list(step_config.get("handler_slugs") or [])
        pipeline_step_id, _ = split_flow_step_id(flow_step_id)

        if step_type == "ai":
            is_current = bool(current_pipeline_step_id) and pipeline_step_id == current_pipeline_step_id
            parts.append("AI (YOU ARE HERE)" if is_current else "AI")
        elif len(handler_slugs) > 1:
            names = "+".join(str(labels.get(slug, slug)).upper() for slug in handler_slugs)
            parts.append(f"{names} {step_type.upper()}")
        elif handler_slug or handler_slugs:
            slug = handler_slug or handler_slugs[0]
            parts.append(f"{str(labels.get(slug, slug)).upper()} {step_type.upper()}")
        else:
            parts.append(step_type.upper())
    return " → ".join(parts)


class ToolDefinitionsDirective:
    """Lists the tools of the turn, handler tools first."""

    def get_outputs(self, provider, tools, step_id, payload) -> list[str]:
        if not tools:
            return []
        handler_lines: list[str] = []
        general_lines: list[str] = []
        for name, definition in tools.items():
            line = f"- {name}: {definition.description}" if definition.description else f"- {name}"
            required = definition.required_parameters
            if required:
                line += f" (required: {', '.join(required)})"
            (handler_lines if definition.is_handler_tool else general_lines).append(line)

        sections: list[str] = []
        if handler_lines:
            sections.append("HANDLER TOOLS (call one to complete the workflow step):\n" + "\n".join(handler_lines))
        if general_lines:
            sections.append("AVAILABLE TOOLS:\n" + "\n".join(general_lines))
        return ["\n\n".join(sections)]


class SiteContextDirective:
    """Describes the site the agent works for."""

    def __init__(self, source: Callable[[], Mapping[str, Any] | str | None]) -> None:
        self._source = source

    def get_outputs(self, provider, tools, step_id, payload) -> list[str]:
        context = self._source()
        if not context:
            return []
        if isinstance(context, str):
            rendered = context.strip()
        else:
            rendered = json.dumps(dict(context), ensure_ascii=False, indent=2, default=str)
        return [f"SITE CONTEXT:\n{rendered}"] if rendered else []
