"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import itertools
from typing import Any, Mapping, Sequence

from datamachine.ai.agent_context import get_agent_context
from datamachine.ai.orchestration.providers import ProviderResponse
from datamachine.ai.orchestration.types import ConversationMessage, ToolCallRequest
from datamachine.ai.tools.types import ToolDefinition, ToolParameter

_CALL_IDS = itertools.count(1)


def reply(content: str) -> ProviderResponse:
    """A provider response without tool calls."""

    return ProviderResponse(content=content)


def call_tool(name: str, content: str | None = None, /, **arguments: Any) -> ProviderResponse:
    """A provider response requesting one tool call.

    ``name`` and ``content`` are positional-only so tools may take arguments
    with the same names.
    """

    return ProviderResponse(
        content=content,
        tool_calls=(ToolCallRequest(call_id=f"call_{next(_CALL_IDS)}", name=name, arguments=arguments),),
    )


class ScriptedProvider:
    """Deterministic provider returning queued responses in order.

    Queue entries may be :class:`ProviderResponse` values or exceptions,
    which are raised instead. When ``repeat_last`` is set, the final entry
    is replayed once the queue is exhausted.

    Example:
        provider = ScriptedProvider([call_tool("skip_item"), reply("Done")])
    """

    name = "scripted"

    def __init__(
        self,
        responses: Sequence[ProviderResponse | Exception] = (),
        *,
        repeat_last: bool = False,
    ) -> None:
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: list[dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def call(
        self,
        system_blocks: Sequence[str],
        messages: Sequence[ConversationMessage],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> ProviderResponse:
        self.calls.append(
            {
                "system_blocks": list(system_blocks),
                "messages": list(messages),
                "tools": [tool.name for tool in tools],
                "model": model,
                "agent_context": get_agent_context(),
            }
        )
        index = self.call_count - 1
        if index >= len(self.responses):
            if not (self.repeat_last and self.responses):
                raise AssertionError("ScriptedProvider ran out of responses")
            index = len(self.responses) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingTool:
    """Tool executable that records every invocation.

    ``result`` may be a value, a mapping envelope, or a callable receiving
    the built parameters.
    """

    def __init__(self, result: Any = None) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    def __call__(self, parameters: Mapping[str, Any], definition: ToolDefinition) -> Any:
        self.calls.append(dict(parameters))
        if callable(self.result):
            return self.result(parameters)
        if self.result is None:
            return {"success": True, "data": {"tool": definition.name}}
        return self.result


class EchoTool:
    """Class-based tool, resolvable as ``"tests.helpers:EchoTool"``."""

    def handle_tool_call(self, parameters: Mapping[str, Any], definition: ToolDefinition) -> dict[str, Any]:
        return {"success": True, "data": {"echo": parameters.get("text")}}


# Import target that is neither callable nor a tool class.
NOT_A_TOOL = object()


def make_tool(
    name: str,
    executable: Any = None,
    *,
    required: Sequence[str] = (),
    optional: Sequence[str] = (),
    handler: str | None = None,
    requires_config: bool = False,
    description: str = "",
) -> ToolDefinition:
    """Build a :class:`ToolDefinition` with string parameters."""

    parameters = {param: ToolParameter(required=True, description=f"The {param}") for param in required}
    parameters.update({param: ToolParameter(description=f"The {param}") for param in optional})
    return ToolDefinition(
        name=name,
        description=description or f"{name.replace('_', ' ')} tool",
        parameters=parameters,
        handler_binding=handler,
        requires_config=requires_config,
        executable_ref=executable if executable is not None else RecordingTool(),
    )


def engine_snapshot(**overrides: Any) -> dict[str, Any]:
    """Engine snapshot of a fetch -> AI -> publish flow.

    Flow step ids follow ``<pipeline_step_id>_<flow_id>`` with flow id ``7``.
    """

    snapshot: dict[str, Any] = {
        "flow_config": {
            "fetch_7": {
                "execution_order": 0,
                "step_type": "fetch",
                "pipeline_step_id": "fetch",
                "handler_slug": "rss",
                "handler_config": {"feed_url": "https://example.com/feed"},
            },
            "ai_7": {
                "execution_order": 1,
                "step_type": "ai",
                "pipeline_step_id": "ai",
                "user_message": "Rewrite the item for our blog.",
            },
            "publish_7": {
                "execution_order": 2,
                "step_type": "publish",
                "pipeline_step_id": "publish",
                "handler_slug": "wordpress",
                "handler_config": {"post_status": "draft"},
            },
        },
        "pipeline_config": {
            "ai": {
                "provider": "scripted",
                "model": "test-model",
                "system_prompt": "Publish one post per item.",
            },
        },
        "metadata": {"source_url": "https://example.com/item/1"},
    }
    snapshot.update(overrides)
    return snapshot

