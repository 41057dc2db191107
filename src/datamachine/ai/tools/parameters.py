"""Builds the flat parameter map handed to a tool.

AI-supplied arguments are merged with values the engine knows about the
running job. Engine values always win, so the AI cannot substitute its own
``job_id`` or handler configuration.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ...core import DataPacket, EngineData
from .types import ToolDefinition

__all__ = ["ToolParameterBuilder"]


class ToolParameterBuilder:
    """Stateless parameter construction for tool calls."""

    @classmethod
    def build_parameters(
        cls,
        ai_parameters: Mapping[str, Any],
        payload: Mapping[str, Any],
        tool_definition: ToolDefinition,
    ) -> dict[str, Any]:
        """Pick the handler or the standard variant based on the definition."""

        if tool_definition.is_handler_tool:
            return cls.build_for_handler(ai_parameters, payload, tool_definition)
        return cls.build(ai_parameters, payload, tool_definition)

    @classmethod
    def build(
        cls,
        ai_parameters: Mapping[str, Any],
        payload: Mapping[str, Any],
        tool_definition: ToolDefinition | None = None,
    ) -> dict[str, Any]:
        """Standard build: AI arguments plus content and job identifiers.

        Args:
            ai_parameters: Arguments parsed from the AI's tool call.
            payload: Execution payload (``job_id``, ``flow_step_id``, ``data``).
            tool_definition: Definition of the tool being called.

        Returns:
            AI arguments overlaid with ``content_string``, ``title``,
            ``job_id`` and ``flow_step_id``.
        """
        parameters = dict(ai_parameters)
        parameters.update(cls._content_fields(payload.get("data") or ()))
        parameters["job_id"] = payload.get("job_id")
        parameters["flow_step_id"] = payload.get("flow_step_id")
        return parameters

    @classmethod
    def build_for_handler(
        cls,
        ai_parameters: Mapping[str, Any],
        payload: Mapping[str, Any],
        tool_definition: ToolDefinition,
    ) -> dict[str, Any]:
        """Handler build: the standard build plus attribution and handler config."""

        parameters = cls.build(ai_parameters, payload, tool_definition)
        engine = EngineData.wrap(payload.get("engine"))
        parameters["source_url"] = engine.source_url
        parameters["image_url"] = engine.image_url
        parameters["tool_definition"] = tool_definition.to_dict()
        parameters["handler_config"] = dict(tool_definition.handler_config)
        return parameters

    @staticmethod
    def _content_fields(packets: Sequence[DataPacket | Mapping[str, Any]]) -> dict[str, str]:
        # Packets are newest first; the first one with content describes the item.
        for packet in packets:
            if isinstance(packet, Mapping):
                packet = DataPacket.from_mapping(packet)
            if packet.body or packet.title:
                return {"content_string": packet.body, "title": packet.title}
        return {"content_string": "", "title": ""}
