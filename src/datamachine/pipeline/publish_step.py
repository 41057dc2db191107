"""Publish pipeline step.

Publishing itself happens when the AI calls the handler's tool during
the preceding AI step. This step only confirms the call succeeded and
records a ``publish`` packet for each handler.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from ..ai.tools.discovery import handler_slugs_for
from ..ai.tools.result_finder import ToolResultFinder
from ..core import DataPacket, EngineData
from .ai_step import StepExecutionError

__all__ = ["PublishStep"]

LOGGER = logging.getLogger(__name__)


class PublishStep:
    """Confirms handler tool results and emits ``publish`` packets."""

    step_type = "publish"

    async def execute(
        self,
        *,
        job_id: int | str,
        flow_step_id: str,
        data_packets: Sequence[DataPacket],
        engine: EngineData | Mapping[str, Any],
    ) -> list[DataPacket]:
        """Look up the handler results for ``flow_step_id``.

        Returns:
            ``data_packets`` with one ``publish`` packet per confirmed
            handler prepended, or an empty list when the AI did not call
            any handler tool.

        Raises:
            StepExecutionError: If the flow step has no handler configured.
        """
        engine = EngineData.wrap(engine)
        handler_slugs = handler_slugs_for(engine.get_flow_step_config(flow_step_id))
        if not handler_slugs:
            LOGGER.error("Publish step %s (job %s) has no handler configured", flow_step_id, job_id)
            raise StepExecutionError(
                "Step requires at least one handler configuration",
                code="handler_missing",
                flow_step_id=flow_step_id,
            )

        packets = list(data_packets)
        if len(handler_slugs) == 1:
            handler = handler_slugs[0]
            entry = ToolResultFinder.find_handler_result(packets, handler, flow_step_id)
            if entry is None:
                return []
            LOGGER.info("AI successfully used handler tool %s (%s)", handler, entry.metadata.get("tool_name", "unknown"))
            return self.create_publish_packet(entry, packets, handler, flow_step_id)

        entries = ToolResultFinder.find_all_handler_results(packets, handler_slugs, flow_step_id)
        if not entries:
            return []
        for entry in entries:
            handler = entry.metadata.get("handler_tool") or "unknown"
            LOGGER.info("AI successfully used handler tool %s (%s)", handler, entry.metadata.get("tool_name", "unknown"))
            packets = self.create_publish_packet(entry, packets, handler, flow_step_id)
        LOGGER.info(
            "Multi-handler publish complete: %d configured, %d executed", len(handler_slugs), len(entries)
        )
        return packets

    @staticmethod
    def create_publish_packet(
        entry: DataPacket,
        packets: Sequence[DataPacket],
        handler: str,
        flow_step_id: str,
    ) -> list[DataPacket]:
        tool_result = entry.metadata.get("tool_result") or {}
        if not tool_result:
            LOGGER.warning("Tool result entry for %s found but its result data is empty", handler)

        via_conversation = entry.type == "ai_handler_complete"
        packet = DataPacket.create(
            "publish",
            title="Publish Complete (via AI Conversation)" if via_conversation else "Publish Complete (via AI Tool)",
            body=json.dumps(tool_result, indent=4, ensure_ascii=False, default=str),
            metadata={
                "handler_used": handler,
                "publish_success": True,
                "executed_via": "ai_conversation_tool" if via_conversation else "ai_tool_call",
                "flow_step_id": flow_step_id,
                "source_type": entry.metadata.get("source_type", "unknown"),
                "tool_execution_data": tool_result,
                "original_entry_type": entry.type,
                "result": tool_result,
            },
        )
        return packet.add_to(packets)
