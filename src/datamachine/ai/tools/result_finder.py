"""Locates handler tool results in a pipeline's data packets.

Publish-type steps use this to confirm the AI actually invoked their
handler tool instead of re-deriving the outcome from the AI's text.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ...core import DataPacket

__all__ = ["ToolResultFinder"]

LOGGER = logging.getLogger(__name__)

_HANDLER_COMPLETE = "ai_handler_complete"
_TOOL_RESULT = "tool_result"


def _is_successful_handler_entry(packet: DataPacket, handler: str) -> bool:
    if packet.metadata.get("handler_tool") != handler:
        return False
    if packet.type == _HANDLER_COMPLETE:
        # Only successful handler calls are recorded with this type.
        return True
    return packet.type == _TOOL_RESULT and bool(packet.metadata.get("tool_success"))


class ToolResultFinder:
    """Search helpers over newest-first data packet lists."""

    @staticmethod
    def find_handler_result(
        packets: Sequence[DataPacket],
        handler: str,
        flow_step_id: str,
    ) -> DataPacket | None:
        """Return the first successful result of ``handler``'s tool, if any."""

        for packet in packets:
            if _is_successful_handler_entry(packet, handler):
                return packet
        LOGGER.error("AI did not execute handler tool %s (flow step %s)", handler, flow_step_id)
        return None

    @staticmethod
    def find_all_handler_results(
        packets: Sequence[DataPacket],
        handler_slugs: Sequence[str],
        flow_step_id: str,
    ) -> list[DataPacket]:
        """Return every successful handler result, grouped by ``handler_slugs`` order."""

        results = [
            packet
            for slug in handler_slugs
            for packet in packets
            if _is_successful_handler_entry(packet, slug)
        ]
        if not results:
            LOGGER.error(
                "AI did not execute any handler tools %s (flow step %s)", list(handler_slugs), flow_step_id
            )
        return results
