"""Data packets passed between pipeline steps."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

__all__ = ["DataPacket"]


@dataclass(slots=True)
class DataPacket:
    """One unit of content flowing through a pipeline.

    Packet lists are ordered newest first.

    Attributes:
        type: Packet kind (``fetch``, ``ai_response``, ``tool_result`` ...).
        data: Content fields, at least ``title`` and ``body``.
        metadata: Step-specific details such as ``source_type``.
        timestamp: Creation time in seconds since the epoch.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        packet_type: str,
        *,
        title: str = "",
        body: str = "",
        metadata: Mapping[str, Any] | None = None,
        **data: Any,
    ) -> "DataPacket":
        return cls(
            type=packet_type,
            data={"title": title, "body": body, **data},
            metadata=dict(metadata or {}),
        )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "DataPacket":
        return cls(
            type=str(payload.get("type") or "unknown"),
            data=dict(payload.get("data") or {}),
            metadata=dict(payload.get("metadata") or {}),
            timestamp=float(payload.get("timestamp") or time.time()),
        )

    @property
    def title(self) -> str:
        return str(self.data.get("title") or "")

    @property
    def body(self) -> str:
        return str(self.data.get("body") or "")

    def add_to(self, packets: Sequence["DataPacket"]) -> list["DataPacket"]:
        """Return a new list with this packet in front of ``packets``."""

        return [self, *packets]

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": dict(self.data),
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }
