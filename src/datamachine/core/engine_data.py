"""Engine snapshot of a running job and flow step navigation."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlparse

__all__ = ["EngineData", "StepNavigator", "execution_order", "split_flow_step_id"]


def split_flow_step_id(flow_step_id: str | None) -> tuple[str | None, str | None]:
    """Split ``<pipeline_step_id>_<flow_id>`` into its two parts.

    Returns:
        ``(pipeline_step_id, flow_id)``; both ``None`` for an empty id and
        ``flow_id`` ``None`` when the id has no separator.
    """
    if not flow_step_id:
        return None, None
    pipeline_step_id, separator, flow_id = str(flow_step_id).rpartition("_")
    if not separator:
        return str(flow_step_id), None
    return pipeline_step_id, flow_id


def execution_order(step_config: Mapping[str, Any]) -> int:
    """Return the step's ``execution_order``, or -1 when it is unset or not a number."""

    value = step_config.get("execution_order")
    if value is None or isinstance(value, bool):
        return -1
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


class EngineData:
    """Read view over the engine data snapshot of one job.

    Lookups fall back to the snapshot's ``metadata`` map, where fetch
    handlers store per-item values such as ``source_url``.
    """

    def __init__(self, data: Mapping[str, Any] | None = None, job_id: int | str | None = None) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self.job_id = job_id

    @classmethod
    def wrap(cls, value: "EngineData | Mapping[str, Any] | None") -> "EngineData":
        return value if isinstance(value, EngineData) else cls(value)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            return self._data[key]
        metadata = self._data.get("metadata")
        if isinstance(metadata, Mapping) and key in metadata:
            return metadata[key]
        return default

    @property
    def source_url(self) -> str | None:
        """The item's source URL, or ``None`` when missing or not an http(s) URL."""

        value = self.get("source_url")
        if not isinstance(value, str):
            return None
        parsed = urlparse(value)
        return value if parsed.scheme in ("http", "https") and parsed.netloc else None

    @property
    def image_file_path(self) -> str | None:
        return self.get("image_file_path")

    @property
    def image_url(self) -> str | None:
        return self.get("image_url") or self.image_file_path

    @property
    def flow_config(self) -> dict[str, Any]:
        config = self._data.get("flow_config")
        return dict(config) if isinstance(config, Mapping) else {}

    @property
    def pipeline_config(self) -> dict[str, Any]:
        config = self._data.get("pipeline_config")
        return dict(config) if isinstance(config, Mapping) else {}

    def get_flow_step_config(self, flow_step_id: str) -> dict[str, Any]:
        return dict(self.flow_config.get(flow_step_id) or {})

    def get_pipeline_step_config(self, pipeline_step_id: str) -> dict[str, Any]:
        return dict(self.pipeline_config.get(pipeline_step_id) or {})

    def all(self) -> dict[str, Any]:
        return dict(self._data)


class StepNavigator:
    """Finds neighbouring flow steps by ``execution_order``."""

    def __init__(self, engine: EngineData) -> None:
        self._engine = engine

    def ordered_flow_step_ids(self) -> list[str]:
        steps = [
            (execution_order(config), flow_step_id)
            for flow_step_id, config in self._engine.flow_config.items()
            if isinstance(config, Mapping) and execution_order(config) >= 0
        ]
        return [flow_step_id for _, flow_step_id in sorted(steps)]

    def previous_flow_step_id(self, flow_step_id: str) -> str | None:
        return self._neighbour(flow_step_id, -1)

    def next_flow_step_id(self, flow_step_id: str) -> str | None:
        return self._neighbour(flow_step_id, 1)

    def _neighbour(self, flow_step_id: str, offset: int) -> str | None:
        ordered = self.ordered_flow_step_ids()
        if flow_step_id not in ordered:
            return None
        index = ordered.index(flow_step_id) + offset
        if 0 <= index < len(ordered):
            return ordered[index]
        return None

