"""Pipeline data shared by the engine and its callers."""

from .data_packet import DataPacket
from .engine_data import EngineData, StepNavigator, execution_order, split_flow_step_id

__all__ = ["DataPacket", "EngineData", "StepNavigator", "execution_order", "split_flow_step_id"]
