"""AI pipeline step.

Runs the conversation loop for one flow step and turns its outcome into
data packets for the next step.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
from typing import Any, Mapping, Sequence

from ..ai.agent_context import AgentType
from ..ai.orchestration.conversation import ConversationManager
from ..ai.orchestration.loop import ConversationLoop
from ..ai.orchestration.types import ConversationMessage, LoopResult
from ..ai.tools.discovery import ToolDiscovery
from ..ai.tools.types import ToolDefinition
from ..core import DataPacket, EngineData, StepNavigator
from ..services.settings import Settings

__all__ = ["AIStep", "StepExecutionError"]

LOGGER = logging.getLogger(__name__)

_TITLE_MAX_CHARS = 100


class StepExecutionError(RuntimeError):
    """Raised when a pipeline step cannot run or its AI conversation fails.

    The job runner treats this as a job failure.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str,
        flow_step_id: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.flow_step_id = flow_step_id
        self.details = dict(details or {})
        super().__init__(message)


class AIStep:
    """Multi-turn AI agent step with tool execution.

    Example:
        step = AIStep(loop, discovery, settings)
        packets = await step.execute(job_id=42, flow_step_id="ai_7", data_packets=packets, engine=engine)
    """

    step_type = "ai"

    def __init__(self, loop: ConversationLoop, discovery: ToolDiscovery, settings: Settings) -> None:
        self._loop = loop
        self._discovery = discovery
        self._settings = settings

    async def execute(
        self,
        *,
        job_id: int | str,
        flow_step_id: str,
        data_packets: Sequence[DataPacket],
        engine: EngineData | Mapping[str, Any],
    ) -> list[DataPacket]:
        """Run the AI conversation for ``flow_step_id``.

        Args:
            job_id: Job being processed.
            flow_step_id: Flow step of this AI step.
            data_packets: Incoming packets, newest first.
            engine: Engine snapshot of the job.

        Returns:
            ``data_packets`` with the conversation's packets prepended.

        Raises:
            StepExecutionError: If the step is misconfigured or the provider
                call fails.
        """
        engine = EngineData.wrap(engine)
        flow_step_config = engine.get_flow_step_config(flow_step_id)
        pipeline_step_id = flow_step_config.get("pipeline_step_id")
        if not pipeline_step_id:
            LOGGER.error("Missing pipeline_step_id in AI step configuration for %s", flow_step_id)
            raise StepExecutionError(
                "Missing pipeline_step_id in AI step configuration",
                code="missing_pipeline_step_id",
                flow_step_id=flow_step_id,
            )

        pipeline_step_config = engine.get_pipeline_step_config(pipeline_step_id)
        provider = pipeline_step_config.get("provider") or self._settings.default_provider
        if not provider:
            raise StepExecutionError(
                "AI step requires provider configuration. Please configure an AI provider in step "
                "settings or set a default provider in plugin settings.",
                code="ai_provider_missing",
                flow_step_id=flow_step_id,
                details={"pipeline_step_id": pipeline_step_id},
            )
        model = pipeline_step_config.get("model") or self._settings.default_model

        packets = list(data_packets)
        messages = self.build_messages(packets, engine, str(flow_step_config.get("user_message") or ""))
        payload: dict[str, Any] = {
            "job_id": job_id,
            "flow_step_id": flow_step_id,
            "step_id": pipeline_step_id,
            "data": packets,
            "engine": engine,
        }

        navigator = StepNavigator(engine)
        previous_flow_step_id = navigator.previous_flow_step_id(flow_step_id)
        next_flow_step_id = navigator.next_flow_step_id(flow_step_id)
        available_tools = self._discovery.get_available_tools(
            engine.get_flow_step_config(previous_flow_step_id) if previous_flow_step_id else None,
            engine.get_flow_step_config(next_flow_step_id) if next_flow_step_id else None,
            pipeline_step_id,
            engine.all(),
        )

        LOGGER.info(
            "Running AI step %s (job %s) with %s/%s and %d tool(s)",
            flow_step_id,
            job_id,
            provider,
            model,
            len(available_tools),
        )
        result = await self._loop.execute(
            messages,
            available_tools,
            provider,
            model,
            AgentType.PIPELINE,
            payload,
            self._settings.max_turns,
        )

        if result.error is not None:
            raise StepExecutionError(
                result.error,
                code="ai_processing_failed",
                flow_step_id=flow_step_id,
                details={"ai_provider": provider},
            )
        if result.max_turns_reached:
            LOGGER.warning("AI step %s stopped at the turn limit: %s", flow_step_id, result.warning)
        return self.process_loop_results(result, packets, payload, available_tools)

    @staticmethod
    def build_messages(
        packets: Sequence[DataPacket],
        engine: EngineData,
        user_message: str,
    ) -> list[ConversationMessage]:
        """Initial messages: packet JSON, an optional image, the configured prompt."""

        messages: list[ConversationMessage] = []
        if packets:
            body = json.dumps(
                {"data_packets": [packet.to_dict() for packet in packets]},
                indent=4,
                ensure_ascii=False,
                default=str,
            )
            messages.append(ConversationMessage.user(body))

        image_path = engine.image_file_path
        if image_path and os.path.exists(image_path):
            mime_type, _ = mimetypes.guess_type(image_path)
            messages.append(
                ConversationMessage.user(
                    [{"type": "file", "file_path": image_path, "mime_type": mime_type or ""}]
                )
            )

        user_message = user_message.strip()
        if user_message:
            messages.append(ConversationMessage.user(user_message))
        return messages

    @staticmethod
    def process_loop_results(
        result: LoopResult,
        data_packets: Sequence[DataPacket],
        payload: Mapping[str, Any],
        available_tools: Mapping[str, ToolDefinition],
    ) -> list[DataPacket]:
        """Convert a finished conversation into data packets.

        One ``ai_response`` packet is added per assistant message with
        content or tool calls, then one packet per tool execution:
        ``ai_handler_complete`` for a successful handler tool, otherwise
        ``tool_result``.

        Raises:
            ValueError: If ``payload`` carries no ``flow_step_id``.
        """
        flow_step_id = payload.get("flow_step_id")
        if not flow_step_id:
            raise ValueError("Flow step ID is required in AI step payload")

        packets = list(data_packets)
        turn_count = 0
        for message in result.messages:
            if message.role != "assistant":
                continue
            turn_count += 1
            content = message.text
            if not content and not message.tool_calls:
                continue
            if content:
                first_line = content.strip().split("\n", 1)[0]
                title = first_line if len(first_line) <= _TITLE_MAX_CHARS else f"AI Response - Turn {turn_count}"
                body = content
            else:
                title = f"AI Tool Execution - Turn {turn_count}"
                names = ", ".join(call.name for call in message.tool_calls)
                body = f"AI executed {len(message.tool_calls)} tool(s): {names}"
            packets = DataPacket.create(
                "ai_response",
                title=title,
                body=body,
                metadata={
                    "source_type": "ai_response",
                    "flow_step_id": flow_step_id,
                    "conversation_turn": turn_count,
                    "has_tool_calls": message.has_tool_calls,
                    "tool_count": len(message.tool_calls),
                },
            ).add_to(packets)

        for record in result.tool_execution_results:
            if not record.tool_name:
                continue
            definition = available_tools.get(record.tool_name)
            handler_tool = definition.handler_binding if definition else None
            source_type = packets[0].metadata.get("source_type", "unknown") if packets else "unknown"

            if record.is_handler_tool and record.result.success:
                handler_key = handler_tool or record.tool_name
                parameters = {key: value for key, value in record.parameters.items() if key != handler_key}
                packet = DataPacket.create(
                    "ai_handler_complete",
                    title=f"Handler Tool Executed: {record.tool_name}",
                    body=f"Tool executed successfully by AI agent in {record.turn_count} conversation turns",
                    metadata={
                        "tool_name": record.tool_name,
                        "handler_tool": handler_tool,
                        "tool_parameters": parameters,
                        "handler_config": dict(definition.handler_config) if definition else {},
                        "source_type": source_type,
                        "flow_step_id": flow_step_id,
                        "conversation_turn": record.turn_count,
                        "tool_result": record.result.to_dict(),
                    },
                )
            else:
                packet = DataPacket.create(
                    "tool_result",
                    title=f"{record.tool_name.replace('_', ' ').title()} Result",
                    body=ConversationManager.generate_success_message(
                        record.tool_name, record.result, record.parameters
                    ),
                    metadata={
                        "tool_name": record.tool_name,
                        "handler_tool": handler_tool,
                        "tool_parameters": dict(record.parameters),
                        "tool_success": record.result.success,
                        "tool_result": record.result.data if record.result.data is not None else {},
                        "source_type": source_type,
                    },
                )
            packets = packet.add_to(packets)
        return packets
