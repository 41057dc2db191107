"""The multi-turn conversation loop.

Each turn composes the system directives, calls the provider and, when the
provider asks for tools, dispatches every requested call in order and
feeds the results back as ``tool_result`` messages. The loop stops on the
first of:

* a reply without tool calls (``completed``),
* a provider failure (``error``),
* the end of the turn in single-turn mode,
* the turn budget (``max_turns_reached``).

Tool failures are never loop errors; the AI sees them and may react.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ...services.settings import DEFAULT_MAX_TURNS
from ..agent_context import AgentType, agent_context
from ..tools.executor import ToolExecutor
from ..tools.types import ToolDefinition
from .conversation import ConversationManager
from .directives import DirectiveComposer
from .providers import ProviderClient, ProviderError, ProviderRegistry, ProviderResponse
from .types import (
    ConversationMessage,
    LoopResult,
    LoopState,
    ToolCallRequest,
    ToolExecutionRecord,
)

__all__ = ["ConversationLoop", "LoopConfig", "DEFAULT_MAX_TURNS"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Configuration for the conversation loop.

    Attributes:
        default_max_turns: Turn budget used when a caller passes none.
        log_turns: Whether to log a summary line per turn.
    """

    default_max_turns: int = DEFAULT_MAX_TURNS
    log_turns: bool = True

    def __post_init__(self) -> None:
        if self.default_max_turns < 1:
            raise ValueError("default_max_turns must be at least 1")


class ConversationLoop:
    """Drives one conversation between a provider and a set of tools.

    Example:
        loop = ConversationLoop(providers, directives=DirectiveComposer.default(settings))
        result = await loop.execute(
            [ConversationMessage.user("Summarize this feed")],
            tools,
            "openai",
            "gpt-4o-mini",
            AgentType.CHAT,
        )
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        *,
        executor: ToolExecutor | None = None,
        directives: DirectiveComposer | None = None,
        config: LoopConfig | None = None,
    ) -> None:
        self._providers = providers
        self._executor = executor or ToolExecutor()
        self._directives = directives or DirectiveComposer()
        self._config = config or LoopConfig()

    @property
    def config(self) -> LoopConfig:
        return self._config

    async def execute(
        self,
        messages: Sequence[ConversationMessage | Mapping[str, Any]],
        available_tools: Mapping[str, ToolDefinition],
        provider: str | ProviderClient,
        model: str,
        agent_type: AgentType | str,
        payload: Mapping[str, Any] | None = None,
        max_turns: int | None = None,
        single_turn: bool = False,
    ) -> LoopResult:
        """Run the conversation until it stops.

        Args:
            messages: Conversation so far; never modified.
            available_tools: Tools the AI may call, by name.
            provider: Provider name registered with the loop, or a client.
            model: Model identifier passed to the provider.
            agent_type: Pipeline or chat.
            payload: Execution payload (``job_id``, ``flow_step_id``,
                ``step_id``, ``data``, ``engine``) for pipeline agents;
                session details for chat agents.
            max_turns: Turn budget; defaults to the configured budget.
            single_turn: Stop after one turn so the caller can poll.

        Returns:
            The loop result. Provider failures are reported in
            ``LoopResult.error``; exceptions raised by tools propagate.

        Raises:
            ValueError: If ``max_turns`` is less than 1.
        """
        budget = self._config.default_max_turns if max_turns is None else int(max_turns)
        if budget < 1:
            raise ValueError("max_turns must be at least 1")
        resolved_type = AgentType(agent_type)
        payload = dict(payload or {})
        step_id = payload.get("step_id") if resolved_type is AgentType.PIPELINE else None

        with agent_context(resolved_type, step_id):
            return await self._run(
                history=[
                    item if isinstance(item, ConversationMessage) else ConversationMessage.from_mapping(item)
                    for item in messages
                ],
                available_tools=available_tools,
                provider=provider,
                model=model,
                agent_type=resolved_type,
                step_id=step_id,
                payload=payload,
                max_turns=budget,
                single_turn=single_turn,
            )

    async def _run(
        self,
        *,
        history: list[ConversationMessage],
        available_tools: Mapping[str, ToolDefinition],
        provider: str | ProviderClient,
        model: str,
        agent_type: AgentType,
        step_id: str | None,
        payload: Mapping[str, Any],
        max_turns: int,
        single_turn: bool,
    ) -> LoopResult:
        provider_name = provider if isinstance(provider, str) else getattr(provider, "name", type(provider).__name__)
        tool_list = list(available_tools.values())
        records: list[ToolExecutionRecord] = []
        last_tool_calls: tuple[ToolCallRequest, ...] = ()
        final_content = ""
        turn_count = 0
        # Resumed conversations keep numbering turns where the history left off.
        first_turn = _last_turn(history)

        while True:
            turn_count += 1
            turn = first_turn + turn_count
            started = time.perf_counter()
            system_blocks = self._directives.compose(
                provider_name, available_tools, step_id, payload, agent_type=agent_type
            )

            try:
                client = self._providers.get(provider) if isinstance(provider, str) else provider
                response = await client.call(system_blocks, tuple(history), tool_list, model)
                if not isinstance(response, ProviderResponse):
                    raise ProviderError(
                        f"Provider returned {type(response).__name__} instead of a response",
                        provider=provider_name,
                    )
            except ProviderError as exc:
                LOGGER.error("Provider %s failed on turn %d: %s", provider_name, turn, exc)
                return self._result(history, records, last_tool_calls, turn_count, error=str(exc), state=LoopState.ERROR)
            except Exception as exc:
                LOGGER.exception("Provider %s raised on turn %d", provider_name, turn)
                return self._result(
                    history,
                    records,
                    last_tool_calls,
                    turn_count,
                    error=f"AI provider request failed: {exc}",
                    state=LoopState.ERROR,
                )

            if not response.has_tool_calls:
                final_content = response.content or ""
                history.append(ConversationMessage.assistant(final_content, type="text", turn=turn))
                self._log_turn(turn, 0, started)
                return self._result(
                    history,
                    records,
                    last_tool_calls,
                    turn_count,
                    final_content=final_content,
                    completed=True,
                    state=LoopState.COMPLETED,
                )

            if response.content:
                final_content = response.content
            history.append(
                ConversationManager.format_tool_call_message(response.tool_calls, response.content, turn)
            )
            # Sequential: later calls may depend on side effects of earlier ones.
            for call in response.tool_calls:
                result = await self._executor.execute(call.name, call.arguments, available_tools, payload)
                definition = available_tools.get(call.name)
                is_handler_tool = bool(definition and definition.is_handler_tool)
                history.append(
                    ConversationManager.format_tool_result_message(
                        call, result, turn, is_handler_tool=is_handler_tool
                    )
                )
                records.append(
                    ToolExecutionRecord(
                        tool_name=call.name,
                        parameters=dict(call.arguments),
                        result=result,
                        is_handler_tool=is_handler_tool,
                        turn_count=turn,
                        call_id=call.call_id,
                    )
                )
            last_tool_calls = response.tool_calls
            self._log_turn(turn, len(response.tool_calls), started)

            if single_turn:
                return self._result(
                    history,
                    records,
                    last_tool_calls,
                    turn_count,
                    final_content=final_content,
                    state=LoopState.AWAITING_TOOL_RESULTS,
                )

            if turn_count >= max_turns:
                LOGGER.warning("Conversation stopped after reaching max turns (%d)", max_turns)
                return self._result(
                    history,
                    records,
                    last_tool_calls,
                    turn_count,
                    final_content=final_content,
                    warning=(
                        f"Maximum conversation turns ({max_turns}) reached. "
                        "The response may be incomplete."
                    ),
                    max_turns_reached=True,
                    state=LoopState.MAX_TURNS_REACHED,
                )

    def _log_turn(self, turn: int, tool_calls: int, started: float) -> None:
        if self._config.log_turns:
            LOGGER.info(
                "Turn %d finished in %.0fms with %d tool call(s)",
                turn,
                (time.perf_counter() - started) * 1000,
                tool_calls,
            )

    @staticmethod
    def _result(
        history: list[ConversationMessage],
        records: list[ToolExecutionRecord],
        last_tool_calls: tuple[ToolCallRequest, ...],
        turn_count: int,
        **fields: Any,
    ) -> LoopResult:
        return LoopResult(
            messages=tuple(history),
            turn_count=turn_count,
            tool_execution_results=tuple(records),
            last_tool_calls=last_tool_calls,
            **fields,
        )


def _last_turn(history: Sequence[ConversationMessage]) -> int:
    """Highest ``turn`` recorded in the message metadata, 0 when none is."""

    last = 0
    for message in history:
        try:
            last = max(last, int(message.metadata.get("turn") or 0))
        except (TypeError, ValueError):
            continue
    return last
