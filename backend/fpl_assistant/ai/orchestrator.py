from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from fpl_assistant.ai.conversation import (
    ConversationState,
    Phase,
    extract_tool_uses,
    should_dispatch,
)
from fpl_assistant.ai.emitter import EventEmitter
from fpl_assistant.ai.events import (
    DoneEvent,
    ErrorEvent,
    TextDelta,
    ThinkingDelta,
    ToolUseEnd,
    ToolUseStart,
)
from fpl_assistant.ai.generation import (
    GenerationFailed,
    GenerationStream,
    TextChunk,
    ThinkingChunk,
    ToolCallStarted,
    TurnFinished,
)
from fpl_assistant.ai.system_prompt import build_system_prompt
from fpl_assistant.ai.tool_registry import ToolContext, ToolRegistry
from fpl_assistant.config import get_settings

logger = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Terminal failure of a conversation after streaming has started."""


class GenerationError(OrchestrationError):
    """The model call failed or ended without a complete message."""


class MaxRoundsExceededError(OrchestrationError):
    """The model kept requesting tools past the configured round limit."""


class ChatOrchestrator:
    """Drives the tool-use loop for one chat request.

    The loop is a state machine over ``Phase``: ``STREAMING`` consumes one
    model turn and forwards deltas, ``DISPATCHING_TOOLS`` runs the requested
    tools one at a time and appends their results, and the loop ends in
    ``DONE`` or ``ERROR``. Whatever the outcome, the client sees exactly one
    terminal event and the emitter is closed.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        api_key: str | None = None,
        max_tool_rounds: int | None = None,
        generation: GenerationStream | None = None,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        if max_tool_rounds is None:
            max_tool_rounds = settings.max_tool_rounds
        self._max_tool_rounds = max_tool_rounds
        self._owns_generation = generation is None
        self._generation = generation or GenerationStream(api_key=api_key)

    async def run_conversation(
        self,
        messages: list[dict],
        tool_context: ToolContext,
        emitter: EventEmitter,
        show_thinking: bool = False,
        system_prompt: str | None = None,
    ) -> ConversationState:
        """Run the conversation to completion, streaming events to ``emitter``.

        Returns the final state; ``state.history`` holds every assistant turn
        and tool-result turn appended during the run.
        """
        if system_prompt is None:
            system_prompt = build_system_prompt(tool_context.manager_id is not None)
        tools = self._registry.get_anthropic_tools()
        state = ConversationState(history=list(messages))

        try:
            while not state.phase.is_terminal:
                if state.phase is Phase.STREAMING:
                    await self._stream_round(state, system_prompt, tools, emitter, show_thinking)
                elif state.phase is Phase.DISPATCHING_TOOLS:
                    await self._dispatch_tools(state, tool_context, emitter)
            await emitter.emit(DoneEvent())
            logger.info(
                "Conversation finished after %d round(s), %d with tools (stop_reason=%s)",
                state.rounds, state.tool_rounds,
                state.last_stop_reason.value if state.last_stop_reason else None,
            )

        except asyncio.CancelledError:
            state.phase = Phase.ERROR
            state.active = False
            logger.info("Conversation cancelled during round %d", state.rounds)
            raise

        except OrchestrationError as exc:
            state.phase = Phase.ERROR
            state.active = False
            logger.warning("Conversation failed in round %d: %s", state.rounds, exc)
            await _emit_error(emitter, str(exc))

        except Exception as exc:
            state.phase = Phase.ERROR
            state.active = False
            logger.exception("Unexpected error in orchestrator")
            await _emit_error(emitter, str(exc))

        finally:
            emitter.close()
            if self._owns_generation:
                await self._generation.aclose()

        return state

    async def _stream_round(
        self,
        state: ConversationState,
        system_prompt: str,
        tools: list[dict],
        emitter: EventEmitter,
        show_thinking: bool,
    ) -> None:
        state.rounds += 1
        logger.info("Round %d: requesting model turn", state.rounds)

        finished: TurnFinished | None = None
        turn = self._generation.stream_turn(
            list(state.history), system_prompt, tools, show_thinking=show_thinking,
        )
        async with aclosing(turn) as events:
            async for event in events:
                if isinstance(event, ToolCallStarted):
                    await emitter.emit(ToolUseStart(id=event.id, name=event.name))
                elif isinstance(event, TextChunk):
                    await emitter.emit(TextDelta(event.text))
                elif isinstance(event, ThinkingChunk):
                    if show_thinking:
                        await emitter.emit(ThinkingDelta(event.thinking))
                elif isinstance(event, TurnFinished):
                    finished = event
                elif isinstance(event, GenerationFailed):
                    raise GenerationError(event.message)

        if finished is None:
            raise GenerationError("No response received from Claude")

        state.append_assistant(finished.content)
        state.last_stop_reason = finished.stop_reason

        tool_uses = extract_tool_uses(finished.content)
        if should_dispatch(tool_uses, finished.stop_reason):
            state.pending_tool_uses = tool_uses
            state.phase = Phase.DISPATCHING_TOOLS
        else:
            state.active = False
            state.phase = Phase.DONE

    async def _dispatch_tools(
        self,
        state: ConversationState,
        tool_context: ToolContext,
        emitter: EventEmitter,
    ) -> None:
        if state.tool_rounds >= self._max_tool_rounds:
            raise MaxRoundsExceededError(
                f"Exceeded maximum of {self._max_tool_rounds} tool rounds"
            )
        state.tool_rounds += 1

        results = []
        for block in state.pending_tool_uses:
            tool_input = block.get("input") or {}
            outcome = await self._registry.execute(block["name"], tool_input, tool_context)
            results.append(outcome.to_tool_result(block["id"]))

            if outcome.ok:
                end = ToolUseEnd(
                    id=block["id"], name=block["name"], input=tool_input, result=outcome.value,
                )
            else:
                end = ToolUseEnd(
                    id=block["id"], name=block["name"], input=tool_input, error=outcome.error,
                )
            await emitter.emit(end)

        state.append_tool_results(results)
        state.pending_tool_uses = []
        state.phase = Phase.STREAMING


async def _emit_error(emitter: EventEmitter, message: str) -> None:
    if emitter.terminated or emitter.closed:
        logger.warning("Dropping error event, stream already ended: %s", message)
        return
    await emitter.emit(ErrorEvent(message or "Unknown error"))
