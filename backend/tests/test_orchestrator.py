"""Tests for the generation adapter, the chat orchestrator and the system prompt."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import anthropic
import anthropic.types as types
import httpx
import pytest

from fpl_assistant.ai.conversation import (
    Phase,
    StopReason,
    serialize_content,
    should_dispatch,
)
from fpl_assistant.ai.emitter import EventEmitter
from fpl_assistant.ai.generation import (
    GenerationFailed,
    GenerationStream,
    TextChunk,
    ThinkingChunk,
    ToolCallStarted,
    TurnFinished,
)
from fpl_assistant.ai.orchestrator import ChatOrchestrator
from fpl_assistant.ai.system_prompt import build_system_prompt
from fpl_assistant.ai.tool_registry import ToolContext, ToolRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_message(
    content: list,
    stop_reason: str = "end_turn",
) -> types.Message:
    """Create a proper anthropic Message object."""
    return types.Message(
        id="msg_" + uuid4().hex[:8],
        content=content,
        model="claude-sonnet-4-20250514",
        role="assistant",
        stop_reason=stop_reason,
        stop_sequence=None,
        type="message",
        usage=types.Usage(input_tokens=10, output_tokens=20),
    )


def _text_block(text: str) -> types.TextBlock:
    return types.TextBlock(type="text", text=text, citations=None)


def _thinking_block(thinking: str) -> types.ThinkingBlock:
    return types.ThinkingBlock(type="thinking", thinking=thinking, signature="sig_" + thinking[:4])


def _tool_use_block(
    name: str, input: dict, tool_id: str | None = None,
) -> types.ToolUseBlock:
    return types.ToolUseBlock(
        type="tool_use",
        id=tool_id or ("toolu_" + uuid4().hex[:8]),
        name=name,
        input=input,
    )


def _text_event(text: str):
    return SimpleNamespace(
        type="content_block_delta",
        delta=SimpleNamespace(type="text_delta", text=text),
    )


def _thinking_event(thinking: str):
    return SimpleNamespace(
        type="content_block_delta",
        delta=SimpleNamespace(type="thinking_delta", thinking=thinking),
    )


def _tool_start_event(block: types.ToolUseBlock):
    return SimpleNamespace(
        type="content_block_start",
        content_block=SimpleNamespace(type="tool_use", id=block.id, name=block.name),
    )


def _stop_event():
    return SimpleNamespace(type="message_stop")


class MockStream:
    """Mock for the async stream context manager returned by client.messages.stream()."""

    def __init__(self, events: list, final_message: types.Message | None):
        self._events = events
        self._final_message = final_message

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass

    def __aiter__(self):
        return self._iter_events()

    async def _iter_events(self):
        for event in self._events:
            yield event

    async def get_final_message(self):
        return self._final_message


def _turn(final_message: types.Message, text_chunks: list[str] | None = None) -> MockStream:
    """Build a stream whose events match the blocks of ``final_message``."""
    events = []
    for block in final_message.content:
        if block.type == "tool_use":
            events.append(_tool_start_event(block))
        elif block.type == "thinking":
            events.append(_thinking_event(block.thinking))
    for chunk in text_chunks or []:
        events.append(_text_event(chunk))
    events.append(_stop_event())
    return MockStream(events, final_message)


def _sequence(*streams: MockStream):
    """Stream factory returning the given streams in order, recording kwargs."""
    calls: list[dict] = []

    def factory(**kwargs):
        calls.append(kwargs)
        return streams[min(len(calls), len(streams)) - 1]

    return factory, calls


async def _drain(emitter: EventEmitter) -> list[dict]:
    events = []
    async for frame in emitter.frames():
        text = frame.decode("utf-8")
        assert text.startswith("data: ")
        assert text.endswith("\n\n")
        events.append(json.loads(text[len("data: "):]))
    return events


def _types(events: list[dict]) -> list[str]:
    return [e["type"] for e in events]


def _make_tool_context(manager_id: int | None = None) -> ToolContext:
    return ToolContext(
        fpl=MagicMock(),
        bootstrap={"elements": [], "teams": [], "events": []},
        fixtures=[],
        current_gameweek=1,
        manager_id=manager_id,
    )


# ---------------------------------------------------------------------------
# System prompt tests
# ---------------------------------------------------------------------------

class TestSystemPrompt:
    def test_mentions_connected_manager(self):
        prompt = build_system_prompt(True)
        assert "has connected their FPL manager ID" in prompt

    def test_mentions_missing_manager(self):
        prompt = build_system_prompt(False)
        assert "has NOT connected" in prompt

    def test_lists_tools(self):
        prompt = build_system_prompt(False)
        for name in ("search_players", "get_player_details", "get_fixtures", "get_gameweek_info"):
            assert name in prompt


# ---------------------------------------------------------------------------
# Stop reason / predicate tests
# ---------------------------------------------------------------------------

class TestStopReason:
    def test_known_values(self):
        assert StopReason.from_api("end_turn") is StopReason.END_TURN
        assert StopReason.from_api("tool_use") is StopReason.TOOL_USE
        assert StopReason.from_api("stop_sequence") is StopReason.STOP_SEQUENCE

    def test_unknown_values_map_to_other(self):
        assert StopReason.from_api("max_tokens") is StopReason.OTHER
        assert StopReason.from_api(None) is StopReason.OTHER

    def test_should_dispatch(self):
        tool_uses = [{"type": "tool_use", "id": "t1", "name": "x", "input": {}}]
        assert should_dispatch(tool_uses, StopReason.TOOL_USE) is True
        assert should_dispatch(tool_uses, StopReason.OTHER) is True
        assert should_dispatch(tool_uses, StopReason.END_TURN) is False
        assert should_dispatch(tool_uses, StopReason.STOP_SEQUENCE) is False
        assert should_dispatch([], StopReason.TOOL_USE) is False


class TestSerializeContent:
    def test_preserves_order_and_content(self):
        blocks = [
            _thinking_block("hmm let me think"),
            _text_block("Checking."),
            _tool_use_block("get_player_details", {"player_id": 1}, "toolu_1"),
            _text_block("More."),
        ]
        content = serialize_content(blocks)
        assert content == [
            {"type": "thinking", "thinking": "hmm let me think", "signature": "sig_hmm "},
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "toolu_1", "name": "get_player_details", "input": {"player_id": 1}},
            {"type": "text", "text": "More."},
        ]
        # Serializing again from the dict form is stable
        assert json.loads(json.dumps(content)) == content


# ---------------------------------------------------------------------------
# Generation adapter tests
# ---------------------------------------------------------------------------

class TestGenerationStream:
    @pytest.fixture
    def generation(self):
        return GenerationStream(client=MagicMock())

    async def _collect(self, generation, **kwargs):
        events = []
        async for event in generation.stream_turn(
            [{"role": "user", "content": "hi"}], "system", [], **kwargs,
        ):
            events.append(event)
        return events

    @pytest.mark.asyncio
    async def test_normalizes_events(self, generation):
        tool = _tool_use_block("get_fixtures", {}, "toolu_f")
        final = _make_message([_text_block("Hi "), tool], stop_reason="tool_use")
        stream = MockStream(
            [_text_event("Hi "), _tool_start_event(tool), _stop_event()], final,
        )
        generation._client.messages.stream = MagicMock(return_value=stream)

        events = await self._collect(generation)

        assert events[0] == TextChunk("Hi ")
        assert events[1] == ToolCallStarted(id="toolu_f", name="get_fixtures")
        assert isinstance(events[2], TurnFinished)
        assert events[2].stop_reason is StopReason.TOOL_USE
        assert events[2].content[1]["type"] == "tool_use"
        assert len(events) == 3

    @pytest.mark.asyncio
    async def test_thinking_only_when_requested(self, generation):
        final = _make_message([_thinking_block("plan"), _text_block("ok")])
        generation._client.messages.stream = MagicMock(
            side_effect=lambda **kw: _turn(final, ["ok"]),
        )

        without = await self._collect(generation)
        assert not any(isinstance(e, ThinkingChunk) for e in without)

        with_thinking = await self._collect(generation, show_thinking=True)
        assert ThinkingChunk("plan") in with_thinking

    def test_thinking_request_params(self, generation):
        params = generation._request_params([], "sys", [], show_thinking=True)
        budget = params["thinking"]["budget_tokens"]
        assert params["thinking"]["type"] == "enabled"
        assert params["max_tokens"] > budget

        plain = generation._request_params([], "sys", [], show_thinking=False)
        assert "thinking" not in plain

    @pytest.mark.asyncio
    async def test_api_error_becomes_single_failure(self, generation):
        def mock_stream_factory(**kwargs):
            raise anthropic.APIConnectionError(
                request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
            )

        generation._client.messages.stream = mock_stream_factory

        events = await self._collect(generation)
        assert len(events) == 1
        assert isinstance(events[0], GenerationFailed)

    @pytest.mark.asyncio
    async def test_stream_without_stop_ends_silently(self, generation):
        stream = MockStream([_text_event("partial")], None)
        generation._client.messages.stream = MagicMock(return_value=stream)

        events = await self._collect(generation)
        assert events == [TextChunk("partial")]

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        generation = GenerationStream(api_key="sk-test")
        assert not generation._client.is_closed()
        await generation.aclose()
        assert generation._client.is_closed()

    @pytest.mark.asyncio
    async def test_aclose_leaves_borrowed_client_open(self):
        client = MagicMock()
        client.close = AsyncMock()
        generation = GenerationStream(client=client)
        await generation.aclose()
        client.close.assert_not_awaited()


# ---------------------------------------------------------------------------
# Orchestrator tests
# ---------------------------------------------------------------------------

class TestOrchestrator:
    @pytest.fixture
    def registry(self):
        reg = ToolRegistry(timeout=5)

        async def player_details(input: dict, ctx):
            return {"id": input["player_id"], "name": "Salah"}

        async def flaky(input: dict, ctx):
            raise RuntimeError("Network error")

        reg.register(
            name="get_player_details",
            description="Player details",
            input_schema={
                "type": "object",
                "properties": {"player_id": {"type": "number"}},
            },
            handler=player_details,
        )
        reg.register(
            name="get_fixtures",
            description="Fixtures",
            input_schema={"type": "object", "properties": {}},
            handler=flaky,
        )
        return reg

    @pytest.fixture
    def generation(self):
        return GenerationStream(client=MagicMock())

    @pytest.fixture
    def orchestrator(self, registry, generation):
        return ChatOrchestrator(registry, max_tool_rounds=5, generation=generation)

    @pytest.fixture
    def context(self):
        return _make_tool_context()

    async def _run(self, orchestrator, context, messages=None, **kwargs):
        emitter = EventEmitter()
        state = await orchestrator.run_conversation(
            messages or [{"role": "user", "content": "Hello"}],
            context,
            emitter,
            **kwargs,
        )
        return state, await _drain(emitter), emitter

    @pytest.mark.asyncio
    async def test_simple_text_response(self, orchestrator, generation, context):
        """Scenario A: text only with end_turn -> text deltas then done."""
        final = _make_message([_text_block("Haaland is a great captain.")])
        factory, calls = _sequence(_turn(final, ["Haaland ", "is a great ", "captain."]))
        generation._client.messages.stream = factory

        state, events, emitter = await self._run(orchestrator, context)

        assert _types(events) == ["text_delta", "text_delta", "text_delta", "done"]
        assert events[0]["content"] == "Haaland "
        assert state.phase is Phase.DONE
        assert state.active is False
        assert len(state.history) == 2
        assert state.history[1]["role"] == "assistant"
        assert len(calls) == 1
        assert emitter.closed

    @pytest.mark.asyncio
    async def test_single_tool_call(self, orchestrator, generation, context):
        """Scenario B: successful tool call followed by a final answer."""
        tool = _tool_use_block("get_player_details", {"player_id": 1}, "toolu_abc")
        msg1 = _make_message([_text_block("Let me check. "), tool], stop_reason="tool_use")
        msg2 = _make_message([_text_block("Salah has 200 points.")])
        factory, calls = _sequence(
            _turn(msg1, ["Let me check. "]),
            _turn(msg2, ["Salah has 200 points."]),
        )
        generation._client.messages.stream = factory

        state, events, _ = await self._run(orchestrator, context)

        assert _types(events) == [
            "tool_use_start", "text_delta", "tool_use_end", "text_delta", "done",
        ]
        assert events[0]["toolCall"] == {"id": "toolu_abc", "name": "get_player_details"}
        end = events[2]["toolCall"]
        assert end["id"] == "toolu_abc"
        assert end["input"] == {"player_id": 1}
        assert end["result"] == {"id": 1, "name": "Salah"}
        assert "error" not in end

        # user, assistant (tool_use), user (tool_result), assistant (text)
        assert [m["role"] for m in state.history] == ["user", "assistant", "user", "assistant"]
        result_block = state.history[2]["content"][0]
        assert result_block["tool_use_id"] == "toolu_abc"
        assert result_block["is_error"] is False
        assert json.loads(result_block["content"]) == {"id": 1, "name": "Salah"}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_tool_failure_continues_loop(self, orchestrator, generation, context):
        """Scenario C: a failing tool yields an error tool_use_end and another round."""
        tool = _tool_use_block("get_fixtures", {}, "toolu_fail")
        msg1 = _make_message([tool], stop_reason="tool_use")
        msg2 = _make_message([_text_block("Sorry, fixtures are unavailable.")])
        factory, calls = _sequence(_turn(msg1), _turn(msg2, ["Sorry, fixtures are unavailable."]))
        generation._client.messages.stream = factory

        state, events, _ = await self._run(orchestrator, context)

        end = next(e for e in events if e["type"] == "tool_use_end")
        assert end["toolCall"]["error"] == "Network error"
        assert "result" not in end["toolCall"]
        assert len(calls) == 2
        assert _types(events)[-2:] == ["text_delta", "done"]

        result_block = state.history[2]["content"][0]
        assert result_block["is_error"] is True
        assert json.loads(result_block["content"]) == {"error": "Network error"}

    @pytest.mark.asyncio
    async def test_unknown_tool_is_execution_error(self, orchestrator, generation, context):
        tool = _tool_use_block("get_chip_advice", {}, "toolu_bad")
        msg1 = _make_message([tool], stop_reason="tool_use")
        msg2 = _make_message([_text_block("That tool is unavailable.")])
        factory, calls = _sequence(_turn(msg1), _turn(msg2, ["That tool is unavailable."]))
        generation._client.messages.stream = factory

        _, events, _ = await self._run(orchestrator, context)

        end = next(e for e in events if e["type"] == "tool_use_end")
        assert end["toolCall"]["error"] == "Unknown tool: get_chip_advice"
        assert events[-1] == {"type": "done"}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_generation_failure(self, orchestrator, generation, context):
        """Scenario D: the provider fails outright -> one error event, nothing after."""
        def mock_stream_factory(**kwargs):
            raise anthropic.APIError(
                message="overloaded",
                request=MagicMock(),
                body=None,
            )

        generation._client.messages.stream = mock_stream_factory

        state, events, emitter = await self._run(orchestrator, context)

        assert _types(events) == ["error"]
        assert "overloaded" in events[0]["content"]
        assert state.phase is Phase.ERROR
        assert emitter.closed

    @pytest.mark.asyncio
    async def test_missing_final_message_is_fatal(self, orchestrator, generation, context):
        stream = MockStream([_text_event("Half an ans")], None)
        generation._client.messages.stream = MagicMock(return_value=stream)

        state, events, _ = await self._run(orchestrator, context)

        assert _types(events) == ["text_delta", "error"]
        assert "No response received" in events[-1]["content"]
        assert len(state.history) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_handling(self, orchestrator, generation, context):
        def mock_stream_factory(**kwargs):
            raise RuntimeError("something broke")

        generation._client.messages.stream = mock_stream_factory

        _, events, _ = await self._run(orchestrator, context)

        assert events == [{"type": "error", "content": "something broke"}]

    @pytest.mark.asyncio
    async def test_event_ordering_across_rounds(self, orchestrator, generation, context):
        """Each tool_use_start precedes its end; all ends precede next round's text."""
        t1 = _tool_use_block("get_player_details", {"player_id": 1}, "toolu_1")
        t2 = _tool_use_block("get_fixtures", {}, "toolu_2")
        msg1 = _make_message([_text_block("Two lookups."), t1, t2], stop_reason="tool_use")
        msg2 = _make_message([_text_block("Done.")])
        factory, _ = _sequence(_turn(msg1, ["Two lookups."]), _turn(msg2, ["Done."]))
        generation._client.messages.stream = factory

        _, events, _ = await self._run(orchestrator, context)

        def index(kind, tool_id):
            return next(
                i for i, e in enumerate(events)
                if e["type"] == kind and e["toolCall"]["id"] == tool_id
            )

        for tool_id in ("toolu_1", "toolu_2"):
            assert index("tool_use_start", tool_id) < index("tool_use_end", tool_id)

        last_end = max(index("tool_use_end", "toolu_1"), index("tool_use_end", "toolu_2"))
        final_text = next(i for i, e in enumerate(events) if e.get("content") == "Done.")
        assert last_end < final_text

        # Tools ran in the order the model produced them
        assert index("tool_use_end", "toolu_1") < index("tool_use_end", "toolu_2")
        assert [e["type"] for e in events].count("done") == 1
        assert events[-1] == {"type": "done"}

    @pytest.mark.asyncio
    async def test_history_resubmitted_verbatim(self, orchestrator, generation, context):
        """The assembled assistant turn goes back to the model unchanged."""
        tool = _tool_use_block("get_player_details", {"player_id": 7}, "toolu_rt")
        msg1 = _make_message(
            [_thinking_block("need data"), _text_block("Looking up."), tool],
            stop_reason="tool_use",
        )
        msg2 = _make_message([_text_block("Here you go.")])
        factory, calls = _sequence(_turn(msg1), _turn(msg2, ["Here you go."]))
        generation._client.messages.stream = factory

        await self._run(orchestrator, context, show_thinking=True)

        resubmitted = calls[1]["messages"]
        assert resubmitted[0] == {"role": "user", "content": "Hello"}
        assert resubmitted[1] == {
            "role": "assistant",
            "content": serialize_content(msg1.content),
        }
        assert [b["type"] for b in resubmitted[1]["content"]] == ["thinking", "text", "tool_use"]
        assert resubmitted[2]["role"] == "user"
        assert resubmitted[2]["content"][0]["tool_use_id"] == "toolu_rt"

    @pytest.mark.asyncio
    async def test_thinking_deltas_forwarded(self, orchestrator, generation, context):
        final = _make_message([_thinking_block("consider fixtures"), _text_block("Pick Palmer.")])
        factory, calls = _sequence(_turn(final, ["Pick Palmer."]))
        generation._client.messages.stream = factory

        _, events, _ = await self._run(orchestrator, context, show_thinking=True)

        assert _types(events) == ["thinking_delta", "text_delta", "done"]
        assert events[0]["content"] == "consider fixtures"
        assert "thinking" in calls[0]

    @pytest.mark.asyncio
    async def test_end_turn_with_tool_use_does_not_dispatch(self, orchestrator, generation, context):
        tool = _tool_use_block("get_player_details", {"player_id": 1}, "toolu_x")
        final = _make_message([_text_block("Done."), tool], stop_reason="end_turn")
        factory, calls = _sequence(_turn(final, ["Done."]))
        generation._client.messages.stream = factory

        _, events, _ = await self._run(orchestrator, context)

        assert "tool_use_end" not in _types(events)
        assert events[-1] == {"type": "done"}
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_max_tool_rounds_guard(self, registry, generation, context):
        orchestrator = ChatOrchestrator(registry, max_tool_rounds=2, generation=generation)

        def mock_stream_factory(**kwargs):
            tool = _tool_use_block("get_player_details", {"player_id": 1})
            return _turn(_make_message([tool], stop_reason="tool_use"))

        generation._client.messages.stream = MagicMock(side_effect=mock_stream_factory)

        state, events, _ = await self._run(orchestrator, context)

        assert events[-1] == {"type": "error", "content": "Exceeded maximum of 2 tool rounds"}
        assert _types(events).count("tool_use_end") == 2
        assert state.tool_rounds == 2
        assert state.rounds == 3

    @pytest.mark.asyncio
    async def test_zero_max_tool_rounds_allows_no_tools(self, registry, generation, context):
        orchestrator = ChatOrchestrator(registry, max_tool_rounds=0, generation=generation)
        tool = _tool_use_block("get_player_details", {"player_id": 1})
        factory, calls = _sequence(_turn(_make_message([tool], stop_reason="tool_use")))
        generation._client.messages.stream = factory

        state, events, _ = await self._run(orchestrator, context)

        assert "tool_use_end" not in _types(events)
        assert events[-1] == {"type": "error", "content": "Exceeded maximum of 0 tool rounds"}
        assert state.tool_rounds == 0
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_owned_model_client_closed_after_run(self, registry, context):
        orchestrator = ChatOrchestrator(registry, api_key="sk-test", max_tool_rounds=5)
        client = orchestrator._generation._client

        def mock_stream_factory(**kwargs):
            raise anthropic.APIConnectionError(
                request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
            )

        client.messages.stream = mock_stream_factory

        state, events, _ = await self._run(orchestrator, context)

        assert state.phase is Phase.ERROR
        assert _types(events) == ["error"]
        assert client.is_closed()

    @pytest.mark.asyncio
    async def test_injected_generation_left_open(self, orchestrator, generation, context):
        generation.aclose = AsyncMock()
        factory, _ = _sequence(_turn(_make_message([_text_block("Hi")])))
        generation._client.messages.stream = factory

        await self._run(orchestrator, context)

        generation.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_closes_emitter(self, generation, context):
        started = asyncio.Event()
        registry = ToolRegistry(timeout=60)

        async def slow(input: dict, ctx):
            started.set()
            await asyncio.sleep(3600)

        registry.register("get_fixtures", "Fixtures", {"type": "object", "properties": {}}, slow)
        orchestrator = ChatOrchestrator(registry, generation=generation)

        tool = _tool_use_block("get_fixtures", {}, "toolu_slow")
        factory, _ = _sequence(_turn(_make_message([tool], stop_reason="tool_use")))
        generation._client.messages.stream = factory

        emitter = EventEmitter()
        task = asyncio.create_task(
            orchestrator.run_conversation([{"role": "user", "content": "hi"}], context, emitter),
        )
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert emitter.closed
        events = await _drain(emitter)
        assert _types(events) == ["tool_use_start"]
