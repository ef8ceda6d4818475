"""Normalized view of one streamed Messages API call.

``GenerationStream.stream_turn`` wraps ``client.messages.stream()`` and yields
a small set of events the orchestrator understands, decoupling it from the
SDK's raw event shapes. Deltas are yielded as soon as they arrive.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Union

import anthropic

from fpl_assistant.ai.conversation import StopReason, serialize_content
from fpl_assistant.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ThinkingChunk:
    thinking: str


@dataclass(frozen=True)
class ToolCallStarted:
    id: str
    name: str


@dataclass(frozen=True)
class TurnFinished:
    content: list[dict]
    stop_reason: StopReason


@dataclass(frozen=True)
class GenerationFailed:
    message: str


GenerationEvent = Union[TextChunk, ThinkingChunk, ToolCallStarted, TurnFinished, GenerationFailed]


class GenerationStream:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        settings = get_settings()
        self._model = model or settings.anthropic_model
        self._max_tokens = settings.max_tokens
        self._thinking_budget = settings.thinking_budget_tokens
        self._owns_client = client is None
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key or settings.anthropic_api_key,
            max_retries=settings.anthropic_max_retries,
        )

    async def aclose(self) -> None:
        """Close the SDK client's connection pool if this stream created it."""
        if self._owns_client:
            await self._client.close()

    def _request_params(
        self,
        messages: list[dict],
        system: str,
        tools: list[dict],
        show_thinking: bool,
    ) -> dict:
        params = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system,
            "messages": messages,
            "tools": tools,
        }
        if show_thinking:
            # max_tokens has to exceed the thinking budget
            params["max_tokens"] = self._max_tokens + self._thinking_budget
            params["thinking"] = {
                "type": "enabled",
                "budget_tokens": self._thinking_budget,
            }
        return params

    async def stream_turn(
        self,
        messages: list[dict],
        system: str,
        tools: list[dict],
        show_thinking: bool = False,
    ) -> AsyncIterator[GenerationEvent]:
        """Stream one assistant turn.

        Ends with exactly one ``TurnFinished`` on success. Provider failures
        end the sequence with a single ``GenerationFailed``; nothing is retried.
        If the provider closes the stream early, the sequence simply stops.
        """
        params = self._request_params(messages, system, tools, show_thinking)
        try:
            async with self._client.messages.stream(**params) as stream:
                async for event in stream:
                    if event.type == "content_block_start":
                        block = event.content_block
                        if block.type == "tool_use":
                            yield ToolCallStarted(id=block.id, name=block.name)
                    elif event.type == "content_block_delta":
                        delta = event.delta
                        if delta.type == "text_delta":
                            yield TextChunk(delta.text)
                        elif delta.type == "thinking_delta" and show_thinking:
                            yield ThinkingChunk(delta.thinking)
                    elif event.type == "message_stop":
                        message = await stream.get_final_message()
                        yield TurnFinished(
                            content=serialize_content(message.content),
                            stop_reason=StopReason.from_api(message.stop_reason),
                        )
                        return
        except anthropic.APIError as exc:
            logger.warning("Generation stream failed: %s", exc)
            yield GenerationFailed(_describe_api_error(exc))


def _describe_api_error(exc: anthropic.APIError) -> str:
    if isinstance(exc, anthropic.RateLimitError):
        return "Rate limit exceeded. Please wait a minute and try again."
    if isinstance(exc, anthropic.AuthenticationError):
        return "Invalid Anthropic API key."
    if isinstance(exc, anthropic.APIConnectionError):
        return f"Could not reach the model provider: {exc}"
    return f"API error: {exc.message}"
