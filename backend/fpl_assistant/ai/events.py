"""Events streamed to the chat client.

``StreamEvent`` is a closed union: every frame written to the client is one of
the dataclasses below, rendered by ``to_dict()`` into its wire shape. Exactly
one terminal event (``DoneEvent`` or ``ErrorEvent``) ends a stream.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

_UNSET: Any = object()


@dataclass(frozen=True)
class ToolUseStart:
    id: str
    name: str

    type = "tool_use_start"

    def to_dict(self) -> dict:
        return {"type": self.type, "toolCall": {"id": self.id, "name": self.name}}


@dataclass(frozen=True)
class TextDelta:
    content: str

    type = "text_delta"

    def to_dict(self) -> dict:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ThinkingDelta:
    content: str

    type = "thinking_delta"

    def to_dict(self) -> dict:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ToolUseEnd:
    """Completion of one tool call; carries ``result`` or ``error``, never both."""

    id: str
    name: str
    input: dict = field(default_factory=dict)
    result: Any = _UNSET
    error: str | None = None

    type = "tool_use_end"

    def __post_init__(self) -> None:
        if (self.error is None) == (self.result is _UNSET):
            raise ValueError("tool_use_end needs exactly one of result or error")

    def to_dict(self) -> dict:
        tool_call: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "input": self.input,
        }
        if self.error is not None:
            tool_call["error"] = self.error
        else:
            tool_call["result"] = self.result
        return {"type": self.type, "toolCall": tool_call}


@dataclass(frozen=True)
class ErrorEvent:
    content: str

    type = "error"

    def to_dict(self) -> dict:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class DoneEvent:
    type = "done"

    def to_dict(self) -> dict:
        return {"type": self.type}


StreamEvent = Union[ToolUseStart, TextDelta, ThinkingDelta, ToolUseEnd, ErrorEvent, DoneEvent]

TERMINAL_EVENTS = (ErrorEvent, DoneEvent)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def encode_sse(event: StreamEvent) -> bytes:
    """Render one event as an SSE ``data:`` frame."""
    data = json.dumps(event.to_dict(), default=str, ensure_ascii=False)
    return f"data: {data}\n\n".encode("utf-8")
