from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class Phase(enum.Enum):
    STREAMING = "streaming"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.ERROR)


class StopReason(str, enum.Enum):
    END_TURN = "end_turn"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"
    OTHER = "other"

    @classmethod
    def from_api(cls, value: str | None) -> StopReason:
        """Map a Messages API stop_reason onto the closed set; unknown -> OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER

    @property
    def ends_conversation(self) -> bool:
        return self in (StopReason.END_TURN, StopReason.STOP_SEQUENCE)


@dataclass
class ConversationState:
    """Per-request conversation owned by the orchestrator.

    ``history`` is only ever appended to. ``rounds`` counts generation calls
    and ``tool_rounds`` counts rounds that dispatched tools.
    """

    history: list[dict]
    active: bool = True
    phase: Phase = Phase.STREAMING
    rounds: int = 0
    tool_rounds: int = 0
    pending_tool_uses: list[dict] = field(default_factory=list)
    last_stop_reason: StopReason | None = None

    def append_assistant(self, content: list[dict]) -> None:
        self.history.append({"role": "assistant", "content": content})

    def append_tool_results(self, results: list[dict]) -> None:
        self.history.append({"role": "user", "content": results})


def serialize_content(content_blocks: list) -> list[dict]:
    """Convert SDK content block objects to plain dicts, keeping order.

    Thinking signatures and redacted thinking payloads are kept so the turn
    can be resubmitted to the API unchanged.
    """
    result = []
    for block in content_blocks:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "thinking":
            result.append({
                "type": "thinking",
                "thinking": block.thinking,
                "signature": block.signature,
            })
        elif block.type == "redacted_thinking":
            result.append({"type": "redacted_thinking", "data": block.data})
        elif block.type == "tool_use":
            result.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
        else:
            result.append(block.model_dump(exclude_none=True))
    return result


def extract_tool_uses(content: list[dict]) -> list[dict]:
    return [block for block in content if block.get("type") == "tool_use"]


def should_dispatch(tool_uses: list[dict], stop_reason: StopReason) -> bool:
    """True when the finished turn asks for tools and the model did not stop."""
    return bool(tool_uses) and not stop_reason.ends_conversation


def tool_result_block(tool_use_id: str, content: Any, is_error: bool = False) -> dict:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
        "is_error": is_error,
    }
