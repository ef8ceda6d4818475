import json
from typing import Any

from fpl_assistant.config import get_settings


def truncate_output(text: str, max_kb: int | None = None) -> str:
    """Cap text sent back to the model at ``max_kb`` kilobytes.

    The cut lands on the last line break inside the limit so indented JSON
    stays readable, and a marker line reports how much was dropped.
    """
    if max_kb is None:
        max_kb = get_settings().max_tool_output_kb

    raw = text.encode("utf-8")
    limit = max_kb * 1024
    if len(raw) <= limit:
        return text

    head = raw[:limit]
    cut = head.rfind(b"\n")
    if cut > 0:
        head = head[:cut]

    return (
        head.decode("utf-8", errors="ignore")
        + f"\n... [output truncated: {len(head)} of {len(raw)} bytes shown]"
    )


def dump_tool_result(value: Any, max_kb: int | None = None) -> str:
    """Serialize a tool result as indented JSON within the size limit."""
    return truncate_output(
        json.dumps(value, indent=2, default=str, ensure_ascii=False), max_kb,
    )
