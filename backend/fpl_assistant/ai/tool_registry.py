import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fpl_assistant.ai.conversation import tool_result_block
from fpl_assistant.config import get_settings
from fpl_assistant.services.fpl_client import FPLClient
from fpl_assistant.utils.truncation import dump_tool_result

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Raised by tool handlers for failures the model should be told about."""


@dataclass
class ToolContext:
    fpl: FPLClient
    bootstrap: dict
    fixtures: list[dict]
    current_gameweek: int
    manager_id: int | None = None

    def teams_by_id(self) -> dict[int, dict]:
        return {t["id"]: t for t in self.bootstrap.get("teams", [])}

    def team_id_by_name(self, name: str) -> int | None:
        wanted = name.strip().lower()
        for team in self.bootstrap.get("teams", []):
            if wanted in (team["name"].lower(), team.get("short_name", "").lower()):
                return team["id"]
        return None

    def positions_by_id(self) -> dict[int, str]:
        return {
            p["id"]: p["singular_name_short"]
            for p in self.bootstrap.get("element_types", [])
        }

    def player_by_id(self, player_id: int) -> dict | None:
        for player in self.bootstrap.get("elements", []):
            if player["id"] == player_id:
                return player
        return None

    def find_player(self, query: str) -> dict | None:
        """Find a player by web name, exact match first, then partial."""
        q = query.strip().lower()
        players = self.bootstrap.get("elements", [])
        for player in players:
            if player["web_name"].lower() == q:
                return player
        for player in players:
            full_name = f"{player['first_name']} {player['second_name']}".lower()
            if q in player["web_name"].lower() or q in full_name:
                return player
        return None


@dataclass(frozen=True)
class ToolOutcome:
    """Tagged result of one tool execution: a value or an error message."""

    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any) -> "ToolOutcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, message: str) -> "ToolOutcome":
        return cls(ok=False, error=message)

    def to_tool_result(self, tool_use_id: str) -> dict:
        if self.ok:
            return tool_result_block(tool_use_id, dump_tool_result(self.value))
        return tool_result_block(
            tool_use_id, dump_tool_result({"error": self.error}), is_error=True,
        )


@dataclass
class ToolDefinition:
    name: str
    description: str
    input_schema: dict
    handler: Callable[[dict, ToolContext], Awaitable[Any]]


class ToolRegistry:
    def __init__(self, timeout: float | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._timeout = timeout

    def register(
        self,
        name: str,
        description: str,
        input_schema: dict,
        handler: Callable[[dict, ToolContext], Awaitable[Any]],
    ) -> None:
        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema,
            handler=handler,
        )

    def get_anthropic_tools(self) -> list[dict]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.input_schema,
            }
            for t in self._tools.values()
        ]

    async def execute(self, name: str, input: dict, context: ToolContext) -> ToolOutcome:
        """Run a tool, turning every failure into a ``ToolOutcome.failure``.

        Only cancellation propagates; unknown tools, handler exceptions and
        timeouts are reported back to the model as errors.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolOutcome.failure(f"Unknown tool: {name}")

        timeout = self._timeout if self._timeout is not None else get_settings().tool_timeout_seconds
        try:
            result = await asyncio.wait_for(tool.handler(input or {}, context), timeout)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", name, timeout)
            return ToolOutcome.failure(f"Tool {name} timed out after {timeout:g}s")
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return ToolOutcome.failure(str(exc) or type(exc).__name__)
        return ToolOutcome.success(result)
