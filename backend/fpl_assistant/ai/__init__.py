import asyncio

from fpl_assistant.ai.tool_registry import ToolContext, ToolRegistry
from fpl_assistant.ai.tools.fixtures import register_fixture_tools
from fpl_assistant.ai.tools.players import register_player_tools
from fpl_assistant.ai.tools.squad import register_squad_tools
from fpl_assistant.services.fpl_client import FPLClient, current_gameweek


def create_tool_registry(timeout: float | None = None) -> ToolRegistry:
    """Create a ToolRegistry with all available tools registered."""
    registry = ToolRegistry(timeout=timeout)
    register_squad_tools(registry)
    register_player_tools(registry)
    register_fixture_tools(registry)
    return registry


async def create_tool_context(fpl: FPLClient, manager_id: int | None = None) -> ToolContext:
    """Load the FPL data every tool call in a request shares."""
    bootstrap, fixtures = await asyncio.gather(
        fpl.get_bootstrap_static(),
        fpl.get_fixtures(),
    )
    return ToolContext(
        fpl=fpl,
        bootstrap=bootstrap,
        fixtures=fixtures,
        current_gameweek=current_gameweek(bootstrap),
        manager_id=manager_id,
    )
