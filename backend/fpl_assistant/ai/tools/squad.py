import asyncio

from fpl_assistant.ai.tool_registry import ToolContext, ToolError, ToolRegistry
from fpl_assistant.ai.tools.players import format_price


def register_squad_tools(registry: ToolRegistry) -> None:
    registry.register(
        name="get_my_squad",
        description=(
            "Get the user's current FPL squad including all 15 players, "
            "captain/vice-captain, and bench. Requires a manager ID to be connected."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "gameweek": {
                    "type": "number",
                    "description": "Specific gameweek to get picks for. Defaults to current gameweek.",
                },
            },
        },
        handler=_handle_my_squad,
    )


async def _handle_my_squad(input: dict, context: ToolContext) -> dict:
    if not context.manager_id:
        raise ToolError("No manager ID connected. Please connect your FPL team first.")

    gameweek = int(input.get("gameweek") or context.current_gameweek)
    entry, picks = await asyncio.gather(
        context.fpl.get_manager(context.manager_id),
        context.fpl.get_manager_picks(context.manager_id, gameweek),
    )

    teams = context.teams_by_id()
    positions = context.positions_by_id()
    squad = []
    for pick in picks.get("picks", []):
        player = context.player_by_id(pick["element"]) or {}
        squad.append({
            "name": player.get("web_name", "Unknown"),
            "team": teams.get(player.get("team"), {}).get("short_name", "???"),
            "position": positions.get(player.get("element_type"), "???"),
            "price": format_price(player["now_cost"]) if player else "???",
            "points": player.get("total_points", 0),
            "isCaptain": pick.get("is_captain", False),
            "isViceCaptain": pick.get("is_vice_captain", False),
            "isOnBench": pick.get("multiplier") == 0,
        })

    history = picks.get("entry_history", {})
    return {
        "manager": {
            "name": f"{entry['player_first_name']} {entry['player_last_name']}",
            "teamName": entry["name"],
            "overallPoints": entry.get("summary_overall_points"),
            "overallRank": entry.get("summary_overall_rank"),
        },
        "gameweek": gameweek,
        "teamValue": format_price(history.get("value", 0)),
        "bank": format_price(history.get("bank", 0)),
        "squad": squad,
    }
