from fpl_assistant.ai.tool_registry import ToolContext, ToolError, ToolRegistry


def register_fixture_tools(registry: ToolRegistry) -> None:
    registry.register(
        name="get_fixtures",
        description=(
            "Get upcoming fixtures with fixture difficulty ratings. "
            "Useful for planning transfers and captain picks."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "team": {
                    "type": "string",
                    "description": (
                        "Team name to get fixtures for (e.g., 'Arsenal'). "
                        "If omitted, returns all fixtures."
                    ),
                },
                "gameweeks": {
                    "type": "number",
                    "description": "Number of upcoming gameweeks to include (default: 5)",
                },
            },
        },
        handler=_handle_fixtures,
    )

    registry.register(
        name="get_gameweek_info",
        description=(
            "Get information about the current or a specific gameweek including "
            "deadline, status, and average scores."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "gameweek": {
                    "type": "number",
                    "description": "Specific gameweek number (default: current gameweek)",
                },
            },
        },
        handler=_handle_gameweek_info,
    )


async def _handle_fixtures(input: dict, context: ToolContext) -> dict | list[dict]:
    horizon = int(input.get("gameweeks") or 5)
    first = context.current_gameweek
    teams = context.teams_by_id()

    team_id = None
    if input.get("team"):
        team_id = context.team_id_by_name(input["team"])
        if team_id is None:
            raise ToolError(f"Unknown team: {input['team']}")

    upcoming = [
        f for f in context.fixtures
        if not f.get("finished")
        and f.get("event") is not None
        and first <= f["event"] < first + horizon
        and (team_id is None or team_id in (f["team_h"], f["team_a"]))
    ]

    def short_name(tid: int) -> str:
        return teams.get(tid, {}).get("short_name", "???")

    if team_id is None:
        return [
            {
                "gameweek": f["event"],
                "homeTeam": short_name(f["team_h"]),
                "awayTeam": short_name(f["team_a"]),
                "kickoff": f.get("kickoff_time"),
                "homeDifficulty": f.get("team_h_difficulty"),
                "awayDifficulty": f.get("team_a_difficulty"),
            }
            for f in upcoming
        ]

    rows = []
    for f in upcoming:
        is_home = f["team_h"] == team_id
        rows.append({
            "gameweek": f["event"],
            "opponent": short_name(f["team_a"] if is_home else f["team_h"]),
            "isHome": is_home,
            "difficulty": f.get("team_h_difficulty" if is_home else "team_a_difficulty"),
            "kickoff": f.get("kickoff_time"),
        })
    return {"team": teams[team_id]["name"], "fixtures": rows}


async def _handle_gameweek_info(input: dict, context: ToolContext) -> dict:
    wanted = input.get("gameweek") or context.current_gameweek
    event = next(
        (e for e in context.bootstrap.get("events", []) if e["id"] == int(wanted)),
        None,
    )
    if event is None:
        raise ToolError("Gameweek not found")

    return {
        "id": event["id"],
        "name": event["name"],
        "deadline": event["deadline_time"],
        "isCurrent": event.get("is_current", False),
        "isNext": event.get("is_next", False),
        "finished": event.get("finished", False),
        "averageScore": event.get("average_entry_score") or 0,
        "highestScore": event.get("highest_score") or 0,
    }
