from fpl_assistant.ai.tool_registry import ToolContext, ToolError, ToolRegistry

POSITIONS = ["GKP", "DEF", "MID", "FWD"]
POSITION_IDS = {"GKP": 1, "DEF": 2, "MID": 3, "FWD": 4}

SORT_KEYS = {
    "total_points": lambda p: p["total_points"],
    "form": lambda p: float(p["form"]),
    "price": lambda p: p["now_cost"],
    "ownership": lambda p: float(p["selected_by_percent"]),
    "xgi": lambda p: float(p.get("expected_goal_involvements") or 0),
}


def format_price(now_cost: int) -> str:
    return f"£{now_cost / 10:.1f}m"


def register_player_tools(registry: ToolRegistry) -> None:
    registry.register(
        name="search_players",
        description=(
            "Search for FPL players by name, team, or position. Returns player stats, "
            "price, form, and ownership data. Use this to find players matching "
            "specific criteria."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Player name to search for (partial match supported)",
                },
                "team": {
                    "type": "string",
                    "description": "Filter by team name (e.g., 'Arsenal', 'Liverpool')",
                },
                "position": {
                    "type": "string",
                    "enum": POSITIONS,
                    "description": "Filter by position",
                },
                "min_price": {
                    "type": "number",
                    "description": "Minimum price in millions (e.g., 5.0)",
                },
                "max_price": {
                    "type": "number",
                    "description": "Maximum price in millions (e.g., 10.0)",
                },
                "sort_by": {
                    "type": "string",
                    "enum": list(SORT_KEYS),
                    "description": "Sort results by this metric (default: total_points)",
                },
                "limit": {
                    "type": "number",
                    "description": "Maximum number of results (default: 10)",
                },
            },
        },
        handler=_handle_search_players,
    )

    registry.register(
        name="get_player_details",
        description=(
            "Get detailed information about a specific player including recent "
            "gameweek performance and upcoming fixtures."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "player_id": {
                    "type": "number",
                    "description": "The FPL player ID",
                },
                "player_name": {
                    "type": "string",
                    "description": "Player name to look up (if ID not known)",
                },
            },
        },
        handler=_handle_player_details,
    )

    registry.register(
        name="compare_players",
        description=(
            "Compare two or more players side by side on key FPL metrics including "
            "points, form, value, and xGI."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "player_names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Array of player names to compare",
                },
            },
            "required": ["player_names"],
        },
        handler=_handle_compare_players,
    )


async def _handle_search_players(input: dict, context: ToolContext) -> list[dict]:
    players = list(context.bootstrap.get("elements", []))

    query = (input.get("query") or "").strip().lower()
    if query:
        players = [
            p for p in players
            if query in p["web_name"].lower()
            or query in p["first_name"].lower()
            or query in p["second_name"].lower()
        ]

    if input.get("team"):
        team_id = context.team_id_by_name(input["team"])
        if team_id is not None:
            players = [p for p in players if p["team"] == team_id]

    position_id = POSITION_IDS.get(input.get("position") or "")
    if position_id:
        players = [p for p in players if p["element_type"] == position_id]

    if input.get("min_price"):
        players = [p for p in players if p["now_cost"] >= input["min_price"] * 10]
    if input.get("max_price"):
        players = [p for p in players if p["now_cost"] <= input["max_price"] * 10]

    sort_key = SORT_KEYS.get(input.get("sort_by") or "total_points", SORT_KEYS["total_points"])
    players.sort(key=sort_key, reverse=True)

    limit = int(input.get("limit") or 10)
    teams = context.teams_by_id()
    positions = context.positions_by_id()
    return [
        {
            "id": p["id"],
            "name": p["web_name"],
            "team": teams.get(p["team"], {}).get("short_name", "???"),
            "position": positions.get(p["element_type"], "???"),
            "price": format_price(p["now_cost"]),
            "totalPoints": p["total_points"],
            "form": p["form"],
            "ownership": f"{p['selected_by_percent']}%",
            "xGI": p.get("expected_goal_involvements"),
            "news": p.get("news") or None,
        }
        for p in players[:limit]
    ]


async def _handle_player_details(input: dict, context: ToolContext) -> dict:
    player = None
    if input.get("player_id"):
        player = context.player_by_id(int(input["player_id"]))
    elif input.get("player_name"):
        player = context.find_player(input["player_name"])
    if player is None:
        raise ToolError("Player not found")

    summary = await context.fpl.get_player_summary(player["id"])
    teams = context.teams_by_id()

    def short_name(team_id: int) -> str:
        return teams.get(team_id, {}).get("short_name", "???")

    return {
        "id": player["id"],
        "name": player["web_name"],
        "fullName": f"{player['first_name']} {player['second_name']}",
        "team": teams.get(player["team"], {}).get("name", "???"),
        "position": context.positions_by_id().get(player["element_type"], "???"),
        "price": format_price(player["now_cost"]),
        "totalPoints": player["total_points"],
        "form": player["form"],
        "ownership": f"{player['selected_by_percent']}%",
        "stats": {
            "minutes": player.get("minutes"),
            "goals": player.get("goals_scored"),
            "assists": player.get("assists"),
            "cleanSheets": player.get("clean_sheets"),
            "bonus": player.get("bonus"),
            "xG": player.get("expected_goals"),
            "xA": player.get("expected_assists"),
            "xGI": player.get("expected_goal_involvements"),
        },
        "news": player.get("news") or None,
        "chanceOfPlaying": player.get("chance_of_playing_next_round"),
        "recentHistory": [
            {
                "gameweek": h["round"],
                "points": h["total_points"],
                "minutes": h["minutes"],
                "opponent": short_name(h["opponent_team"]),
                "home": h["was_home"],
            }
            for h in summary.get("history", [])[-5:]
        ],
        "upcomingFixtures": [
            {
                "gameweek": f["event"],
                "opponent": short_name(f["team_a"] if f["is_home"] else f["team_h"]),
                "home": f["is_home"],
                "difficulty": f["difficulty"],
            }
            for f in summary.get("fixtures", [])[:5]
        ],
    }


async def _handle_compare_players(input: dict, context: ToolContext) -> list[dict]:
    names = input.get("player_names") or []
    if len(names) < 2:
        raise ToolError("Please provide at least 2 players to compare")

    found = [p for p in (context.find_player(n) for n in names) if p is not None]
    if len(found) < 2:
        raise ToolError("Could not find enough players to compare")

    teams = context.teams_by_id()
    positions = context.positions_by_id()
    rows = []
    for p in found:
        minutes = p.get("minutes") or 0
        rows.append({
            "id": p["id"],
            "name": p["web_name"],
            "team": teams.get(p["team"], {}).get("short_name", "???"),
            "position": positions.get(p["element_type"], "???"),
            "price": format_price(p["now_cost"]),
            "totalPoints": p["total_points"],
            "form": float(p["form"]),
            "ownership": f"{p['selected_by_percent']}%",
            "goals": p.get("goals_scored"),
            "assists": p.get("assists"),
            "xGI": float(p.get("expected_goal_involvements") or 0),
            "pointsPer90": round(p["total_points"] / (minutes / 90), 1) if minutes else 0.0,
            "pointsPerMillion": round(p["total_points"] / (p["now_cost"] / 10), 1),
        })
    return rows
