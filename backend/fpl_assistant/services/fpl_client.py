import logging

import httpx

from fpl_assistant.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; FPL-Assistant/1.0)",
    "Accept": "application/json",
}


class FPLApiError(Exception):
    def __init__(self, message: str, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class FPLClient:
    """Async client for the public Fantasy Premier League API.

    Owns an ``httpx.AsyncClient`` unless one is passed in; use as an async
    context manager or call ``aclose()`` when done.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or settings.fpl_api_base,
            headers=DEFAULT_HEADERS,
            timeout=httpx.Timeout(timeout or settings.fpl_timeout_seconds, connect=5.0),
            follow_redirects=True,
        )

    async def __aenter__(self) -> "FPLClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, endpoint: str):
        try:
            response = await self._client.get(endpoint)
        except httpx.RequestError as exc:
            raise FPLApiError(f"FPL API request failed: {exc}", 0, endpoint) from exc

        if response.is_error:
            raise FPLApiError(
                f"FPL API error: {response.status_code} {response.reason_phrase}",
                response.status_code,
                endpoint,
            )
        return response.json()

    async def get_bootstrap_static(self) -> dict:
        return await self._get("/bootstrap-static/")

    async def get_fixtures(self) -> list[dict]:
        return await self._get("/fixtures/")

    async def get_player_summary(self, player_id: int) -> dict:
        return await self._get(f"/element-summary/{player_id}/")

    async def get_manager(self, manager_id: int) -> dict:
        return await self._get(f"/entry/{manager_id}/")

    async def get_manager_picks(self, manager_id: int, gameweek: int) -> dict:
        return await self._get(f"/entry/{manager_id}/event/{gameweek}/picks/")


def current_gameweek(bootstrap: dict) -> int:
    """Current gameweek id, else the next one, else the last finished one."""
    events = bootstrap.get("events", [])
    for event in events:
        if event.get("is_current"):
            return event["id"]
    for event in events:
        if event.get("is_next"):
            return event["id"]
    finished = [e for e in events if e.get("finished")]
    return finished[-1]["id"] if finished else 1
