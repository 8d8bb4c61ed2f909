"""
Guarded calls to the Spotify Web API. Each call first gets a valid access token from the
token manager (AuthRequired propagates and Spotify is never contacted), then makes a single
GET with the bearer token. Upstream errors become UpstreamFailure; no retries.
"""
import logging
from typing import Any, Literal

import httpx

from spotify_broker.config import SPOTIFY_API_BASE
from spotify_broker.exceptions import UpstreamFailure
from spotify_broker.lifecycle import TokenManager

logger = logging.getLogger(__name__)

TimeRange = Literal["short_term", "medium_term", "long_term"]
TIME_RANGES = ("short_term", "medium_term", "long_term")
DEFAULT_LIMIT = 10


class SpotifyApi:
    def __init__(self, tokens: TokenManager, http_client: httpx.AsyncClient, api_base: str = SPOTIFY_API_BASE):
        self._tokens = tokens
        self._http = http_client
        self._api_base = api_base.rstrip("/")

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        access_token = await self._tokens.ensure_valid_access_token()
        url = f"{self._api_base}{path}"
        try:
            r = await self._http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Spotify API request failed: GET %s: %s", path, e)
            raise UpstreamFailure(f"Request to {path} failed") from e
        if r.status_code >= 400:
            logger.error("Spotify API error: GET %s -> %s %s", path, r.status_code, r.text[:500])
            raise UpstreamFailure(f"Spotify returned {r.status_code} for {path}", status_code=r.status_code)
        return r

    @staticmethod
    def _json(r: httpx.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamFailure("Spotify returned invalid JSON", status_code=r.status_code) from e

    async def recently_played(self, limit: int = DEFAULT_LIMIT) -> Any:
        r = await self._get("/me/player/recently-played", {"limit": limit})
        return self._json(r)

    async def top_tracks(self, time_range: TimeRange = "medium_term", limit: int = DEFAULT_LIMIT) -> Any:
        if time_range not in TIME_RANGES:
            raise ValueError(f"time_range must be one of {', '.join(TIME_RANGES)}")
        r = await self._get("/me/top/tracks", {"limit": limit, "time_range": time_range})
        return self._json(r)

    async def now_playing(self) -> dict:
        """Currently playing track. Spotify answers 204 when nothing is playing."""
        r = await self._get("/me/player/currently-playing")
        if r.status_code == 204 or not r.content:
            return {"isPlaying": False}
        data = self._json(r)
        if not isinstance(data, dict) or not data.get("is_playing"):
            return {"isPlaying": False}
        return {"isPlaying": True, "track": data.get("item")}
