"""
Client for the Spotify token endpoint (POST /api/token): authorization code exchange
and refresh_token grant. Client credentials go in HTTP Basic auth.
"""
import logging
from dataclasses import dataclass

import httpx

from spotify_broker.config import SPOTIFY_TOKEN_URL
from spotify_broker.exceptions import ExchangeFailed

logger = logging.getLogger(__name__)

# Spotify issues hour-long tokens; anything beyond a day is not a real expiry
MAX_EXPIRES_IN = 24 * 60 * 60


@dataclass(frozen=True)
class TokenGrant:
    """Parsed token endpoint response. expires_in is relative; the lifecycle manager makes it absolute."""
    access_token: str
    expires_in: int
    refresh_token: str | None = None
    scope: str = ""


def _parse_grant(data: dict) -> TokenGrant:
    access_token = data.get("access_token")
    expires_in = data.get("expires_in")
    if not access_token or expires_in is None:
        raise ExchangeFailed("Token response missing access_token or expires_in")
    try:
        expires_in = int(expires_in)
    except (TypeError, ValueError, OverflowError):
        raise ExchangeFailed("Token response has non-numeric expires_in")
    if not 0 <= expires_in <= MAX_EXPIRES_IN:
        raise ExchangeFailed(f"Token response has out-of-range expires_in: {expires_in}")
    return TokenGrant(
        access_token=access_token,
        expires_in=expires_in,
        refresh_token=data.get("refresh_token") or None,
        scope=data.get("scope", ""),
    )


class SpotifyTokenClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token_url: str = SPOTIFY_TOKEN_URL,
    ):
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._token_url = token_url

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for a token grant. Raises ExchangeFailed."""
        return await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token. Raises ExchangeFailed."""
        return await self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._client_id,
            }
        )

    async def _post(self, form: dict) -> TokenGrant:
        grant_type = form["grant_type"]
        try:
            r = await self._http.post(
                self._token_url,
                data=form,
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.warning("%s grant: token endpoint timed out", grant_type)
            raise ExchangeFailed("Token endpoint timed out") from e
        except httpx.HTTPError as e:
            logger.warning("%s grant: token endpoint unreachable: %s", grant_type, e)
            raise ExchangeFailed(f"Token endpoint unreachable: {e}") from e

        if r.status_code != 200:
            err = {}
            if r.headers.get("content-type", "").startswith("application/json"):
                try:
                    err = r.json()
                except ValueError:
                    err = {}
            error = err.get("error") if isinstance(err, dict) else None
            description = err.get("error_description", error) if isinstance(err, dict) else None
            logger.warning(
                "%s grant rejected: status=%s error=%s description=%s",
                grant_type,
                r.status_code,
                error,
                description,
            )
            raise ExchangeFailed(
                description or f"Token endpoint returned {r.status_code}",
                status_code=r.status_code,
                error=error,
            )

        try:
            data = r.json()
        except ValueError as e:
            raise ExchangeFailed("Token endpoint returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExchangeFailed("Token endpoint returned unexpected payload")
        grant = _parse_grant(data)
        logger.info(
            "%s grant: token issued (expires_in=%s, refresh_token=%s)",
            grant_type,
            grant.expires_in,
            "present" if grant.refresh_token else "absent",
        )
        return grant
