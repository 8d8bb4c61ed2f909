"""
Token lifecycle: owns the single in-memory token pair, decides when it needs refreshing,
serializes refresh exchanges, and persists every change through the token store.

Only one refresh runs at a time. Callers that find the pair expiring while a refresh is
already in flight await that same refresh instead of starting their own, so Spotify never
sees two refresh_token grants racing for the same refresh token.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from starlette.concurrency import run_in_threadpool

from spotify_broker.exceptions import AuthRequired, ExchangeFailed
from spotify_broker.token_endpoint import SpotifyTokenClient, TokenGrant
from spotify_broker.token_store import TokenPair, TokenStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenStatus:
    authenticated: bool
    has_refresh_token: bool = False
    expires_at: datetime | None = None
    time_remaining: int | None = None


class TokenManager:
    def __init__(
        self,
        store: TokenStore,
        token_client: SpotifyTokenClient,
        *,
        refresh_skew_seconds: int = 60,
        discard_on_refresh_failure: bool = True,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._token_client = token_client
        self._refresh_skew = timedelta(seconds=refresh_skew_seconds)
        self._discard_on_failure = discard_on_refresh_failure
        self._clock = clock
        self._pair: TokenPair | None = None
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task | None = None

    async def initialize(self) -> None:
        """Load the stored pair. Awaited before the app accepts requests."""
        await run_in_threadpool(self._store.initialize)
        pair = await run_in_threadpool(self._store.load)
        async with self._lock:
            self._pair = pair
        if pair:
            logger.info("Token loaded on startup (expires_at=%s)", pair.expires_at.isoformat())
        else:
            logger.info("No token on startup; login required")

    def pair_from_grant(self, grant: TokenGrant, previous_refresh_token: str | None = None) -> TokenPair:
        refresh_token = grant.refresh_token or previous_refresh_token
        if not refresh_token:
            raise ExchangeFailed("Token response did not include a refresh_token")
        try:
            expires_at = self._clock() + timedelta(seconds=grant.expires_in)
        except OverflowError as e:
            raise ExchangeFailed(f"Unrepresentable expires_in: {grant.expires_in}") from e
        return TokenPair(
            access_token=grant.access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    async def set_token_pair(self, pair: TokenPair) -> None:
        """Install a freshly obtained pair and persist it."""
        async with self._lock:
            self._pair = pair
            await run_in_threadpool(self._store.save, pair)
        logger.info("Token pair installed (expires_at=%s)", pair.expires_at.isoformat())

    async def accept_grant(self, grant: TokenGrant) -> TokenPair:
        """Turn a code-exchange grant into a pair (expiry from now) and install it."""
        pair = self.pair_from_grant(grant)
        await self.set_token_pair(pair)
        return pair

    def needs_refresh(self, pair: TokenPair) -> bool:
        return self._clock() >= pair.expires_at - self._refresh_skew

    def get_status(self) -> TokenStatus:
        """Read-only snapshot; never triggers a refresh."""
        pair = self._pair
        if pair is None:
            return TokenStatus(authenticated=False)
        remaining = (pair.expires_at - self._clock()).total_seconds()
        return TokenStatus(
            authenticated=True,
            has_refresh_token=bool(pair.refresh_token),
            expires_at=pair.expires_at,
            time_remaining=max(0, int(remaining)),
        )

    async def ensure_valid_access_token(self) -> str:
        """
        Return an access token good for at least the refresh skew window.
        Refreshes if needed. Raises AuthRequired if there is no pair or the refresh failed.
        """
        pair = self._pair
        if pair is None:
            raise AuthRequired("No Spotify token; login required")
        if not self.needs_refresh(pair):
            return pair.access_token

        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh(pair))
            self._refresh_task.add_done_callback(self._refresh_done)
        # shield: one caller going away must not cancel the refresh the others are awaiting
        return await asyncio.shield(self._refresh_task)

    def _refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers already received it
            task.exception()

    async def _refresh(self, stale: TokenPair) -> str:
        async with self._lock:
            current = self._pair
            if current is None:
                raise AuthRequired("Token pair was cleared; login required")
            if current is not stale and not self.needs_refresh(current):
                # Replaced by a fresh pair (e.g. a new login) while we waited for the lock
                return current.access_token

            logger.info("Access token expiring (expires_at=%s); refreshing", current.expires_at.isoformat())
            try:
                grant = await self._token_client.refresh(current.refresh_token)
                new_pair = self.pair_from_grant(grant, previous_refresh_token=current.refresh_token)
            except ExchangeFailed as e:
                if self._discard_on_failure:
                    logger.warning("Token refresh failed (%s); clearing token pair", e)
                    self._pair = None
                    await run_in_threadpool(self._store.clear)
                else:
                    logger.warning("Token refresh failed (%s); keeping token pair for a later retry", e)
                raise AuthRequired("Token refresh failed; login required") from e

            self._pair = new_pair
            await run_in_threadpool(self._store.save, new_pair)
        logger.info("Access token refreshed (expires_at=%s)", new_pair.expires_at.isoformat())
        return new_pair.access_token

    async def logout(self) -> None:
        """Forget the pair in memory and in the store."""
        async with self._lock:
            self._pair = None
            await run_in_threadpool(self._store.clear)
        logger.info("Token pair cleared by logout")


async def run_refresh_loop(manager: TokenManager, interval: float) -> None:
    """Periodically keep the held token fresh so user requests rarely wait on a refresh."""
    while True:
        await asyncio.sleep(interval)
        if not manager.get_status().authenticated:
            continue
        try:
            await manager.ensure_valid_access_token()
        except AuthRequired as e:
            logger.warning("Background refresh check: %s", e)
        except Exception:
            logger.exception("Background refresh check failed unexpectedly")
