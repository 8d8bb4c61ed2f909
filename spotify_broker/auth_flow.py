"""
Authorization code flow: build the login redirect, then validate and finish the callback.
Idle -> AwaitingCallback (state cookie set) -> Authenticated | Failed.
"""
import enum
import logging
import secrets
from dataclasses import dataclass

from spotify_broker.config import Settings
from spotify_broker.exceptions import ExchangeFailed, StateMismatch
from spotify_broker.lifecycle import TokenManager
from spotify_broker.state import build_authorize_url, generate_state
from spotify_broker.token_endpoint import SpotifyTokenClient

logger = logging.getLogger(__name__)


class CallbackOutcome(str, enum.Enum):
    SUCCESS = "success"
    STATE_MISMATCH = "state_mismatch"
    EXCHANGE_FAILED = "token_exchange_failed"


@dataclass(frozen=True)
class LoginRedirect:
    url: str
    state: str


def check_state(received_state: str | None, stored_state: str | None) -> None:
    """Raise StateMismatch unless both values are present and equal."""
    if not received_state or not stored_state:
        raise StateMismatch("Missing state")
    if not secrets.compare_digest(received_state.encode(), stored_state.encode()):
        raise StateMismatch("State does not match the login attempt")


class AuthFlowController:
    def __init__(self, settings: Settings, token_client: SpotifyTokenClient, tokens: TokenManager):
        self._settings = settings
        self._token_client = token_client
        self._tokens = tokens

    def start_login(self) -> LoginRedirect:
        """New state + Spotify authorize URL. Caller stores the state in a cookie and redirects."""
        state = generate_state()
        url = build_authorize_url(
            client_id=self._settings.client_id,
            redirect_uri=self._settings.redirect_uri,
            scope=self._settings.scope,
            state=state,
            show_dialog=self._settings.show_dialog,
        )
        return LoginRedirect(url=url, state=state)

    async def handle_callback(
        self,
        code: str | None,
        received_state: str | None,
        stored_state: str | None,
        error: str | None = None,
    ) -> CallbackOutcome:
        try:
            check_state(received_state, stored_state)
        except StateMismatch as e:
            logger.warning("Callback rejected: %s", e)
            return CallbackOutcome.STATE_MISMATCH

        if error:
            # e.g. access_denied when the user declines on Spotify's consent page
            logger.warning("Spotify returned error on callback: %s", error)
            return CallbackOutcome.EXCHANGE_FAILED
        if not code:
            logger.warning("Callback without authorization code")
            return CallbackOutcome.EXCHANGE_FAILED

        try:
            grant = await self._token_client.exchange_code(code)
            await self._tokens.accept_grant(grant)
        except ExchangeFailed as e:
            logger.warning("Token exchange error: %s", e)
            return CallbackOutcome.EXCHANGE_FAILED
        logger.info("Login complete; token pair stored")
        return CallbackOutcome.SUCCESS
