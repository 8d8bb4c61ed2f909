"""
Login state (CSRF nonce) generation and Spotify authorize URL building.
"""
import secrets
import string
from urllib.parse import urlencode

from spotify_broker.config import SPOTIFY_AUTH_URL

STATE_ALPHABET = string.ascii_letters + string.digits
STATE_LENGTH = 16


def generate_state(length: int = STATE_LENGTH) -> str:
    """Opaque alphanumeric value for CSRF protection; echoed back by Spotify on the callback."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(STATE_ALPHABET) for _ in range(length))


def build_authorize_url(
    *,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    show_dialog: bool = True,
    auth_url: str = SPOTIFY_AUTH_URL,
) -> str:
    """Build the Spotify /authorize URL for the authorization code flow."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": scope,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    if show_dialog:
        params["show_dialog"] = "true"
    return f"{auth_url}?{urlencode(params)}"
