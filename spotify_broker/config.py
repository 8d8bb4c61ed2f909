"""
Spotify broker configuration. Secrets come from env only; nothing sensitive in this file.
Settings are built once at startup and passed to each component.
"""
import os
from dataclasses import dataclass, field

from spotify_broker.exceptions import ConfigError

# Spotify endpoints (fixed; one provider only)
SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"

# Scopes needed by the three proxied read endpoints
SCOPES = (
    "user-read-recently-played",
    "user-top-read",
    "user-read-currently-playing",
)

# Cookie carrying the login state across the redirect round-trip
STATE_COOKIE = "spotify_auth_state"
STATE_COOKIE_MAX_AGE = 600

DEFAULT_DATABASE_URL = "sqlite:///./spotify_broker.db"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip().rstrip("/") for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    redirect_uri: str
    frontend_uri: str
    # Empty string selects the in-memory store (no persistence across restarts)
    database_url: str = DEFAULT_DATABASE_URL
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    # Renew this many seconds before expiry so a token never expires mid-request
    refresh_skew_seconds: int = 60
    # Drop the held pair when Spotify rejects the refresh token (else keep it for a later retry)
    discard_on_refresh_failure: bool = True
    http_timeout: float = 10.0
    # Seconds between background refresh checks; 0 disables the loop
    background_refresh_interval: float = 0
    static_dir: str | None = None
    show_dialog: bool = True
    log_level: str = "INFO"
    scopes: tuple[str, ...] = field(default=SCOPES)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def secure_cookies(self) -> bool:
        return self.redirect_uri.startswith("https://")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment. Raises ConfigError if credentials or URIs are missing."""
        required = {
            "SPOTIFY_CLIENT_ID": os.environ.get("SPOTIFY_CLIENT_ID", "").strip(),
            "SPOTIFY_CLIENT_SECRET": os.environ.get("SPOTIFY_CLIENT_SECRET", "").strip(),
            "SPOTIFY_REDIRECT_URI": os.environ.get("SPOTIFY_REDIRECT_URI", "").strip(),
            "FRONTEND_URI": os.environ.get("FRONTEND_URI", "").strip(),
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            refresh_skew = int(os.environ.get("REFRESH_SKEW_SECONDS", "60"))
            http_timeout = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "10"))
            interval = float(os.environ.get("BACKGROUND_REFRESH_INTERVAL", "0"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        return cls(
            client_id=required["SPOTIFY_CLIENT_ID"],
            client_secret=required["SPOTIFY_CLIENT_SECRET"],
            redirect_uri=required["SPOTIFY_REDIRECT_URI"],
            frontend_uri=required["FRONTEND_URI"],
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
            cors_origins=_env_list("CORS_ORIGINS", "http://localhost:3000"),
            refresh_skew_seconds=refresh_skew,
            discard_on_refresh_failure=_env_bool("DISCARD_ON_REFRESH_FAILURE", True),
            http_timeout=http_timeout,
            background_refresh_interval=interval,
            static_dir=os.environ.get("STATIC_DIR", "").strip() or None,
            show_dialog=_env_bool("SPOTIFY_SHOW_DIALOG", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
