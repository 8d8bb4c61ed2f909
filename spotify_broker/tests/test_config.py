"""Tests for settings loaded from the environment."""
import pytest

from spotify_broker.config import Settings
from spotify_broker.exceptions import ConfigError
from spotify_broker.main import create_app

REQUIRED = {
    "SPOTIFY_CLIENT_ID": "cid",
    "SPOTIFY_CLIENT_SECRET": "secret",
    "SPOTIFY_REDIRECT_URI": "https://broker.example/callback",
    "FRONTEND_URI": "https://example.com/music",
}
OPTIONAL = (
    "DATABASE_URL",
    "CORS_ORIGINS",
    "REFRESH_SKEW_SECONDS",
    "DISCARD_ON_REFRESH_FAILURE",
    "HTTP_TIMEOUT_SECONDS",
    "BACKGROUND_REFRESH_INTERVAL",
    "STATIC_DIR",
    "SPOTIFY_SHOW_DIALOG",
    "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    s = Settings.from_env()
    assert s.client_id == "cid"
    assert s.client_secret == "secret"
    assert s.database_url == "sqlite:///./spotify_broker.db"
    assert s.refresh_skew_seconds == 60
    assert s.discard_on_refresh_failure is True
    assert s.background_refresh_interval == 0
    assert s.static_dir is None
    assert s.scope == "user-read-recently-played user-top-read user-read-currently-playing"
    assert s.secure_cookies is True


@pytest.mark.parametrize("missing", sorted(REQUIRED))
def test_missing_required_is_config_error(env, missing):
    env.delenv(missing)
    with pytest.raises(ConfigError, match=missing):
        Settings.from_env()


def test_overrides(env):
    env.setenv("CORS_ORIGINS", "https://hoachau.de/, http://localhost:3000")
    env.setenv("REFRESH_SKEW_SECONDS", "120")
    env.setenv("DISCARD_ON_REFRESH_FAILURE", "false")
    env.setenv("HTTP_TIMEOUT_SECONDS", "2.5")
    env.setenv("BACKGROUND_REFRESH_INTERVAL", "300")
    env.setenv("DATABASE_URL", "")
    env.setenv("LOG_LEVEL", "debug")
    s = Settings.from_env()
    assert s.cors_origins == ("https://hoachau.de", "http://localhost:3000")
    assert s.refresh_skew_seconds == 120
    assert s.discard_on_refresh_failure is False
    assert s.http_timeout == 2.5
    assert s.background_refresh_interval == 300
    assert s.database_url == ""
    assert s.log_level == "DEBUG"


def test_invalid_number_is_config_error(env):
    env.setenv("REFRESH_SKEW_SECONDS", "a minute")
    with pytest.raises(ConfigError):
        Settings.from_env()


def test_app_refuses_to_start_without_credentials(env):
    env.delenv("SPOTIFY_CLIENT_SECRET")
    with pytest.raises(ConfigError):
        create_app()
