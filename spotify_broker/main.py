"""
Spotify token broker: FastAPI app.
GET /login, /callback (authorization code flow); GET /api/spotify/status, /recent,
/top-tracks, /now-playing (proxied reads with the stored token); POST /logout.
Run with: python -m spotify_broker.main
"""
import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from spotify_broker.auth_flow import AuthFlowController, CallbackOutcome
from spotify_broker.config import STATE_COOKIE, STATE_COOKIE_MAX_AGE, Settings
from spotify_broker.database import create_db_engine
from spotify_broker.exceptions import AuthRequired, UpstreamFailure
from spotify_broker.lifecycle import Clock, TokenManager, run_refresh_loop, utc_now
from spotify_broker.spotify_api import SpotifyApi, TimeRange
from spotify_broker.token_endpoint import SpotifyTokenClient
from spotify_broker.token_store import MemoryTokenStore, SqlTokenStore, TokenStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_manager(request: Request) -> TokenManager:
    return request.app.state.tokens


def get_auth_flow(request: Request) -> AuthFlowController:
    return request.app.state.auth_flow


def get_spotify(request: Request) -> SpotifyApi:
    return request.app.state.spotify


def _frontend_redirect(frontend_uri: str, **params: str) -> str:
    sep = "&" if "?" in frontend_uri else "?"
    return f"{frontend_uri}{sep}{urlencode(params)}"


def _upstream_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": message})


@router.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "spotify_broker"}


@router.get("/login")
def login(
    settings: Settings = Depends(get_settings),
    flow: AuthFlowController = Depends(get_auth_flow),
):
    """Issue a state cookie and redirect to Spotify's consent page."""
    redirect = flow.start_login()
    response = RedirectResponse(url=redirect.url, status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        redirect.state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    settings: Settings = Depends(get_settings),
    flow: AuthFlowController = Depends(get_auth_flow),
):
    """
    Spotify redirects here with ?code=...&state=... (or ?error=...).
    Always clears the state cookie; redirects to the frontend with success or error flag.
    """
    stored_state = request.cookies.get(STATE_COOKIE)
    outcome = await flow.handle_callback(code, state, stored_state, error=error)
    if outcome is CallbackOutcome.SUCCESS:
        url = _frontend_redirect(settings.frontend_uri, success="true")
    else:
        url = _frontend_redirect(settings.frontend_uri, error=outcome.value)
    response = RedirectResponse(url=url, status_code=302)
    response.delete_cookie(STATE_COOKIE, httponly=True, samesite="lax", secure=settings.secure_cookies)
    return response


@router.post("/logout")
async def logout(tokens: TokenManager = Depends(get_token_manager)):
    """Forget the stored token pair."""
    await tokens.logout()
    return {"authenticated": False}


@router.get("/api/spotify/status")
def status(tokens: TokenManager = Depends(get_token_manager)):
    """Whether a token pair is held, and when it expires. Does not refresh."""
    st = tokens.get_status()
    body = {"authenticated": st.authenticated, "hasRefreshToken": st.has_refresh_token}
    if st.authenticated:
        body["tokenExpires"] = st.expires_at.isoformat()
        body["timeRemaining"] = st.time_remaining
    return body


@router.get("/api/spotify/recent")
async def recent(spotify: SpotifyApi = Depends(get_spotify)):
    try:
        return await spotify.recently_played()
    except UpstreamFailure:
        return _upstream_error("Failed to fetch recent tracks")


@router.get("/api/spotify/top-tracks")
async def top_tracks(time_range: TimeRange = "medium_term", spotify: SpotifyApi = Depends(get_spotify)):
    try:
        return await spotify.top_tracks(time_range=time_range)
    except UpstreamFailure:
        return _upstream_error("Failed to fetch top tracks")


@router.get("/api/spotify/now-playing")
async def now_playing(spotify: SpotifyApi = Depends(get_spotify)):
    try:
        return await spotify.now_playing()
    except UpstreamFailure:
        return _upstream_error("Failed to fetch currently playing track")


class FrontendFiles(StaticFiles):
    """Static frontend whose client-side routes fall back to index.html."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as e:
            if e.status_code != 404 or scope["method"] not in ("GET", "HEAD"):
                raise
            return await super().get_response("index.html", scope)


async def auth_required_handler(request: Request, exc: AuthRequired) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Not authenticated. Please log in.", "requireLogin": True},
    )


def _build_store(settings: Settings) -> TokenStore:
    if not settings.database_url:
        logger.warning("DATABASE_URL is empty; tokens will not survive a restart")
        return MemoryTokenStore()
    return SqlTokenStore(create_db_engine(settings.database_url))


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    store: TokenStore | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """
    Build the app. Settings default to the environment (ConfigError if credentials are missing).
    transport/store/clock are injection points for tests.
    """
    if settings is None:
        settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the HTTP client and components; load the stored token before serving."""
        token_store = store if store is not None else _build_store(settings)
        async with httpx.AsyncClient(timeout=settings.http_timeout, transport=transport) as http_client:
            token_client = SpotifyTokenClient(
                http_client,
                client_id=settings.client_id,
                client_secret=settings.client_secret,
                redirect_uri=settings.redirect_uri,
            )
            tokens = TokenManager(
                token_store,
                token_client,
                refresh_skew_seconds=settings.refresh_skew_seconds,
                discard_on_refresh_failure=settings.discard_on_refresh_failure,
                clock=clock,
            )
            await tokens.initialize()

            app.state.store = token_store
            app.state.tokens = tokens
            app.state.auth_flow = AuthFlowController(settings, token_client, tokens)
            app.state.spotify = SpotifyApi(tokens, http_client)

            refresher = None
            if settings.background_refresh_interval > 0:
                refresher = asyncio.create_task(run_refresh_loop(tokens, settings.background_refresh_interval))
            try:
                yield
            finally:
                if refresher is not None:
                    refresher.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await refresher
                token_store.close()

    app = FastAPI(title="Spotify Token Broker", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AuthRequired, auth_required_handler)
    app.include_router(router)
    # Frontend last so API routes win; unknown paths get index.html
    if settings.static_dir:
        app.mount("/", FrontendFiles(directory=settings.static_dir, html=True), name="frontend")
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spotify_broker.main:create_app",
        factory=True,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "3000")),
    )
