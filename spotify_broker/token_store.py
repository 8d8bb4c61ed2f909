"""
Token pair persistence. A single pair under a fixed key (single tenant, no per-user rows).
Store failures are logged and swallowed: the in-memory pair held by the lifecycle
manager stays authoritative for the life of the process.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from spotify_broker.database import create_session_factory
from spotify_broker.exceptions import StoreUnavailable
from spotify_broker.models import TOKEN_ID, Base, StoredToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    # Absolute UTC expiry, computed once when the token was issued
    expires_at: datetime


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TokenStore(ABC):
    @abstractmethod
    def load(self) -> TokenPair | None:
        """Return the stored pair, or None if there is none or the store is unreachable."""

    @abstractmethod
    def save(self, pair: TokenPair) -> bool:
        """Upsert the pair. Returns False (after logging) if it could not be persisted."""

    @abstractmethod
    def clear(self) -> bool:
        """Remove the stored pair."""

    def initialize(self) -> None:
        """Prepare backing storage. Default: nothing to do."""

    def close(self) -> None:
        """Release connections. Default: nothing to do."""


class MemoryTokenStore(TokenStore):
    """Process-local store; the pair is lost on restart."""

    def __init__(self, pair: TokenPair | None = None):
        self._pair = pair

    def load(self) -> TokenPair | None:
        return self._pair

    def save(self, pair: TokenPair) -> bool:
        self._pair = pair
        return True

    def clear(self) -> bool:
        self._pair = None
        return True


class SqlTokenStore(TokenStore):
    """Token pair in one row of the spotify_tokens table."""

    def __init__(self, engine: Engine, token_id: str = TOKEN_ID):
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._token_id = token_id

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Session scope; database errors surface as StoreUnavailable."""
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    def initialize(self) -> None:
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.error("Token store unavailable at startup: %s", e)

    def close(self) -> None:
        self._engine.dispose()

    def load(self) -> TokenPair | None:
        try:
            with self._session() as db:
                row = db.get(StoredToken, self._token_id)
                if row is None:
                    logger.info("No stored Spotify token found")
                    return None
                pair = TokenPair(
                    access_token=row.access_token,
                    refresh_token=row.refresh_token,
                    expires_at=_as_utc(row.expires_at),
                )
        except StoreUnavailable as e:
            logger.error("Could not load token from store: %s", e)
            return None
        logger.info("Loaded stored Spotify token (expires_at=%s)", pair.expires_at.isoformat())
        return pair

    def save(self, pair: TokenPair) -> bool:
        try:
            with self._session() as db:
                row = db.get(StoredToken, self._token_id)
                if row is None:
                    row = StoredToken(id=self._token_id)
                    db.add(row)
                row.access_token = pair.access_token
                row.refresh_token = pair.refresh_token
                row.expires_at = pair.expires_at.astimezone(timezone.utc).replace(tzinfo=None)
                row.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
                db.commit()
        except StoreUnavailable as e:
            logger.error("Could not save token to store: %s", e)
            return False
        logger.info("Saved Spotify token to store (expires_at=%s)", pair.expires_at.isoformat())
        return True

    def clear(self) -> bool:
        try:
            with self._session() as db:
                row = db.get(StoredToken, self._token_id)
                if row is not None:
                    db.delete(row)
                    db.commit()
        except StoreUnavailable as e:
            logger.error("Could not clear token from store: %s", e)
            return False
        return True
