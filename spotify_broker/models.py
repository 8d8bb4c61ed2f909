"""
SQLAlchemy model for the persisted token pair. One row, fixed primary key (single tenant).
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

TOKEN_ID = "main_spotify_token"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class StoredToken(Base):
    __tablename__ = "spotify_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=TOKEN_ID)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    # UTC; SQLite drops tzinfo so readers re-attach it
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
