"""Database tables and helpers for profiles, notification feeds and the email queue."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine


class Profile(SQLModel, table=True):
    """Digest preferences and schedule for one user."""

    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    notification_frequency: Optional[str] = None
    next_digest_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), index=True, nullable=True)
    )


class UserAccount(SQLModel, table=True):
    """Identity record holding a user's contact address."""

    __tablename__ = "user_accounts"

    uid: str = Field(primary_key=True)
    email: Optional[str] = None
    email_verified: bool = False


class FeedNotification(SQLModel, table=True):
    """One entry of a user's notification feed."""

    __tablename__ = "user_notification_feed"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    type: str = Field(default="testimony", index=True)
    timestamp: datetime = Field(
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False)
    )
    is_bill_match: bool = False
    is_user_match: bool = False
    bill_id: str
    header: Optional[str] = None
    court: Optional[int] = None
    position: str
    author_uid: str
    subheader: Optional[str] = None


class QueuedEmail(SQLModel, table=True):
    """Outbound email waiting for the mail consumer."""

    __tablename__ = "emails"

    id: Optional[int] = Field(default=None, primary_key=True)
    recipients: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    subject: str
    text: str = Field(default="", sa_column=Column(Text))
    html: str = Field(sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


def create_engine_for_url(url: str, echo: bool = False) -> Engine:
    """Return an engine for the configured database URL."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every thread sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Ensure all tables exist."""
    SQLModel.metadata.create_all(engine)


def get_session(engine: Engine) -> Session:
    """Create a session bound to the shared engine."""
    return Session(engine)


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize timestamps to aware UTC before they reach a ``DateTime(timezone=True)`` column."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Read timestamps back as aware UTC; SQLite returns them without an offset."""
    return to_db_time(value)
