"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing these
models to the actual DB.

Key concepts:
- UUID primary keys for users, integer ids for everything users see in URLs
- JSON columns become JSONB on PostgreSQL (with_variant), plain JSON elsewhere,
  so the same models run against SQLite in tests
- Timestamps get a Python-side default as well as a server_default so
  freshly inserted rows can be serialized without a refresh round-trip
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are UTC by convention; aware ones are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that always hands back aware UTC values.

    Learn: SQLite has no timezone storage and returns naive datetimes,
    PostgreSQL returns aware ones. Normalizing here keeps API payloads
    identical whether a row was just written or re-read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


def as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    """Coerce a user id from a JWT `sub` (str) to the column type."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def default_notification_preferences() -> dict:
    return {
        "email_enabled": True,
        "in_app_enabled": True,
        "due_date_reminders": True,
        "file_upload_notifications": True,
        "batch_frequency": "hourly",
    }


# ══════════════════════════════════════════════════════════════
# Users
# ══════════════════════════════════════════════════════════════


class User(Base):
    """An account. Owns todos and receives notifications.

    Learn: notification_preferences is a JSON blob rather than columns —
    the preference keys grew over time and the API round-trips the
    whole object anyway.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    theme_preference: Mapped[str] = mapped_column(
        String(20), nullable=False, default="system"
    )  # light, dark, system
    notification_preferences: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=default_notification_preferences
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


# ══════════════════════════════════════════════════════════════
# Todos + attachments
# ══════════════════════════════════════════════════════════════


class Todo(Base):
    """A todo item with a forward-only lifecycle.

    Learn: state is one of todo → inProgress → complete. The transition
    rules live in TodoService, not here — the model only records the
    current state and the two one-shot timestamps (started_at,
    completed_at) that the service stamps on first entry.
    """

    __tablename__ = "todos"
    __table_args__ = (
        Index("ix_todos_user_state", "user_id", "state"),
        Index("ix_todos_due_date", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default="medium"
    )  # low, medium, high, urgent
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default="todo"
    )  # todo, inProgress, complete
    started_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    attachment_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class FileAttachment(Base):
    """A file attached to a todo.

    Learn: filename is the on-disk name (uuid + extension, never
    user-controlled); original_name is what the user uploaded, with
    "(n)" suffixes added when the same todo already has that name.
    thumbnail_path is only ever set for image/* uploads.
    """

    __tablename__ = "file_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    todo_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="other"
    )  # image, document, text, other
    thumbnail_path: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


# ══════════════════════════════════════════════════════════════
# Notifications + presence
# ══════════════════════════════════════════════════════════════


class Notification(Base):
    """Durable notification record — the catch-up log for offline clients.

    Learn: the WebSocket push is fire-and-forget; this row is what a
    client reads when it reconnects. Only `read` is ever mutated.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
        Index("ix_notifications_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class UserPresence(Base):
    """One row per (user, socket) — online flag + last seen.

    Learn: the in-memory ConnectionRegistry is the live truth for
    delivery; this table is the durable view other processes and the
    status endpoint can query. Old rows are garbage-collected by age.
    """

    __tablename__ = "user_presence"
    __table_args__ = (
        UniqueConstraint("user_id", "socket_id", name="uq_user_presence_socket"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    socket_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_seen: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now()
    )
