"""User ORM — registered accounts with credentials and profile media.

Invariants:
    - username and email are unique and stored lowercase
    - password_hash is a bcrypt hash, never the raw password
    - refresh_token holds the latest issued refresh JWT (None after logout)

Design Decisions:
    - watch_history as JSON list of video ids: no video table yet, keeps the document shape
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from vidhub.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Registered account."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    username: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    avatar: Mapped[str] = mapped_column(String(2000), nullable=False)
    cover_image: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    watch_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    password_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )
