"""Song model - a rendered audio artifact for an order."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class SongStatus(str, Enum):
    """Status of a song in the release flow."""

    PENDING = "pending"
    READY = "ready"
    APPROVED = "approved"
    RELEASED = "released"
    REJECTED = "rejected"


class Song(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """One rendered variant of an order's song."""

    __tablename__ = "songs"
    __table_args__ = (
        Index("ix_songs_release_due", "status", "release_at"),
        Index("ix_songs_order_variant", "order_id", "variant_number"),
    )

    order_id: uuid_pkg.UUID = Field(foreign_key="orders.id", nullable=False, index=True)
    job_id: uuid_pkg.UUID | None = Field(default=None, index=True)

    title: str = Field(max_length=300, nullable=False)
    variant_number: int = Field(default=1, nullable=False)
    status: str = Field(default=SongStatus.READY.value, max_length=20, index=True)

    audio_url: str | None = Field(default=None, max_length=1000)
    cover_url: str | None = Field(default=None, max_length=1000)
    audio_task_reference: str | None = Field(default=None, max_length=200)
    lyrics: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))

    release_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
    # Written once, by the release scheduler
    released_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
    email_sent: bool = Field(default=False, nullable=False)
