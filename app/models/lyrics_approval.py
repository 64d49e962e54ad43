"""LyricsApproval model - one approval cycle for a generated lyric draft.

Rows are never deleted: they are the audit trail of what the customer saw,
approved or rejected, and survive deletion of the job or song.
"""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, Index, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class ApprovalStatus(str, Enum):
    """Status of a lyrics approval cycle."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class VoicePreference(str, Enum):
    """Singer voice requested for the audio render."""

    MALE = "M"
    FEMALE = "F"
    NO_PREFERENCE = "S"


class LyricsApproval(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """A lyric draft awaiting (or past) customer approval."""

    __tablename__ = "lyrics_approvals"
    __table_args__ = (
        # Exactly one actionable approval per job
        Index(
            "uq_lyrics_approvals_job_pending",
            "job_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_lyrics_approvals_job_created", "job_id", "created_at"),
    )

    # No FK to jobs: approvals outlive the job they were created for
    job_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    order_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    quiz_id: uuid_pkg.UUID = Field(nullable=False)

    lyrics: dict[str, Any] = Field(sa_column=Column(JSONB, nullable=False))
    approval_token: str = Field(max_length=100, nullable=False, unique=True)

    status: str = Field(default=ApprovalStatus.PENDING.value, max_length=20, index=True)
    voice: str = Field(default=VoicePreference.NO_PREFERENCE.value, max_length=1)

    expires_at: datetime = Field(  # type: ignore[call-overload]
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now() + interval '72 hours'")},
    )
    regeneration_count: int = Field(default=0, nullable=False)
    rejection_reason: str | None = Field(default=None, max_length=2000)
    regeneration_feedback: str | None = Field(default=None, max_length=2000)

    approved_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
    rejected_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )


class LyricsApprovalRead(SQLModel):
    """Customer-facing view of an approval."""

    id: uuid_pkg.UUID
    status: str
    title: str
    verses: list[dict[str, str]]
    expires_at: datetime
    regeneration_count: int
