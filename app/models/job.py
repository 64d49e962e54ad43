"""Job model - one fulfillment unit per paid order/variant.

State machine: pending -> processing -> completed | failed.
Only the lyrics workflow and the audio trigger write `status`.
"""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, Index, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class JobStatus(str, Enum):
    """Status of a fulfillment job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class Job(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """Tracks lyric and audio generation for one order variant."""

    __tablename__ = "jobs"
    __table_args__ = (
        Index(
            "uq_jobs_active_order_variant",
            "order_id",
            "variant",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
        Index("ix_jobs_status_updated", "status", "updated_at"),
    )

    order_id: uuid_pkg.UUID = Field(foreign_key="orders.id", nullable=False, index=True)
    quiz_id: uuid_pkg.UUID = Field(foreign_key="quizzes.id", nullable=False)
    variant: int = Field(default=1, nullable=False)

    status: str = Field(default=JobStatus.PENDING.value, max_length=20, index=True)

    # {"title": str, "verses": [{"type": str, "text": str}], ...}
    generated_lyrics: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))

    # Audio provider bookkeeping
    audio_task_reference: str | None = Field(default=None, max_length=200, index=True)
    audio_requested_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )

    error: str | None = Field(default=None, max_length=2000)
    completed_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
