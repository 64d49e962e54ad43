"""NotificationQueueEntry model - durable outbound email with retry state."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin, utcnow


class NotificationStatus(str, Enum):
    """Delivery state of a queued notification."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class NotificationTemplate(str, Enum):
    """Email templates the queue knows how to render."""

    SONG_RELEASED = "song_released"


class NotificationQueueEntry(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """One outbound notification and its retry chain."""

    __tablename__ = "notification_queue"
    __table_args__ = (
        UniqueConstraint("order_id", "template", name="uq_notification_queue_order_template"),
        Index("ix_notification_queue_due", "status", "next_retry_at"),
    )

    recipient: str = Field(max_length=320, nullable=False)
    template: str = Field(default=NotificationTemplate.SONG_RELEASED.value, max_length=50)

    # Payload reference - rendered at send time
    order_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    song_id: uuid_pkg.UUID = Field(nullable=False)

    status: str = Field(default=NotificationStatus.PENDING.value, max_length=20, index=True)
    retry_count: int = Field(default=0, nullable=False)
    max_retries: int = Field(default=5, nullable=False)
    next_retry_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    last_error: str | None = Field(default=None, max_length=2000)

    message_id: str | None = Field(default=None, max_length=200)
    sent_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
