"""RateLimitWindow model - per-minute request buckets for the rate limiter."""

from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.base import UUIDMixin


class RateLimitWindow(UUIDMixin, SQLModel, table=True):
    """Request count for (identifier, action) within one minute bucket."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint(
            "identifier", "action", "bucket_start", name="uq_rate_limits_identifier_action_bucket"
        ),
    )

    identifier: str = Field(max_length=200, nullable=False, index=True)
    action: str = Field(max_length=50, nullable=False)
    bucket_start: datetime = Field(  # type: ignore[call-overload]
        nullable=False, sa_type=DateTime(timezone=True), index=True
    )
    count: int = Field(default=0, nullable=False)
