"""AdminLog model - append-only audit of pipeline and operator actions."""

from typing import Any

from sqlalchemy import Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class AdminLog(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """A single audited action."""

    __tablename__ = "admin_logs"

    action: str = Field(max_length=100, nullable=False, index=True)
    target_table: str = Field(max_length=100, nullable=False)
    target_id: str = Field(max_length=100, nullable=False, index=True)
    actor: str = Field(default="system", max_length=100)
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))
