"""Order and Quiz models.

Both tables are written by checkout and the quiz flow. The fulfillment
pipeline reads them: the order gives the recipient and payment state, the
quiz is the customer brief the lyrics are written from.
"""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class OrderStatus(str, Enum):
    """Payment state of an order."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Quiz(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """Customer brief for a personalized song."""

    __tablename__ = "quizzes"

    about_who: str = Field(max_length=200, nullable=False)
    relationship: str | None = Field(default=None, max_length=100)
    occasion: str | None = Field(default=None, max_length=100)
    style: str | None = Field(default=None, max_length=100)
    language: str = Field(default="pt", max_length=10)
    vocal_gender: str | None = Field(default=None, max_length=10)
    qualities: str | None = Field(default=None)
    memories: str | None = Field(default=None)
    message: str | None = Field(default=None)

    # Free-form answers from the quiz UI (may include client-approved lyrics)
    answers: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONB))


class Order(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """A paid (or pending) song order."""

    __tablename__ = "orders"

    quiz_id: uuid_pkg.UUID = Field(foreign_key="quizzes.id", nullable=False, index=True)
    customer_email: str = Field(max_length=320, nullable=False)
    customer_name: str | None = Field(default=None, max_length=200)
    status: str = Field(default=OrderStatus.PENDING.value, max_length=20, index=True)
    paid_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
    # Opaque token for the customer's order page
    access_token: str | None = Field(default=None, max_length=100, unique=True)
