"""Domain operations for NotificationQueueEntry model."""

import uuid as uuid_pkg
from datetime import datetime

from sqlalchemy import case, delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations, affected_rows
from app.models.notification_queue import (
    NotificationQueueEntry,
    NotificationStatus,
    NotificationTemplate,
)

INTERRUPTED_ERROR = "Delivery attempt interrupted before it was recorded"


class NotificationQueueOperations(BaseOperations[NotificationQueueEntry]):
    """Queue writes and conditional retry bookkeeping."""

    def __init__(self) -> None:
        super().__init__(NotificationQueueEntry)

    async def enqueue(
        self,
        db: AsyncSession,
        *,
        recipient: str,
        order_id: uuid_pkg.UUID,
        song_id: uuid_pkg.UUID,
        max_retries: int,
        now: datetime,
        template: str = NotificationTemplate.SONG_RELEASED.value,
    ) -> bool:
        """Insert a pending entry. Returns False if the order was already queued for this template."""
        statement = (
            insert(NotificationQueueEntry)
            .values(
                id=uuid_pkg.uuid4(),
                recipient=recipient,
                template=template,
                order_id=order_id,
                song_id=song_id,
                status=NotificationStatus.PENDING.value,
                retry_count=0,
                max_retries=max_retries,
                next_retry_at=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(constraint="uq_notification_queue_order_template")
        )
        result = await db.execute(statement)
        return affected_rows(result) > 0

    async def claim_due(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[NotificationQueueEntry]:
        """Lock up to `limit` due pending entries and mark them processing.

        SKIP LOCKED lets concurrent drains split the backlog instead of
        claiming the same rows.
        """
        statement = (
            select(NotificationQueueEntry)
            .where(NotificationQueueEntry.status == NotificationStatus.PENDING.value)
            .where(NotificationQueueEntry.next_retry_at <= now)  # type: ignore[arg-type]
            .order_by(NotificationQueueEntry.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        entries = list((await db.execute(statement)).scalars().all())
        if not entries:
            return []

        await db.execute(
            update(NotificationQueueEntry)
            .where(
                NotificationQueueEntry.id.in_([e.id for e in entries])  # type: ignore[attr-defined]
            )
            .values(status=NotificationStatus.PROCESSING.value, updated_at=now)
        )
        for entry in entries:
            entry.status = NotificationStatus.PROCESSING.value
        return entries

    async def mark_sent(
        self,
        db: AsyncSession,
        entry_id: uuid_pkg.UUID,
        message_id: str | None,
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(NotificationQueueEntry)
            .where(NotificationQueueEntry.id == entry_id)  # type: ignore[arg-type]
            .where(
                NotificationQueueEntry.status == NotificationStatus.PROCESSING.value  # type: ignore[arg-type]
            )
            .values(
                status=NotificationStatus.SENT.value,
                message_id=message_id,
                sent_at=now,
                last_error=None,
                updated_at=now,
            )
        )
        return affected_rows(result) > 0

    async def schedule_retry(
        self,
        db: AsyncSession,
        entry_id: uuid_pkg.UUID,
        retry_count: int,
        next_retry_at: datetime,
        error: str,
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(NotificationQueueEntry)
            .where(NotificationQueueEntry.id == entry_id)  # type: ignore[arg-type]
            .where(
                NotificationQueueEntry.status == NotificationStatus.PROCESSING.value  # type: ignore[arg-type]
            )
            .values(
                status=NotificationStatus.PENDING.value,
                retry_count=retry_count,
                next_retry_at=next_retry_at,
                last_error=error[:2000],
                updated_at=now,
            )
        )
        return affected_rows(result) > 0

    async def mark_failed(
        self,
        db: AsyncSession,
        entry_id: uuid_pkg.UUID,
        retry_count: int,
        error: str,
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(NotificationQueueEntry)
            .where(NotificationQueueEntry.id == entry_id)  # type: ignore[arg-type]
            .where(
                NotificationQueueEntry.status == NotificationStatus.PROCESSING.value  # type: ignore[arg-type]
            )
            .values(
                status=NotificationStatus.FAILED.value,
                retry_count=retry_count,
                last_error=error[:2000],
                updated_at=now,
            )
        )
        return affected_rows(result) > 0

    async def recover_stale(self, db: AsyncSession, cutoff: datetime, now: datetime) -> int:
        """Release entries stuck in processing (crashed drain).

        The interrupted attempt counts toward the entry's cap: entries that
        reach it are failed, the rest go back to pending.
        """
        attempts = NotificationQueueEntry.retry_count + 1
        result = await db.execute(
            update(NotificationQueueEntry)
            .where(
                NotificationQueueEntry.status == NotificationStatus.PROCESSING.value  # type: ignore[arg-type]
            )
            .where(NotificationQueueEntry.updated_at < cutoff)  # type: ignore[arg-type]
            .values(
                status=case(
                    (attempts >= NotificationQueueEntry.max_retries, NotificationStatus.FAILED.value),
                    else_=NotificationStatus.PENDING.value,
                ),
                retry_count=attempts,
                last_error=INTERRUPTED_ERROR,
                next_retry_at=now,
                updated_at=now,
            )
        )
        return affected_rows(result)

    async def drop_undelivered_for_order(self, db: AsyncSession, order_id: uuid_pkg.UUID) -> int:
        """Delete not-yet-delivered notifications for an order (release rolled back)."""
        result = await db.execute(
            delete(NotificationQueueEntry)
            .where(NotificationQueueEntry.order_id == order_id)  # type: ignore[arg-type]
            .where(
                NotificationQueueEntry.status.in_(  # type: ignore[attr-defined]
                    [NotificationStatus.PENDING.value, NotificationStatus.FAILED.value]
                )
            )
        )
        return affected_rows(result)

    async def list_by_status(
        self, db: AsyncSession, status: str, limit: int = 100
    ) -> list[NotificationQueueEntry]:
        """Entries in a given state (for operator views)."""
        statement = (
            select(NotificationQueueEntry)
            .where(NotificationQueueEntry.status == status)
            .order_by(NotificationQueueEntry.updated_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


notification_queue_ops = NotificationQueueOperations()
