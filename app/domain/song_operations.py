"""Domain operations for Song model."""

import uuid as uuid_pkg
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations, affected_rows
from app.models.song import Song, SongStatus


class SongOperations(BaseOperations[Song]):
    """Queries and conditional transitions for songs."""

    def __init__(self) -> None:
        super().__init__(Song)

    async def list_due_for_release(
        self, db: AsyncSession, now: datetime, limit: int = 500
    ) -> list[Song]:
        """Approved songs with audio whose release time has passed and are not yet released."""
        statement = (
            select(Song)
            .where(Song.status == SongStatus.APPROVED.value)
            .where(Song.release_at <= now)  # type: ignore[operator]
            .where(Song.released_at.is_(None))  # type: ignore[union-attr]
            .where(Song.audio_url.is_not(None))  # type: ignore[union-attr]
            .order_by(Song.release_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def release_order(
        self, db: AsyncSession, order_id: uuid_pkg.UUID, now: datetime
    ) -> list[uuid_pkg.UUID]:
        """Release every due, still-approved song of an order in one statement.

        The `released_at IS NULL` guard makes a concurrent sweep see zero rows.
        Returns the ids that this call released.
        """
        result = await db.execute(
            update(Song)
            .where(Song.order_id == order_id)  # type: ignore[arg-type]
            .where(Song.status == SongStatus.APPROVED.value)  # type: ignore[arg-type]
            .where(Song.released_at.is_(None))  # type: ignore[union-attr]
            .where(Song.release_at <= now)  # type: ignore[operator]
            .where(Song.audio_url.is_not(None))  # type: ignore[union-attr]
            .values(status=SongStatus.RELEASED.value, released_at=now, updated_at=now)
            .returning(Song.id)
        )
        return [row[0] for row in result.all()]

    async def list_for_order(self, db: AsyncSession, order_id: uuid_pkg.UUID) -> list[Song]:
        statement = (
            select(Song)
            .where(Song.order_id == order_id)
            .order_by(Song.variant_number.asc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def next_variant_number(self, db: AsyncSession, order_id: uuid_pkg.UUID) -> int:
        result = await db.execute(
            select(func.max(Song.variant_number)).where(Song.order_id == order_id)
        )
        current = result.scalar()
        return (current or 0) + 1

    async def mark_email_sent(self, db: AsyncSession, order_id: uuid_pkg.UUID, now: datetime) -> int:
        result = await db.execute(
            update(Song)
            .where(Song.order_id == order_id)  # type: ignore[arg-type]
            .where(Song.status == SongStatus.RELEASED.value)  # type: ignore[arg-type]
            .values(email_sent=True, updated_at=now)
        )
        return affected_rows(result)

    async def approve(
        self,
        db: AsyncSession,
        song_id: uuid_pkg.UUID,
        release_at: datetime,
        now: datetime,
    ) -> bool:
        """ready -> approved with a scheduled release time."""
        result = await db.execute(
            update(Song)
            .where(Song.id == song_id)  # type: ignore[arg-type]
            .where(Song.status == SongStatus.READY.value)  # type: ignore[arg-type]
            .values(status=SongStatus.APPROVED.value, release_at=release_at, updated_at=now)
        )
        return affected_rows(result) > 0

    async def unapprove(self, db: AsyncSession, song_id: uuid_pkg.UUID, now: datetime) -> bool:
        """approved/released -> pending, clearing release scheduling."""
        result = await db.execute(
            update(Song)
            .where(Song.id == song_id)  # type: ignore[arg-type]
            .where(
                Song.status.in_(  # type: ignore[attr-defined]
                    [SongStatus.APPROVED.value, SongStatus.RELEASED.value]
                )
            )
            .values(
                status=SongStatus.PENDING.value,
                release_at=None,
                released_at=None,
                email_sent=False,
                updated_at=now,
            )
        )
        return affected_rows(result) > 0

    async def delete_unreleased_for_order(self, db: AsyncSession, order_id: uuid_pkg.UUID) -> int:
        """Remove rendered but unreleased songs of an order."""
        result = await db.execute(
            delete(Song)
            .where(Song.order_id == order_id)  # type: ignore[arg-type]
            .where(
                Song.status.in_(  # type: ignore[attr-defined]
                    [SongStatus.READY.value, SongStatus.APPROVED.value]
                )
            )
            .where(Song.released_at.is_(None))  # type: ignore[union-attr]
        )
        return affected_rows(result)

    async def delete(self, db: AsyncSession, song_id: uuid_pkg.UUID) -> bool:
        result = await db.execute(delete(Song).where(Song.id == song_id))  # type: ignore[arg-type]
        return affected_rows(result) > 0


song_ops = SongOperations()
