"""
Release sweep - publishes songs whose scheduled release time has passed.

Runs on an interval (APScheduler or the cron endpoint). Each order is
handled in its own transaction:

1. release every due, still-approved song of the order in one UPDATE
   guarded by `released_at IS NULL`
2. enqueue one notification for the order, for the smallest released id

A failing order is rolled back, counted and skipped; the sweep goes on
with the next one. Delivery itself happens in the notification queue, so
an email outage never holds a release back.
"""

import logging
import uuid as uuid_pkg
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain import order_ops, song_ops
from app.models.base import utcnow
from app.models.song import SongStatus
from app.services.fulfillment.events import PipelineEvents, pipeline_events
from app.services.fulfillment.notification_queue import NotificationQueue, notification_queue

logger = logging.getLogger(__name__)


@dataclass
class ReleaseSweepReport:
    """Summary of a release sweep."""

    songs_due: int = 0
    processed_orders: int = 0
    songs_released: int = 0
    notifications_enqueued: int = 0
    errors: list[str] = field(default_factory=list)


class ReleaseScheduler:
    """Promotes due songs to released, one order at a time."""

    def __init__(
        self,
        queue: NotificationQueue | None = None,
        events: PipelineEvents | None = None,
        batch_limit: int = 500,
    ):
        self.queue = queue or notification_queue
        self.events = events or pipeline_events
        self.batch_limit = batch_limit

    async def sweep(self, db: AsyncSession, now: datetime | None = None) -> ReleaseSweepReport:
        now = now or utcnow()
        report = ReleaseSweepReport()

        due = await song_ops.list_due_for_release(db, now, limit=self.batch_limit)
        report.songs_due = len(due)
        if not due:
            logger.info("[release] No songs due")
            return report

        by_order: dict[uuid_pkg.UUID, int] = defaultdict(int)
        for song in due:
            by_order[song.order_id] += 1
        logger.info(f"[release] {len(due)} song(s) due across {len(by_order)} order(s)")

        for order_id in by_order:
            try:
                released, enqueued = await self._release_order(db, order_id, now)
            except Exception as e:
                await db.rollback()
                logger.exception(f"[release] Order {order_id} failed: {e}")
                report.errors.append(f"{order_id}: {e}")
                continue

            if not released:
                # Another sweep got there first
                continue
            report.processed_orders += 1
            report.songs_released += len(released)
            if enqueued:
                report.notifications_enqueued += 1

        logger.info(
            f"[release] Sweep done: {report.processed_orders} order(s), "
            f"{report.songs_released} song(s), {report.notifications_enqueued} notification(s), "
            f"{len(report.errors)} error(s)"
        )
        return report

    async def _release_order(
        self, db: AsyncSession, order_id: uuid_pkg.UUID, now: datetime
    ) -> tuple[list[uuid_pkg.UUID], bool]:
        released = await song_ops.release_order(db, order_id, now)
        if not released:
            await db.rollback()
            return [], False

        order = await order_ops.get(db, order_id)
        if order is None:
            raise LookupError(f"Order {order_id} not found")

        representative = min(released, key=str)
        enqueued = await self.queue.enqueue(
            db,
            recipient=order.customer_email,
            order_id=order_id,
            song_id=representative,
            now=now,
        )
        await db.commit()

        for song_id in released:
            self.events.transition(
                "song.released", "song", song_id,
                SongStatus.APPROVED.value, SongStatus.RELEASED.value, order_id=str(order_id),
            )
        if enqueued:
            self.events.transition(
                "notification.enqueued", "notification", order_id, None, "pending",
                song_id=str(representative),
            )
        return released, enqueued


release_scheduler = ReleaseScheduler()
