"""
Durable notification queue with exponential backoff.

Entries are enqueued by the release sweep and delivered by `drain()`:

- stale `processing` entries (a drain that died mid-batch) count the lost
  attempt and go back to pending, or to failed at the cap
- up to `batch_size` due entries are claimed with SKIP LOCKED and committed
  as processing, so concurrent drains split the backlog
- each entry is rendered and sent in its own session, at most
  `concurrency` at a time; one entry's failure never touches another

After a failed attempt `retry_count` goes up by one. Below the cap the
entry returns to pending with `next_retry_at = attempt + base_delay *
2^retry_count`; at the cap it is marked failed and left for an operator.
"""

import asyncio
import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import RetryPolicy, retry_policy_from
from app.core.database import async_session_maker
from app.domain import notification_queue_ops, order_ops, song_ops
from app.models.base import utcnow
from app.models.notification_queue import (
    NotificationQueueEntry,
    NotificationStatus,
    NotificationTemplate,
)
from app.services.email.postmark import PostmarkService, postmark_service
from app.services.email.song_released import RenderedEmail, render_song_released
from app.services.fulfillment.events import PipelineEvents, pipeline_events
from app.services.fulfillment.exceptions import DeliveryFailure

logger = logging.getLogger(__name__)

SENT = "sent"
RETRIED = "retried"
FAILED = "failed"


@dataclass
class DrainReport:
    """Summary of a queue drain."""

    recovered: int = 0
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class NotificationQueue:
    """Enqueues and delivers outbound notifications."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        sender: PostmarkService | None = None,
        policy: RetryPolicy | None = None,
        events: PipelineEvents | None = None,
    ):
        self.session_maker = session_maker or async_session_maker
        self.sender = sender or postmark_service
        self.policy = policy or retry_policy_from()
        self.events = events or pipeline_events

    async def enqueue(
        self,
        db: AsyncSession,
        *,
        recipient: str,
        order_id: uuid_pkg.UUID,
        song_id: uuid_pkg.UUID,
        now: datetime | None = None,
    ) -> bool:
        """Add a pending entry to the caller's transaction. False if already queued."""
        return await notification_queue_ops.enqueue(
            db,
            recipient=recipient,
            order_id=order_id,
            song_id=song_id,
            max_retries=self.policy.max_retries,
            now=now or utcnow(),
        )

    async def drain(self, now: datetime | None = None) -> DrainReport:
        now = now or utcnow()
        report = DrainReport()

        async with self.session_maker() as db:
            report.recovered = await notification_queue_ops.recover_stale(
                db, now - self.policy.stale_after, now
            )
            entries = await notification_queue_ops.claim_due(db, now, self.policy.batch_size)
            await db.commit()

        if report.recovered:
            logger.warning(f"[queue] Recovered {report.recovered} stale entr(ies)")
        report.claimed = len(entries)
        if not entries:
            return report

        logger.info(f"[queue] Delivering {len(entries)} notification(s)")
        semaphore = asyncio.Semaphore(self.policy.concurrency)

        async with self.sender.batch() as sender:
            outcomes = await asyncio.gather(
                *(self._deliver(entry, sender, semaphore) for entry in entries),
                return_exceptions=True,
            )

        for entry, outcome in zip(entries, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(f"[queue] Entry {entry.id} bookkeeping failed: {outcome}")
                report.errors.append(f"{entry.id}: {outcome}")
            elif outcome == SENT:
                report.sent += 1
            elif outcome == RETRIED:
                report.retried += 1
            elif outcome == FAILED:
                report.failed += 1

        logger.info(
            f"[queue] Drain done: {report.sent} sent, {report.retried} retried, "
            f"{report.failed} failed"
        )
        return report

    async def _render(self, db: AsyncSession, entry: NotificationQueueEntry) -> RenderedEmail:
        if entry.template != NotificationTemplate.SONG_RELEASED.value:
            raise ValueError(f"Unknown template {entry.template}")
        order = await order_ops.get(db, entry.order_id)
        song = await song_ops.get(db, entry.song_id)
        if order is None or song is None:
            raise LookupError(f"Order or song missing for notification {entry.id}")
        return render_song_released(
            customer_name=order.customer_name,
            song_title=song.title,
            access_token=order.access_token,
        )

    async def _deliver(
        self,
        entry: NotificationQueueEntry,
        sender: PostmarkService,
        semaphore: asyncio.Semaphore,
    ) -> str:
        async with semaphore:
            attempt_at = utcnow()
            try:
                async with self.session_maker() as db:
                    email = await self._render(db, entry)
                message_id = await sender.send(
                    to=entry.recipient,
                    subject=email.subject,
                    html_body=email.html_body,
                    text_body=email.text_body,
                    tag=email.tag,
                )
            except DeliveryFailure as e:
                return await self._record_failure(entry, e.message, attempt_at)
            except (LookupError, ValueError) as e:
                return await self._record_failure(entry, f"Render failed: {e}", attempt_at)
            except Exception as e:
                logger.exception(f"[queue] Entry {entry.id} attempt failed unexpectedly: {e}")
                return await self._record_failure(entry, f"Attempt failed: {e}", attempt_at)

            async with self.session_maker() as db:
                if not await notification_queue_ops.mark_sent(db, entry.id, message_id, attempt_at):
                    logger.warning(f"[queue] Entry {entry.id} was sent but is no longer claimed")
                await song_ops.mark_email_sent(db, entry.order_id, attempt_at)
                await db.commit()

            self.events.transition(
                "notification.sent", "notification", entry.id,
                NotificationStatus.PROCESSING.value, NotificationStatus.SENT.value,
                order_id=str(entry.order_id), message_id=message_id,
            )
            return SENT

    async def _record_failure(
        self, entry: NotificationQueueEntry, error: str, attempt_at: datetime
    ) -> str:
        retry_count = entry.retry_count + 1

        async with self.session_maker() as db:
            if self.policy.is_exhausted(retry_count, entry.max_retries):
                await notification_queue_ops.mark_failed(db, entry.id, retry_count, error, attempt_at)
                outcome, to_status = FAILED, NotificationStatus.FAILED.value
            else:
                next_retry_at = attempt_at + self.policy.next_delay(retry_count)
                await notification_queue_ops.schedule_retry(
                    db, entry.id, retry_count, next_retry_at, error, attempt_at
                )
                outcome, to_status = RETRIED, NotificationStatus.PENDING.value
            await db.commit()

        self.events.transition(
            f"notification.{outcome}", "notification", entry.id,
            NotificationStatus.PROCESSING.value, to_status,
            retry_count=retry_count, error=error,
        )
        if outcome == FAILED:
            logger.error(f"[queue] Entry {entry.id} gave up after {retry_count} attempts: {error}")
        return outcome


notification_queue = NotificationQueue()
