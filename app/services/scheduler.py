"""Internal task scheduler using APScheduler.

Runs the fulfillment sweeps (release, notification drain, audio poll)
within the FastAPI process. Uses PostgreSQL advisory locks to prevent
duplicate execution when multiple instances are running (e.g., Fly.io
auto-scaling). The same runners back the cron-secret internal endpoints.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text

from app.config import settings
from app.core.database import direct_session_maker

logger = logging.getLogger(__name__)

# Advisory lock IDs (arbitrary unique integers — one per job)
RELEASE_SWEEP_LOCK_ID = 734101
NOTIFICATION_DRAIN_LOCK_ID = 734102
AUDIO_POLL_LOCK_ID = 734103
RATE_LIMIT_CLEANUP_LOCK_ID = 734104


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    Advisory locks are session-level and automatically released when the
    session ends. We use pg_try_advisory_lock() which returns immediately
    (non-blocking) — if the lock is held by another process, we skip.
    """
    async with direct_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def run_release_sweep() -> dict[str, Any] | None:
    """
    Execute the release sweep with advisory lock protection.

    Returns the report dict if executed, None if skipped (lock held by another instance).
    """
    async with advisory_lock(RELEASE_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Release-sweep: skipped (another instance is running)")
            return None

        try:
            from app.services.fulfillment.release_scheduler import release_scheduler

            async with direct_session_maker() as db:
                report = await release_scheduler.sweep(db)

            if report.songs_due:
                logger.info(
                    f"[scheduler] Release-sweep: completed "
                    f"({report.processed_orders} orders, "
                    f"{report.notifications_enqueued} notifications enqueued, "
                    f"{len(report.errors)} errors)"
                )
            return asdict(report)

        except Exception as e:
            logger.exception(f"[scheduler] Release-sweep: failed with error: {e}")
            return None


async def run_notification_drain() -> dict[str, Any] | None:
    """
    Execute the notification queue drain with advisory lock protection.

    Returns the report dict if executed, None if skipped (lock held by another instance).
    """
    async with advisory_lock(NOTIFICATION_DRAIN_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Notification-drain: skipped (another instance is running)")
            return None

        try:
            from app.services.fulfillment.notification_queue import notification_queue

            report = await notification_queue.drain()

            if report.claimed:
                logger.info(
                    f"[scheduler] Notification-drain: completed "
                    f"({report.sent} sent, {report.retried} retried, {report.failed} failed)"
                )
            return asdict(report)

        except Exception as e:
            logger.exception(f"[scheduler] Notification-drain: failed with error: {e}")
            return None


async def run_audio_poll() -> dict[str, Any] | None:
    """
    Poll the audio provider for tasks whose callback never arrived.

    Returns the report dict if executed, None if skipped (lock held by another instance).
    """
    async with advisory_lock(AUDIO_POLL_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Audio-poll: skipped (another instance is running)")
            return None

        try:
            from app.services.fulfillment.audio_trigger import AudioTaskPoller
            from app.services.fulfillment.lyrics_workflow import lyrics_workflow

            report = await AudioTaskPoller(lyrics_workflow.audio).poll()

            if report.jobs_checked:
                logger.info(
                    f"[scheduler] Audio-poll: completed "
                    f"({report.jobs_checked} checked, {report.completed} completed, "
                    f"{report.failed} failed)"
                )
            return asdict(report)

        except Exception as e:
            logger.exception(f"[scheduler] Audio-poll: failed with error: {e}")
            return None


async def run_rate_limit_cleanup() -> dict[str, Any] | None:
    """Purge expired rate-limit buckets."""
    async with advisory_lock(RATE_LIMIT_CLEANUP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Rate-limit-cleanup: skipped (another instance is running)")
            return None

        try:
            from app.core.rate_limit import rate_limiter

            deleted = await rate_limiter.cleanup()
            return {"buckets_deleted": deleted}

        except Exception as e:
            logger.exception(f"[scheduler] Rate-limit-cleanup: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_release_sweep,
            trigger=IntervalTrigger(minutes=settings.release_sweep_interval_minutes),
            id="release_sweep",
            name="Song Release Sweep",
            replace_existing=True,
            max_instances=1,
        )

        self._scheduler.add_job(
            run_notification_drain,
            trigger=IntervalTrigger(minutes=settings.notification_drain_interval_minutes),
            id="notification_drain",
            name="Notification Queue Drain",
            replace_existing=True,
            max_instances=1,
        )

        self._scheduler.add_job(
            run_audio_poll,
            trigger=IntervalTrigger(minutes=settings.audio_poll_interval_minutes),
            id="audio_poll",
            name="Audio Task Poll",
            replace_existing=True,
            max_instances=1,
        )

        # Rate-limit buckets: daily at 03:15 UTC
        self._scheduler.add_job(
            run_rate_limit_cleanup,
            trigger=CronTrigger(hour=3, minute=15),
            id="rate_limit_cleanup",
            name="Rate Limit Bucket Cleanup",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with release-sweep every "
            f"{settings.release_sweep_interval_minutes}m, "
            f"notification-drain every {settings.notification_drain_interval_minutes}m, "
            f"audio-poll every {settings.audio_poll_interval_minutes}m"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            logger.info("[scheduler] Stopped")

    async def trigger_now(self, job_id: str) -> dict[str, Any] | None:
        """
        Manually trigger a job immediately (for testing/debugging).

        Returns the job result or None if job not found.
        """
        if job_id == "release_sweep":
            return await run_release_sweep()
        if job_id == "notification_drain":
            return await run_notification_drain()
        if job_id == "audio_poll":
            return await run_audio_poll()
        if job_id == "rate_limit_cleanup":
            return await run_rate_limit_cleanup()
        return None


scheduler = Scheduler()
