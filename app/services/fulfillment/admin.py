"""Operator actions on songs and failed jobs.

Lyrics-level overrides (reject, unapprove) live on the workflow. The
actions here work on songs directly and batch the per-job retry. Every
action writes an admin_logs row in the same transaction as its change.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import ReleasePolicy, release_policy_from
from app.domain import admin_log_ops, notification_queue_ops, song_ops
from app.models.base import utcnow
from app.models.song import Song, SongStatus
from app.services.fulfillment.events import PipelineEvents, pipeline_events
from app.services.fulfillment.exceptions import AlreadyProcessed, NotFound, PipelineError
from app.services.fulfillment.lyrics_workflow import LyricsApprovalWorkflow, lyrics_workflow
from app.services.supabase import SongAssetStorage, song_asset_storage

logger = logging.getLogger(__name__)


@dataclass
class RetryReport:
    """Summary of a retry-failed-jobs run."""

    jobs_found: int = 0
    regenerated: int = 0
    audio_submitted: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class AdminOperations:
    """Song-level operator actions."""

    def __init__(
        self,
        workflow: LyricsApprovalWorkflow | None = None,
        storage: SongAssetStorage | None = None,
        policy: ReleasePolicy | None = None,
        events: PipelineEvents | None = None,
    ):
        self.workflow = workflow or lyrics_workflow
        self.storage = storage or song_asset_storage
        self.policy = policy or release_policy_from()
        self.events = events or pipeline_events

    async def _get_song(self, db: AsyncSession, song_id: uuid_pkg.UUID) -> Song:
        song = await song_ops.get(db, song_id)
        if song is None:
            raise NotFound(f"Song {song_id} not found")
        return song

    async def approve_song(
        self,
        db: AsyncSession,
        song_id: uuid_pkg.UUID,
        release_at: datetime | None = None,
    ) -> Song:
        """ready -> approved, scheduled for `release_at` (default now + release delay)."""
        song = await self._get_song(db, song_id)
        now = utcnow()
        release_at = release_at or now + self.policy.release_delay

        if not await song_ops.approve(db, song_id, release_at, now):
            raise AlreadyProcessed(f"Song {song_id} is {song.status}, not ready", song.status)
        await admin_log_ops.record(
            db, "song_approved", "songs", song_id,
            {"release_at": release_at.isoformat()}, actor="admin",
        )
        await db.commit()
        await db.refresh(song)

        self.events.transition(
            "song.approved", "song", song_id, SongStatus.READY.value,
            SongStatus.APPROVED.value, release_at=release_at.isoformat(),
        )
        return song

    async def unapprove_song(self, db: AsyncSession, song_id: uuid_pkg.UUID) -> Song:
        """Pull an approved or released song back to pending and cancel its release."""
        song = await self._get_song(db, song_id)
        from_status, order_id = song.status, song.order_id
        now = utcnow()

        if not await song_ops.unapprove(db, song_id, now):
            raise AlreadyProcessed(
                f"Song {song_id} is {from_status}, not approved or released", from_status
            )
        dropped = await notification_queue_ops.drop_undelivered_for_order(db, order_id)
        await admin_log_ops.record(
            db, "song_unapproved", "songs", song_id,
            {"from_status": from_status, "notifications_dropped": dropped}, actor="admin",
        )
        await db.commit()
        await db.refresh(song)

        self.events.transition(
            "song.unapproved", "song", song_id, from_status, SongStatus.PENDING.value,
        )
        return song

    async def delete_song(self, db: AsyncSession, song_id: uuid_pkg.UUID) -> dict[str, Any]:
        """Delete a song and its stored files. Lyrics approvals are kept."""
        song = await self._get_song(db, song_id)
        details = {
            "order_id": str(song.order_id),
            "status": song.status,
            "title": song.title,
        }
        assets = await self.storage.delete_assets(song.audio_url, song.cover_url)

        await song_ops.delete(db, song_id)
        await admin_log_ops.record(
            db, "song_deleted", "songs", song_id,
            {**details, "assets_deleted": assets.deleted, "asset_errors": assets.errors},
            actor="admin",
        )
        await db.commit()

        self.events.transition("song.deleted", "song", song_id, details["status"], None)
        return {
            "song_id": str(song_id),
            "assets_deleted": assets.deleted,
            "asset_errors": assets.errors,
        }

    async def retry_failed_jobs(self, db: AsyncSession, limit: int = 20) -> RetryReport:
        """Retry a batch of failed jobs, one at a time."""
        report = RetryReport()
        failed = await self.workflow.jobs.list_failed(db, limit=limit)
        job_ids = [job.id for job in failed]
        report.jobs_found = len(job_ids)

        for job_id in job_ids:
            try:
                outcome = await self.workflow.retry_job(db, job_id)
            except PipelineError as e:
                await db.rollback()
                logger.error(f"[admin] Retry of job {job_id} failed: {e.message}")
                report.errors.append(f"{job_id}: {e.message}")
                continue

            if outcome == "regenerated":
                report.regenerated += 1
            elif outcome == "audio_submitted":
                report.audio_submitted += 1
            else:
                report.skipped += 1

            await admin_log_ops.record(db, "job_retried", "jobs", job_id, {"outcome": outcome})
            await db.commit()

        logger.info(
            f"[admin] Retried {report.jobs_found} failed job(s): "
            f"{report.regenerated} regenerated, {report.audio_submitted} resubmitted, "
            f"{len(report.errors)} error(s)"
        )
        return report


admin_operations = AdminOperations()
