"""
Persisted state machine for fulfillment jobs.

    pending -> processing -> completed | failed

Every write is an `UPDATE ... WHERE status IN (expected)` so that racing
triggers (webhook, poller, manual retry, customer double-click) resolve to
exactly one winner. Callers learn whether they won from the boolean result
and never overwrite a status they did not read.

Only the lyrics workflow and the audio trigger hold a JobStore.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import affected_rows
from app.models.base import utcnow
from app.models.job import ACTIVE_JOB_STATUSES, Job, JobStatus
from app.services.fulfillment.events import PipelineEvents, pipeline_events

logger = logging.getLogger(__name__)

# Matches the Job.error column
MAX_ERROR_LENGTH = 2000


def _sanitize_error(error: object) -> str:
    message = str(error).strip() or type(error).__name__
    return message[:MAX_ERROR_LENGTH]


def _statuses(expected: str | Iterable[str]) -> list[str]:
    if isinstance(expected, str):
        return [expected]
    return [JobStatus(s).value for s in expected]


class JobStore:
    """Conditional reads and writes for the jobs table."""

    def __init__(self, events: PipelineEvents | None = None):
        self.events = events or pipeline_events

    async def get(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> Job | None:
        result = await db.execute(select(Job).where(Job.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_active_for_order(
        self, db: AsyncSession, order_id: uuid_pkg.UUID, variant: int = 1
    ) -> Job | None:
        statement = (
            select(Job)
            .where(Job.order_id == order_id)  # type: ignore[arg-type]
            .where(Job.variant == variant)  # type: ignore[arg-type]
            .where(Job.status.in_(ACTIVE_JOB_STATUSES))  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_by_task_reference(self, db: AsyncSession, task_reference: str) -> Job | None:
        statement = (
            select(Job)
            .where(Job.audio_task_reference == task_reference)  # type: ignore[arg-type]
            .order_by(Job.created_at.desc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def create_for_order(
        self,
        db: AsyncSession,
        order_id: uuid_pkg.UUID,
        quiz_id: uuid_pkg.UUID,
        variant: int = 1,
    ) -> tuple[Job, bool]:
        """Create a pending job unless a non-terminal one exists for the order/variant.

        Returns (job, created). Relies on the partial unique index so two
        concurrent intakes produce one job.
        """
        now = utcnow()
        statement = (
            insert(Job)
            .values(
                id=uuid_pkg.uuid4(),
                order_id=order_id,
                quiz_id=quiz_id,
                variant=variant,
                status=JobStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["order_id", "variant"],
                index_where=text("status IN ('pending', 'processing')"),
            )
            .returning(Job.id)
        )
        new_id = (await db.execute(statement)).scalar_one_or_none()

        if new_id is None:
            existing = await self.get_active_for_order(db, order_id, variant)
            if existing is None:
                # The conflicting job finished between the insert and the read
                raise RuntimeError(f"Could not create or find an active job for order {order_id}")
            logger.info(f"[jobs] Order {order_id} already has active job {existing.id}")
            return existing, False

        job = await self.get(db, new_id)
        if job is None:
            raise RuntimeError(f"Job {new_id} vanished right after insert for order {order_id}")
        self.events.transition("job.created", "job", job.id, None, JobStatus.PENDING.value,
                               order_id=str(order_id))
        return job, True

    async def transition(
        self,
        db: AsyncSession,
        job_id: uuid_pkg.UUID,
        expected: str | Iterable[str],
        to_status: JobStatus,
        *,
        event: str | None = None,
        now: datetime | None = None,
        **values: Any,
    ) -> bool:
        """Compare-and-set the job status. Returns True if this call won."""
        now = now or utcnow()
        expected_statuses = _statuses(expected)
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.status.in_(expected_statuses))  # type: ignore[attr-defined]
            .values(status=to_status.value, updated_at=now, **values)
        )
        won = affected_rows(result) > 0
        if won:
            self.events.transition(
                event or f"job.{to_status.value}",
                "job",
                job_id,
                "|".join(expected_statuses),
                to_status.value,
            )
        else:
            logger.info(
                f"[jobs] Transition of {job_id} to {to_status.value} skipped "
                f"(not in {', '.join(expected_statuses)})"
            )
        return won

    async def start_processing(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> bool:
        """pending|processing -> processing. Idempotent for an already-processing job."""
        return await self.transition(
            db, job_id, ACTIVE_JOB_STATUSES, JobStatus.PROCESSING, event="job.processing",
        )

    async def mark_completed(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> bool:
        now = utcnow()
        return await self.transition(
            db, job_id, JobStatus.PROCESSING.value, JobStatus.COMPLETED,
            now=now, completed_at=now, error=None,
        )

    async def mark_failed(
        self,
        db: AsyncSession,
        job_id: uuid_pkg.UUID,
        error: object,
        expected: str | Iterable[str] = ACTIVE_JOB_STATUSES,
    ) -> bool:
        message = _sanitize_error(error)
        won = await self.transition(db, job_id, expected, JobStatus.FAILED, error=message)
        if won:
            logger.warning(f"[jobs] Job {job_id} failed: {message}")
        return won

    async def record_error(self, db: AsyncSession, job_id: uuid_pkg.UUID, error: object) -> None:
        """Store the last error without changing status (retryable failure)."""
        await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .values(error=_sanitize_error(error), updated_at=utcnow())
        )

    async def store_lyrics(
        self, db: AsyncSession, job_id: uuid_pkg.UUID, lyrics: dict[str, Any]
    ) -> bool:
        """Write generated lyrics onto a processing job."""
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.status == JobStatus.PROCESSING.value)  # type: ignore[arg-type]
            .values(generated_lyrics=lyrics, error=None, updated_at=utcnow())
        )
        return affected_rows(result) > 0

    async def claim_audio_submission(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> bool:
        """Reserve the right to submit audio for a job.

        Only one caller gets True: the job must be processing with neither a
        task reference nor an outstanding claim.
        """
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.status == JobStatus.PROCESSING.value)  # type: ignore[arg-type]
            .where(Job.audio_task_reference.is_(None))  # type: ignore[union-attr]
            .where(Job.audio_requested_at.is_(None))  # type: ignore[union-attr]
            .values(audio_requested_at=utcnow(), updated_at=utcnow())
        )
        return affected_rows(result) > 0

    async def release_audio_claim(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> None:
        """Drop an unused claim so an operator retry can submit again."""
        await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.audio_task_reference.is_(None))  # type: ignore[union-attr]
            .values(audio_requested_at=None, updated_at=utcnow())
        )

    async def release_stale_audio_claim(
        self, db: AsyncSession, job_id: uuid_pkg.UUID, claimed_before: datetime
    ) -> bool:
        """Free a processing job whose submission never recorded a task reference.

        True when the job is free to submit: either it was never claimed or
        its claim predates `claimed_before`.
        """
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.status == JobStatus.PROCESSING.value)  # type: ignore[arg-type]
            .where(Job.audio_task_reference.is_(None))  # type: ignore[union-attr]
            .where(
                or_(
                    Job.audio_requested_at.is_(None),  # type: ignore[union-attr]
                    Job.audio_requested_at < claimed_before,  # type: ignore[operator]
                )
            )
            .values(audio_requested_at=None, updated_at=utcnow())
        )
        return affected_rows(result) > 0

    async def set_task_reference(
        self, db: AsyncSession, job_id: uuid_pkg.UUID, task_reference: str
    ) -> bool:
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id)  # type: ignore[arg-type]
            .where(Job.audio_task_reference.is_(None))  # type: ignore[union-attr]
            .values(audio_task_reference=task_reference, updated_at=utcnow())
        )
        return affected_rows(result) > 0

    async def reset_to_pending(
        self,
        db: AsyncSession,
        job_id: uuid_pkg.UUID,
        expected: str | Iterable[str],
        *,
        event: str,
    ) -> bool:
        """Roll a job back to pending, clearing audio bookkeeping and errors.

        Used by operator actions only (unapprove, retry of failed jobs).
        """
        return await self.transition(
            db,
            job_id,
            expected,
            JobStatus.PENDING,
            event=event,
            audio_task_reference=None,
            audio_requested_at=None,
            error=None,
            completed_at=None,
        )

    async def list_failed(self, db: AsyncSession, limit: int = 50) -> list[Job]:
        statement = (
            select(Job)
            .where(Job.status == JobStatus.FAILED.value)  # type: ignore[arg-type]
            .order_by(Job.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def list_awaiting_audio(self, db: AsyncSession, limit: int = 50) -> list[Job]:
        """Processing jobs with a submitted audio task and no result yet."""
        statement = (
            select(Job)
            .where(Job.status == JobStatus.PROCESSING.value)  # type: ignore[arg-type]
            .where(Job.audio_task_reference.is_not(None))  # type: ignore[union-attr]
            .order_by(Job.audio_requested_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


job_store = JobStore()
