"""
Audio generation hand-off and completion.

`AudioGenerationTrigger.trigger()` submits approved lyrics to the audio
provider at most once per job: a conditional claim on the job row decides
the single submitter, and an existing task reference turns every later
call into a no-op.

Completion arrives through two observers that share one code path:

- `AudioCallbackHandler` - push, fed by the provider's webhook
- `AudioTaskPoller` - pull, queries tasks that have not reported back

Both end in `complete_task()`, whose first write is the job's
processing -> completed compare-and-set, so a callback racing a poll
creates the songs once.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import ReleasePolicy, release_policy_from
from app.core.database import async_session_maker
from app.domain import lyrics_approval_ops, order_ops, song_ops
from app.models.base import utcnow
from app.models.job import JobStatus
from app.models.lyrics_approval import ApprovalStatus, VoicePreference
from app.models.song import Song, SongStatus
from app.services.audio import (
    AudioClient,
    AudioRequest,
    AudioTaskResult,
    audio_client,
    parse_task_payload,
)
from app.services.fulfillment.events import PipelineEvents, pipeline_events
from app.services.fulfillment.exceptions import NotFound, UpstreamGenerationError
from app.services.fulfillment.job_store import JobStore, job_store
from app.services.lyrics.parsing import verses_to_text

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    """What happened when a task result was applied."""

    status: str  # completed | failed | pending | ignored | unknown_task | invalid
    task_reference: str | None = None
    job_id: uuid_pkg.UUID | None = None
    song_ids: list[uuid_pkg.UUID] = field(default_factory=list)
    detail: str | None = None


@dataclass
class PollReport:
    """Summary of an audio poll run."""

    jobs_checked: int = 0
    completed: int = 0
    failed: int = 0
    still_processing: int = 0
    songs_created: int = 0
    errors: list[str] = field(default_factory=list)


class AudioGenerationTrigger:
    """Submits approved lyrics for rendering and turns results into songs."""

    def __init__(
        self,
        jobs: JobStore | None = None,
        client: AudioClient | None = None,
        policy: ReleasePolicy | None = None,
        events: PipelineEvents | None = None,
    ):
        self.jobs = jobs or job_store
        self.client = client or audio_client
        self.policy = policy or release_policy_from()
        self.events = events or pipeline_events

    async def _build_request(self, db: AsyncSession, job: Any) -> AudioRequest:
        lyrics = job.generated_lyrics or {}
        verses = lyrics.get("verses") or []
        if not verses:
            raise UpstreamGenerationError("audio", f"Job {job.id} has no lyrics to render")

        voice = VoicePreference.NO_PREFERENCE.value
        approval = await lyrics_approval_ops.get_latest_for_job(db, job.id)
        if approval is not None and approval.status == ApprovalStatus.APPROVED.value:
            voice = approval.voice

        style = lyrics.get("style")
        if not style:
            quiz = await order_ops.get_quiz(db, job.quiz_id)
            style = quiz.style if quiz else None

        return AudioRequest(
            title=lyrics.get("title") or "Personalized song",
            prompt=verses_to_text(verses),
            style=style,
            voice=voice,
        )

    async def _abandon_claim(self, db: AsyncSession, job_id: uuid_pkg.UUID, error: str) -> None:
        await db.rollback()
        await self.jobs.release_audio_claim(db, job_id)
        await self.jobs.record_error(db, job_id, error)
        await db.commit()

    async def trigger(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> str | None:
        """Submit the job's approved lyrics once.

        Returns the provider task reference, or None if another caller holds
        the submission. Raises UpstreamGenerationError if the submission
        fails for any reason; the claim is released so an operator retry
        can submit again.
        """
        job = await self.jobs.get(db, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")

        if job.audio_task_reference:
            logger.info(f"[audio] Job {job_id} already submitted as {job.audio_task_reference}")
            return job.audio_task_reference

        if not await self.jobs.claim_audio_submission(db, job_id):
            logger.info(f"[audio] Job {job_id} submission already claimed, skipping")
            await db.rollback()
            return None
        await db.commit()

        try:
            request = await self._build_request(db, job)
            task_reference = await self.client.submit(request)
            await self.jobs.set_task_reference(db, job_id, task_reference)
            await db.commit()
        except UpstreamGenerationError as e:
            await self._abandon_claim(db, job_id, e.message)
            raise
        except Exception as e:
            logger.exception(f"[audio] Submission for job {job_id} failed unexpectedly: {e}")
            await self._abandon_claim(db, job_id, f"Audio submission failed: {e}")
            raise UpstreamGenerationError("audio", f"Submission for job {job_id} failed: {e}") from e

        self.events.transition(
            "audio.submitted", "job", job_id, JobStatus.PROCESSING.value,
            JobStatus.PROCESSING.value, task_reference=task_reference,
        )
        return task_reference

    async def complete_task(
        self,
        db: AsyncSession,
        task_reference: str,
        result: AudioTaskResult,
    ) -> CompletionOutcome:
        """Apply a provider result to the job that owns `task_reference`."""
        job = await self.jobs.get_by_task_reference(db, task_reference)
        if job is None:
            logger.warning(f"[audio] No job for task {task_reference}")
            return CompletionOutcome(status="unknown_task", task_reference=task_reference)

        if not (result.is_complete or result.is_failed):
            return CompletionOutcome(status="pending", task_reference=task_reference, job_id=job.id)

        if result.is_failed:
            won = await self.jobs.mark_failed(
                db, job.id, f"Audio generation failed: {result.error}",
                expected=JobStatus.PROCESSING.value,
            )
            await db.commit()
            return CompletionOutcome(
                status="failed" if won else "ignored",
                task_reference=task_reference,
                job_id=job.id,
                detail=result.error,
            )

        if not await self.jobs.mark_completed(db, job.id):
            await db.rollback()
            logger.info(f"[audio] Task {task_reference} already applied to job {job.id}")
            return CompletionOutcome(status="ignored", task_reference=task_reference, job_id=job.id)

        now = utcnow()
        release_at = now + self.policy.release_delay
        status = (
            SongStatus.APPROVED.value if self.policy.auto_approve_songs else SongStatus.READY.value
        )
        lyrics = job.generated_lyrics or {}
        variant = await song_ops.next_variant_number(db, job.order_id)

        songs: list[Song] = []
        for track in result.tracks:
            song = Song(
                order_id=job.order_id,
                job_id=job.id,
                title=lyrics.get("title") or track.title or f"Personalized song {variant}",
                variant_number=variant,
                status=status,
                audio_url=track.audio_url,
                cover_url=track.cover_url,
                audio_task_reference=task_reference,
                lyrics=lyrics or None,
                release_at=release_at,
            )
            db.add(song)
            songs.append(song)
            variant += 1

        await db.flush()
        await db.commit()

        for song in songs:
            self.events.transition(
                "song.created", "song", song.id, None, status,
                order_id=str(job.order_id), release_at=release_at.isoformat(),
            )
        logger.info(
            f"[audio] Job {job.id} completed with {len(songs)} song(s), "
            f"{result.skipped_tracks} skipped"
        )
        return CompletionOutcome(
            status="completed",
            task_reference=task_reference,
            job_id=job.id,
            song_ids=[s.id for s in songs],
        )


class TaskCompletionObserver:
    """Feeds provider results into the trigger's completion path."""

    def __init__(self, trigger: AudioGenerationTrigger):
        self.trigger = trigger

    async def deliver(self, db: AsyncSession, result: AudioTaskResult) -> CompletionOutcome:
        if not result.task_id:
            return CompletionOutcome(status="invalid", detail="Payload has no task id")
        return await self.trigger.complete_task(db, result.task_id, result)


class AudioCallbackHandler(TaskCompletionObserver):
    """Push observer for provider webhooks."""

    async def handle(self, db: AsyncSession, payload: dict[str, Any]) -> CompletionOutcome:
        result = parse_task_payload(payload)
        logger.info(f"[audio] Callback received: {result.summary()}")
        return await self.deliver(db, result)


class AudioTaskPoller(TaskCompletionObserver):
    """Pull observer for tasks whose callback never arrived."""

    def __init__(
        self,
        trigger: AudioGenerationTrigger,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ):
        super().__init__(trigger)
        self.session_maker = session_maker or async_session_maker

    async def poll(self, limit: int = 50) -> PollReport:
        report = PollReport()

        async with self.session_maker() as db:
            jobs = await self.trigger.jobs.list_awaiting_audio(db, limit=limit)
            references = [(job.id, job.audio_task_reference) for job in jobs]

        for job_id, task_reference in references:
            report.jobs_checked += 1
            try:
                result = await self.trigger.client.query(task_reference)
                async with self.session_maker() as db:
                    outcome = await self.deliver(db, result)
            except Exception as e:
                logger.error(f"[audio] Poll of job {job_id} failed: {e}")
                report.errors.append(f"{job_id}: {e}")
                continue

            if outcome.status == "completed":
                report.completed += 1
                report.songs_created += len(outcome.song_ids)
            elif outcome.status == "failed":
                report.failed += 1
            elif outcome.status == "pending":
                report.still_processing += 1

        return report
