"""
Lyrics approval workflow.

A job's lyrics go through approval cycles. Each cycle is one
LyricsApproval row with an opaque token the customer uses to approve or
reject the draft:

    generate -> approval(pending) -> approve -> audio submission
                                  -> reject  -> generate (regeneration_count + 1)
                                             -> job failed once the cap is passed

Only the most recent approval of a job is actionable. Creating a draft
closes any older pending one in the same transaction, and the partial
unique index on (job_id) WHERE status = 'pending' backs that up.

Expiry is checked when the customer acts: a pending approval past
`expires_at` is refused with `Expired` and reads as expired, but its
stored status is left alone.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import ApprovalPolicy, approval_policy_from
from app.domain import admin_log_ops, lyrics_approval_ops, notification_queue_ops, order_ops, song_ops
from app.domain.lyrics_approval_operations import LyricsApprovalOperations
from app.models.base import utcnow
from app.models.job import ACTIVE_JOB_STATUSES, Job, JobStatus
from app.models.lyrics_approval import (
    ApprovalStatus,
    LyricsApproval,
    LyricsApprovalRead,
    VoicePreference,
)
from app.models.order import OrderStatus, Quiz
from app.services.fulfillment.audio_trigger import AudioGenerationTrigger
from app.services.fulfillment.events import PipelineEvents, pipeline_events
from app.services.fulfillment.exceptions import (
    AlreadyProcessed,
    Expired,
    InvalidJobState,
    InvalidToken,
    NotFound,
    OrderNotPaid,
    RegenerationCapExceeded,
    UpstreamGenerationError,
)
from app.services.fulfillment.job_store import JobStore, job_store
from app.services.lyrics import LyricsBrief, LyricsWriter, lyrics_writer
from app.services.lyrics.parsing import parse_sections

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Customer requested changes"

MALE_VOICES = {"m", "male", "masculino", "masculina", "homem"}
FEMALE_VOICES = {"f", "female", "feminino", "feminina", "mulher"}


def voice_from_quiz(quiz: Quiz) -> str:
    """Map the quiz's free-text vocal preference to M / F / S."""
    value = (quiz.vocal_gender or "").strip().lower()
    if value in MALE_VOICES:
        return VoicePreference.MALE.value
    if value in FEMALE_VOICES:
        return VoicePreference.FEMALE.value
    return VoicePreference.NO_PREFERENCE.value


def is_expired(approval: LyricsApproval, now: datetime) -> bool:
    return approval.expires_at <= now


def effective_status(approval: LyricsApproval, now: datetime) -> str:
    """Status as the customer sees it."""
    if approval.status == ApprovalStatus.PENDING.value and is_expired(approval, now):
        return ApprovalStatus.EXPIRED.value
    return approval.status


@dataclass
class IntakeResult:
    job_id: uuid_pkg.UUID
    created: bool
    approval_id: uuid_pkg.UUID | None = None
    error: str | None = None


@dataclass
class ApprovalResult:
    approval_id: uuid_pkg.UUID
    job_id: uuid_pkg.UUID
    already_approved: bool = False
    audio_submitted: bool = False
    task_reference: str | None = None


@dataclass
class RejectionResult:
    approval_id: uuid_pkg.UUID
    job_id: uuid_pkg.UUID
    status: str  # rejected | regenerated | escalated | regeneration_failed
    regeneration_count: int
    new_approval_id: uuid_pkg.UUID | None = None
    error: str | None = None


@dataclass
class UnapproveResult:
    approval_id: uuid_pkg.UUID
    job_id: uuid_pkg.UUID
    expires_at: datetime
    songs_deleted: int = 0
    notifications_dropped: int = 0


class LyricsApprovalWorkflow:
    """Generates drafts and applies customer and operator decisions."""

    def __init__(
        self,
        jobs: JobStore | None = None,
        approvals: LyricsApprovalOperations | None = None,
        writer: LyricsWriter | None = None,
        audio: AudioGenerationTrigger | None = None,
        policy: ApprovalPolicy | None = None,
        events: PipelineEvents | None = None,
    ):
        self.jobs = jobs or job_store
        self.approvals = approvals or lyrics_approval_ops
        self.writer = writer or lyrics_writer
        self.audio = audio or AudioGenerationTrigger(jobs=self.jobs)
        self.policy = policy or approval_policy_from()
        self.events = events or pipeline_events

    # ------------------------------------------------------------------
    # Intake and generation
    # ------------------------------------------------------------------

    async def intake(
        self, db: AsyncSession, order_id: uuid_pkg.UUID, variant: int = 1
    ) -> IntakeResult:
        """Create the job for a paid order and generate its first draft."""
        found = await order_ops.get_with_quiz(db, order_id)
        if found is None:
            raise NotFound(f"Order {order_id} not found")
        order, quiz = found
        if order.status != OrderStatus.PAID.value:
            raise OrderNotPaid(order_id, order.status)

        job, created = await self.jobs.create_for_order(db, order.id, quiz.id, variant)
        job_id = job.id
        await db.commit()

        latest = await self.approvals.get_latest_for_job(db, job_id)
        if latest is not None:
            return IntakeResult(job_id=job_id, created=created, approval_id=latest.id)

        try:
            approval_id = await self.generate(db, job_id)
        except UpstreamGenerationError as e:
            return IntakeResult(job_id=job_id, created=created, error=e.public_message)
        return IntakeResult(job_id=job_id, created=created, approval_id=approval_id)

    def _brief(self, quiz: Quiz, feedback: str | None, regeneration_count: int) -> LyricsBrief:
        return LyricsBrief(
            about_who=quiz.about_who,
            relationship=quiz.relationship,
            occasion=quiz.occasion,
            style=quiz.style,
            language=quiz.language,
            qualities=quiz.qualities,
            memories=quiz.memories,
            message=quiz.message,
            previous_feedback=feedback,
            regeneration_count=regeneration_count,
        )

    def _client_approved_lyrics(self, quiz: Quiz) -> dict[str, Any] | None:
        """Lyrics the customer already approved on the quiz page, if any."""
        answers = quiz.answers or {}
        text = answers.get("approved_lyrics")
        if not isinstance(text, str) or not text.strip():
            return None
        verses = parse_sections(text)
        if not verses:
            return None
        title = answers.get("approved_lyrics_title")
        if not isinstance(title, str) or not title.strip():
            title = f"A song for {quiz.about_who}"
        return {
            "title": title.strip(),
            "verses": verses,
            "style": quiz.style,
            "language": quiz.language,
            "source": "customer",
        }

    async def generate(
        self,
        db: AsyncSession,
        job_id: uuid_pkg.UUID,
        feedback: str | None = None,
        regeneration_count: int = 0,
    ) -> uuid_pkg.UUID:
        """Write a new draft for the job and open an approval cycle for it.

        Returns the new approval id. A provider failure leaves the job
        processing with `error` set and no approval created, so calling
        generate again is safe.
        """
        job = await self.jobs.get(db, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        if job.status not in ACTIVE_JOB_STATUSES:
            raise InvalidJobState(job_id, job.status, ACTIVE_JOB_STATUSES)
        if regeneration_count > self.policy.regeneration_cap:
            raise RegenerationCapExceeded(job_id, self.policy.regeneration_cap)

        quiz = await order_ops.get_quiz(db, job.quiz_id)
        if quiz is None:
            raise NotFound(f"Quiz {job.quiz_id} for job {job_id} not found")

        if not await self.jobs.start_processing(db, job_id):
            await db.refresh(job)
            raise InvalidJobState(job_id, job.status, ACTIVE_JOB_STATUSES)
        await db.commit()

        voice = voice_from_quiz(quiz)

        if feedback is None and regeneration_count == 0:
            client_lyrics = self._client_approved_lyrics(quiz)
            if client_lyrics is not None:
                return await self._open_preapproved(db, job, client_lyrics, voice)

        try:
            generated = await self.writer.write(self._brief(quiz, feedback, regeneration_count))
        except UpstreamGenerationError as e:
            await self.jobs.record_error(db, job_id, e.message)
            await db.commit()
            self.events.transition(
                "lyrics.generation_failed", "job", job_id,
                JobStatus.PROCESSING.value, JobStatus.PROCESSING.value, error=e.message,
            )
            raise

        lyrics = generated.to_dict()
        now = utcnow()
        if not await self.jobs.store_lyrics(db, job_id, lyrics):
            await db.rollback()
            await db.refresh(job)
            raise InvalidJobState(job_id, job.status, (JobStatus.PROCESSING.value,))

        await self.approvals.supersede_pending(db, job_id, now)
        approval = await self.approvals.create_approval(
            db,
            job_id=job_id,
            order_id=job.order_id,
            quiz_id=job.quiz_id,
            lyrics=lyrics,
            voice=voice,
            expires_at=now + self.policy.approval_ttl,
            regeneration_count=regeneration_count,
            regeneration_feedback=feedback,
        )
        approval_id = approval.id
        await db.commit()

        self.events.transition(
            "approval.created", "lyrics_approval", approval_id, None,
            ApprovalStatus.PENDING.value, job_id=str(job_id),
            regeneration_count=regeneration_count,
        )
        return approval_id

    async def _open_preapproved(
        self, db: AsyncSession, job: Job, lyrics: dict[str, Any], voice: str
    ) -> uuid_pkg.UUID:
        """Store customer-approved lyrics and go straight to audio."""
        job_id = job.id
        now = utcnow()
        await self.jobs.store_lyrics(db, job_id, lyrics)
        await self.approvals.supersede_pending(db, job_id, now)
        approval = await self.approvals.create_approval(
            db,
            job_id=job_id,
            order_id=job.order_id,
            quiz_id=job.quiz_id,
            lyrics=lyrics,
            voice=voice,
            expires_at=now + self.policy.approval_ttl,
            regeneration_count=0,
            status=ApprovalStatus.APPROVED.value,
            approved_at=now,
        )
        approval_id = approval.id
        await admin_log_ops.record(
            db, "lyrics_preapproved", "lyrics_approvals", approval_id,
            {"job_id": str(job_id)}, actor="customer",
        )
        await db.commit()

        self.events.transition(
            "approval.approved", "lyrics_approval", approval_id, None,
            ApprovalStatus.APPROVED.value, job_id=str(job_id), source="quiz",
        )
        await self._submit_audio(db, job_id)
        return approval_id

    # ------------------------------------------------------------------
    # Customer actions
    # ------------------------------------------------------------------

    async def view(self, db: AsyncSession, token: str) -> LyricsApprovalRead:
        approval = await self.approvals.get_by_token(db, token)
        if approval is None:
            raise InvalidToken("No approval matches the token")
        lyrics = approval.lyrics or {}
        return LyricsApprovalRead(
            id=approval.id,
            status=effective_status(approval, utcnow()),
            title=lyrics.get("title", ""),
            verses=lyrics.get("verses", []),
            expires_at=approval.expires_at,
            regeneration_count=approval.regeneration_count,
        )

    async def _ensure_actionable(
        self, db: AsyncSession, approval: LyricsApproval, now: datetime
    ) -> None:
        """Raise unless the approval is the job's live pending draft."""
        if approval.status != ApprovalStatus.PENDING.value:
            raise AlreadyProcessed(
                f"Approval {approval.id} is {approval.status}", approval.status
            )
        latest = await self.approvals.get_latest_for_job(db, approval.job_id)
        if latest is not None and latest.id != approval.id:
            raise AlreadyProcessed(
                f"Approval {approval.id} was superseded by {latest.id}", "superseded"
            )
        if is_expired(approval, now):
            raise Expired(f"Approval {approval.id} expired at {approval.expires_at.isoformat()}")

    async def _explain_lost_race(
        self, db: AsyncSession, approval: LyricsApproval, now: datetime
    ) -> None:
        """A conditional update matched nothing: raise the reason."""
        await db.refresh(approval)
        if approval.status == ApprovalStatus.PENDING.value and is_expired(approval, now):
            raise Expired(f"Approval {approval.id} expired")
        raise AlreadyProcessed(f"Approval {approval.id} is {approval.status}", approval.status)

    async def approve(self, db: AsyncSession, token: str) -> ApprovalResult:
        """Approve a draft and hand its lyrics to audio generation.

        Re-approving an approved token succeeds without side effects.
        """
        approval = await self.approvals.get_by_token(db, token)
        if approval is None:
            raise InvalidToken("No approval matches the token")
        approval_id, job_id = approval.id, approval.job_id

        if approval.status == ApprovalStatus.APPROVED.value:
            return ApprovalResult(approval_id=approval_id, job_id=job_id, already_approved=True)

        now = utcnow()
        await self._ensure_actionable(db, approval, now)

        if not await self.approvals.mark_approved(db, approval_id, now):
            await db.refresh(approval)
            if approval.status == ApprovalStatus.APPROVED.value:
                return ApprovalResult(approval_id=approval_id, job_id=job_id, already_approved=True)
            await self._explain_lost_race(db, approval, now)

        await self.jobs.start_processing(db, job_id)
        await admin_log_ops.record(
            db, "lyrics_approved", "lyrics_approvals", approval_id,
            {"job_id": str(job_id)}, actor="customer",
        )
        await db.commit()
        self.events.transition(
            "approval.approved", "lyrics_approval", approval_id,
            ApprovalStatus.PENDING.value, ApprovalStatus.APPROVED.value, job_id=str(job_id),
        )

        task_reference = await self._submit_audio(db, job_id)
        return ApprovalResult(
            approval_id=approval_id,
            job_id=job_id,
            audio_submitted=task_reference is not None,
            task_reference=task_reference,
        )

    async def _submit_audio(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> str | None:
        """Trigger audio; a provider failure fails the job for operator retry."""
        try:
            return await self.audio.trigger(db, job_id)
        except UpstreamGenerationError as e:
            await self.jobs.mark_failed(db, job_id, f"Audio submission failed: {e.message}")
            await db.commit()
            return None

    async def reject(self, db: AsyncSession, token: str, reason: str | None) -> RejectionResult:
        """Reject a draft. Regenerates with the reason as feedback, up to the cap."""
        reason = (reason or "").strip() or DEFAULT_REJECTION_REASON

        approval = await self.approvals.get_by_token(db, token)
        if approval is None:
            raise InvalidToken("No approval matches the token")

        now = utcnow()
        await self._ensure_actionable(db, approval, now)
        return await self._reject(db, approval, reason, now, require_unexpired=True, actor="customer")

    async def _reject(
        self,
        db: AsyncSession,
        approval: LyricsApproval,
        reason: str,
        now: datetime,
        *,
        require_unexpired: bool,
        actor: str,
        regenerate: bool = True,
    ) -> RejectionResult:
        approval_id, job_id = approval.id, approval.job_id
        new_count = approval.regeneration_count + 1

        if not await self.approvals.mark_rejected(
            db, approval_id, reason, now, require_unexpired=require_unexpired
        ):
            await self._explain_lost_race(db, approval, now)

        await admin_log_ops.record(
            db, "lyrics_rejected", "lyrics_approvals", approval_id,
            {"job_id": str(job_id), "reason": reason, "regeneration_count": new_count},
            actor=actor,
        )
        await db.commit()
        self.events.transition(
            "approval.rejected", "lyrics_approval", approval_id,
            ApprovalStatus.PENDING.value, ApprovalStatus.REJECTED.value,
            job_id=str(job_id), regeneration_count=new_count,
        )

        if not regenerate:
            return RejectionResult(approval_id, job_id, "rejected", new_count)

        if new_count > self.policy.regeneration_cap:
            cap_error = await self._escalate(db, job_id, approval_id)
            return RejectionResult(
                approval_id, job_id, "escalated", new_count, error=cap_error.public_message
            )

        try:
            new_approval_id = await self.generate(
                db, job_id, feedback=reason, regeneration_count=new_count
            )
        except (UpstreamGenerationError, InvalidJobState) as e:
            logger.error(f"[lyrics] Regeneration for job {job_id} failed: {e.message}")
            return RejectionResult(
                approval_id, job_id, "regeneration_failed", new_count, error=e.public_message
            )

        return RejectionResult(
            approval_id, job_id, "regenerated", new_count, new_approval_id=new_approval_id
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def _escalate(
        self, db: AsyncSession, job_id: uuid_pkg.UUID, approval_id: uuid_pkg.UUID
    ) -> RegenerationCapExceeded:
        """Fail a job whose drafts used up the regeneration cap."""
        cap_error = RegenerationCapExceeded(job_id, self.policy.regeneration_cap)
        await self.jobs.mark_failed(db, job_id, cap_error.message)
        await admin_log_ops.record(
            db, "regeneration_cap_reached", "jobs", job_id,
            {"approval_id": str(approval_id), "cap": self.policy.regeneration_cap},
        )
        await db.commit()
        return cap_error

    async def admin_reject(
        self,
        db: AsyncSession,
        approval_id: uuid_pkg.UUID,
        reason: str | None,
        regenerate: bool = True,
    ) -> RejectionResult:
        """Reject on the customer's behalf. Works on expired drafts too."""
        approval = await self.approvals.get(db, approval_id)
        if approval is None:
            raise NotFound(f"Approval {approval_id} not found")

        now = utcnow()
        if approval.status != ApprovalStatus.PENDING.value:
            raise AlreadyProcessed(f"Approval {approval_id} is {approval.status}", approval.status)
        latest = await self.approvals.get_latest_for_job(db, approval.job_id)
        if latest is not None and latest.id != approval.id:
            raise AlreadyProcessed(f"Approval {approval_id} was superseded", "superseded")

        reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        return await self._reject(
            db, approval, reason, now,
            require_unexpired=False, actor="admin", regenerate=regenerate,
        )

    async def admin_unapprove(
        self, db: AsyncSession, approval_id: uuid_pkg.UUID
    ) -> UnapproveResult:
        """Reopen an approved draft and roll back everything built on it.

        The approval goes back to pending with a fresh expiry, the job back
        to pending without its audio task, unreleased songs of the order are
        deleted and undelivered notifications dropped.
        """
        approval = await self.approvals.get(db, approval_id)
        if approval is None:
            raise NotFound(f"Approval {approval_id} not found")
        if approval.status != ApprovalStatus.APPROVED.value:
            raise AlreadyProcessed(
                f"Approval {approval_id} is {approval.status}, not approved", approval.status
            )
        job_id, order_id = approval.job_id, approval.order_id

        now = utcnow()
        expires_at = now + self.policy.approval_ttl
        if not await self.approvals.reopen(db, approval_id, expires_at, now):
            await db.refresh(approval)
            raise AlreadyProcessed(f"Approval {approval_id} is {approval.status}", approval.status)

        await self.jobs.reset_to_pending(
            db,
            job_id,
            (JobStatus.PROCESSING.value, JobStatus.COMPLETED.value, JobStatus.FAILED.value),
            event="job.unapproved",
        )
        songs_deleted = await song_ops.delete_unreleased_for_order(db, order_id)
        dropped = await notification_queue_ops.drop_undelivered_for_order(db, order_id)
        await admin_log_ops.record(
            db, "lyrics_unapproved", "lyrics_approvals", approval_id,
            {
                "job_id": str(job_id),
                "songs_deleted": songs_deleted,
                "notifications_dropped": dropped,
            },
            actor="admin",
        )
        await db.commit()

        self.events.transition(
            "approval.unapproved", "lyrics_approval", approval_id,
            ApprovalStatus.APPROVED.value, ApprovalStatus.PENDING.value, job_id=str(job_id),
        )
        return UnapproveResult(
            approval_id=approval_id,
            job_id=job_id,
            expires_at=expires_at,
            songs_deleted=songs_deleted,
            notifications_dropped=dropped,
        )

    async def retry_job(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> str:
        """Operator retry of one stuck or failed job.

        A failed job with approved lyrics is resubmitted to audio, as is a
        processing one whose submission died before recording a task. A job
        left without a live draft gets a new one that counts as a
        regeneration, and is escalated instead once that passes the cap.
        Returns what was done.
        """
        job = await self.jobs.get(db, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        if job.status == JobStatus.COMPLETED.value:
            raise InvalidJobState(job_id, job.status, (JobStatus.FAILED.value,))

        latest = await self.approvals.get_latest_for_job(db, job_id)
        was_failed = job.status == JobStatus.FAILED.value

        if was_failed:
            if (
                latest is not None
                and latest.status == ApprovalStatus.APPROVED.value
                and job.generated_lyrics
            ):
                if not await self.jobs.transition(
                    db, job_id, JobStatus.FAILED.value, JobStatus.PROCESSING,
                    event="job.retried", error=None,
                    audio_task_reference=None, audio_requested_at=None,
                ):
                    raise InvalidJobState(job_id, "unknown", (JobStatus.FAILED.value,))
                await db.commit()
                task_reference = await self._submit_audio(db, job_id)
                return "audio_submitted" if task_reference else "audio_failed"

            if not await self.jobs.reset_to_pending(
                db, job_id, JobStatus.FAILED.value, event="job.retried"
            ):
                raise InvalidJobState(job_id, "unknown", (JobStatus.FAILED.value,))
            await db.commit()

        elif latest is not None and latest.status == ApprovalStatus.PENDING.value:
            return "nothing_to_do"

        elif latest is not None and latest.status == ApprovalStatus.APPROVED.value:
            return await self._resubmit_stale_audio(db, job)

        feedback = None
        count = 0
        if latest is not None:
            count = latest.regeneration_count
            if latest.status == ApprovalStatus.REJECTED.value:
                feedback = latest.rejection_reason
                count += 1
            if count > self.policy.regeneration_cap:
                if not was_failed:
                    await self._escalate(db, job_id, latest.id)
                    return "escalated"
                # An operator retry of an escalated job grants one more draft at the cap
                count = self.policy.regeneration_cap

        await self.generate(db, job_id, feedback=feedback, regeneration_count=count)
        return "regenerated"

    async def _resubmit_stale_audio(self, db: AsyncSession, job: Job) -> str:
        """Resubmit approved lyrics whose audio submission died without a task reference."""
        job_id = job.id
        if job.audio_task_reference or not job.generated_lyrics:
            return "nothing_to_do"
        claimed_before = utcnow() - self.policy.stale_audio_claim
        if not await self.jobs.release_stale_audio_claim(db, job_id, claimed_before):
            await db.rollback()
            return "nothing_to_do"
        await db.commit()
        logger.warning(f"[lyrics] Job {job_id} had no audio task, resubmitting")
        task_reference = await self._submit_audio(db, job_id)
        return "audio_submitted" if task_reference else "audio_failed"


lyrics_workflow = LyricsApprovalWorkflow()
