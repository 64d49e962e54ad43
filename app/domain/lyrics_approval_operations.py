"""Domain operations for LyricsApproval model.

All status changes are conditional on the expected prior status so that
concurrent approve/reject calls on the same token cannot both win.
"""

import secrets
import uuid as uuid_pkg
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations, affected_rows
from app.models.lyrics_approval import ApprovalStatus, LyricsApproval


def new_approval_token() -> str:
    """Opaque, unguessable token handed to the customer."""
    return secrets.token_urlsafe(32)


class LyricsApprovalOperations(BaseOperations[LyricsApproval]):
    """Queries and conditional transitions for lyrics approvals."""

    def __init__(self) -> None:
        super().__init__(LyricsApproval)

    async def get_by_token(self, db: AsyncSession, token: str) -> LyricsApproval | None:
        statement = select(LyricsApproval).where(LyricsApproval.approval_token == token)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_latest_for_job(
        self, db: AsyncSession, job_id: uuid_pkg.UUID
    ) -> LyricsApproval | None:
        """Most recently created approval for a job."""
        statement = (
            select(LyricsApproval)
            .where(LyricsApproval.job_id == job_id)
            .order_by(LyricsApproval.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def list_for_job(self, db: AsyncSession, job_id: uuid_pkg.UUID) -> list[LyricsApproval]:
        statement = (
            select(LyricsApproval)
            .where(LyricsApproval.job_id == job_id)
            .order_by(LyricsApproval.created_at.asc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def supersede_pending(
        self, db: AsyncSession, job_id: uuid_pkg.UUID, now: datetime
    ) -> int:
        """Close every pending approval of a job before a new draft is created."""
        result = await db.execute(
            update(LyricsApproval)
            .where(LyricsApproval.job_id == job_id)  # type: ignore[arg-type]
            .where(LyricsApproval.status == ApprovalStatus.PENDING.value)  # type: ignore[arg-type]
            .values(status=ApprovalStatus.EXPIRED.value, updated_at=now)
        )
        return affected_rows(result)

    async def create_approval(
        self,
        db: AsyncSession,
        *,
        job_id: uuid_pkg.UUID,
        order_id: uuid_pkg.UUID,
        quiz_id: uuid_pkg.UUID,
        lyrics: dict[str, Any],
        voice: str,
        expires_at: datetime,
        regeneration_count: int,
        regeneration_feedback: str | None = None,
        status: str = ApprovalStatus.PENDING.value,
        approved_at: datetime | None = None,
    ) -> LyricsApproval:
        approval = LyricsApproval(
            job_id=job_id,
            order_id=order_id,
            quiz_id=quiz_id,
            lyrics=lyrics,
            approval_token=new_approval_token(),
            status=status,
            voice=voice,
            expires_at=expires_at,
            regeneration_count=regeneration_count,
            regeneration_feedback=regeneration_feedback,
            approved_at=approved_at,
        )
        db.add(approval)
        await db.flush()
        await db.refresh(approval)
        return approval

    async def mark_approved(
        self, db: AsyncSession, approval_id: uuid_pkg.UUID, now: datetime
    ) -> bool:
        """pending -> approved, only while unexpired."""
        result = await db.execute(
            update(LyricsApproval)
            .where(LyricsApproval.id == approval_id)  # type: ignore[arg-type]
            .where(LyricsApproval.status == ApprovalStatus.PENDING.value)  # type: ignore[arg-type]
            .where(LyricsApproval.expires_at > now)  # type: ignore[arg-type]
            .values(status=ApprovalStatus.APPROVED.value, approved_at=now, updated_at=now)
        )
        return affected_rows(result) > 0

    async def mark_rejected(
        self,
        db: AsyncSession,
        approval_id: uuid_pkg.UUID,
        reason: str,
        now: datetime,
        *,
        require_unexpired: bool = True,
    ) -> bool:
        """pending -> rejected. Operators may reject an expired draft."""
        statement = (
            update(LyricsApproval)
            .where(LyricsApproval.id == approval_id)  # type: ignore[arg-type]
            .where(LyricsApproval.status == ApprovalStatus.PENDING.value)  # type: ignore[arg-type]
        )
        if require_unexpired:
            statement = statement.where(LyricsApproval.expires_at > now)  # type: ignore[arg-type]
        result = await db.execute(
            statement.values(
                status=ApprovalStatus.REJECTED.value,
                rejection_reason=reason,
                regeneration_feedback=reason,
                rejected_at=now,
                updated_at=now,
            )
        )
        return affected_rows(result) > 0

    async def reopen(
        self,
        db: AsyncSession,
        approval_id: uuid_pkg.UUID,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """approved -> pending with a renewed expiry. approved_at is kept for history."""
        result = await db.execute(
            update(LyricsApproval)
            .where(LyricsApproval.id == approval_id)  # type: ignore[arg-type]
            .where(LyricsApproval.status == ApprovalStatus.APPROVED.value)  # type: ignore[arg-type]
            .values(status=ApprovalStatus.PENDING.value, expires_at=expires_at, updated_at=now)
        )
        return affected_rows(result) > 0


lyrics_approval_ops = LyricsApprovalOperations()
