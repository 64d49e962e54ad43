"""Admin API endpoints for operator tooling.

Protected by the X-Admin-Secret header. Every action is written to
admin_logs by the service it calls.
"""

import uuid as uuid_pkg
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.deps import DbSession, Workflow, get_admin_operations, verify_admin_secret
from app.domain import notification_queue_ops
from app.models.notification_queue import NotificationStatus
from app.services.fulfillment.admin import AdminOperations

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_secret)],
)


class AdminRejectRequest(BaseModel):
    """Schema for an operator rejection."""

    reason: str | None = Field(default=None, max_length=2000)
    regenerate: bool = True


class ApproveSongRequest(BaseModel):
    """Schema for scheduling a ready song."""

    release_at: datetime | None = None


class SongResponse(BaseModel):
    id: uuid_pkg.UUID
    order_id: uuid_pkg.UUID
    title: str
    variant_number: int
    status: str
    release_at: datetime | None
    released_at: datetime | None


class QueueEntryResponse(BaseModel):
    id: uuid_pkg.UUID
    recipient: str
    order_id: uuid_pkg.UUID
    status: str
    retry_count: int
    max_retries: int
    next_retry_at: datetime
    last_error: str | None


@router.post("/approvals/{approval_id}/reject")
async def admin_reject(
    approval_id: uuid_pkg.UUID,
    data: AdminRejectRequest,
    db: DbSession,
    workflow: Workflow,
) -> dict[str, Any]:
    """Reject lyrics on the customer's behalf, optionally regenerating."""
    result = await workflow.admin_reject(db, approval_id, data.reason, data.regenerate)
    return asdict(result)


@router.post("/approvals/{approval_id}/unapprove")
async def admin_unapprove(
    approval_id: uuid_pkg.UUID,
    db: DbSession,
    workflow: Workflow,
) -> dict[str, Any]:
    """Reopen approved lyrics and roll back audio, songs and pending emails."""
    result = await workflow.admin_unapprove(db, approval_id)
    return asdict(result)


@router.post("/songs/{song_id}/approve", response_model=SongResponse)
async def approve_song(
    song_id: uuid_pkg.UUID,
    data: ApproveSongRequest,
    db: DbSession,
    ops: AdminOperations = Depends(get_admin_operations),
) -> Any:
    """Schedule a ready song for release."""
    return await ops.approve_song(db, song_id, data.release_at)


@router.post("/songs/{song_id}/unapprove", response_model=SongResponse)
async def unapprove_song(
    song_id: uuid_pkg.UUID,
    db: DbSession,
    ops: AdminOperations = Depends(get_admin_operations),
) -> Any:
    """Move an approved or released song back to pending."""
    return await ops.unapprove_song(db, song_id)


@router.delete("/songs/{song_id}")
async def delete_song(
    song_id: uuid_pkg.UUID,
    db: DbSession,
    ops: AdminOperations = Depends(get_admin_operations),
) -> dict[str, Any]:
    """Delete a song and its stored audio and cover files."""
    return await ops.delete_song(db, song_id)


@router.post("/jobs/retry-failed")
async def retry_failed_jobs(
    db: DbSession,
    limit: int = Query(default=20, ge=1, le=100),
    ops: AdminOperations = Depends(get_admin_operations),
) -> dict[str, Any]:
    """Retry failed jobs: resubmit audio for approved lyrics, regenerate otherwise."""
    report = await ops.retry_failed_jobs(db, limit=limit)
    return asdict(report)


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: uuid_pkg.UUID,
    db: DbSession,
    workflow: Workflow,
) -> dict[str, Any]:
    """Retry one failed or stuck job."""
    outcome = await workflow.retry_job(db, job_id)
    return {"job_id": str(job_id), "outcome": outcome}


@router.get("/notifications", response_model=list[QueueEntryResponse])
async def list_notifications(
    db: DbSession,
    status: NotificationStatus = Query(default=NotificationStatus.FAILED),
    limit: int = Query(default=100, ge=1, le=500),
) -> Any:
    """Queue entries by status (failed by default) with their last error."""
    return await notification_queue_ops.list_by_status(db, status.value, limit=limit)
