"""Customer-facing lyrics approval endpoints.

The approval token in the URL is the only credential. Write endpoints are
rate limited per token and per client IP.
"""

import uuid as uuid_pkg
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from app.api.deps import DbSession, Limiter, Workflow, client_ip
from app.core.rate_limit import RATE_LIMITS
from app.models.lyrics_approval import LyricsApprovalRead

router = APIRouter(prefix="/approvals", tags=["approvals"])

APPROVAL_ACTION = "APPROVAL_ACTION"


class RejectRequest(BaseModel):
    """Schema for a lyrics rejection."""

    reason: str | None = Field(default=None, max_length=2000)


class ApproveResponse(BaseModel):
    approval_id: uuid_pkg.UUID
    status: str
    already_approved: bool


class RejectResponse(BaseModel):
    approval_id: uuid_pkg.UUID
    status: str
    regeneration_count: int
    new_approval_id: uuid_pkg.UUID | None = None
    message: str | None = None


async def _limit(limiter: Limiter, request: Request, token: str) -> None:
    config = RATE_LIMITS[APPROVAL_ACTION]
    await limiter.enforce(f"token:{token[:16]}", APPROVAL_ACTION, config)
    await limiter.enforce(f"ip:{client_ip(request)}", APPROVAL_ACTION, config)


@router.get("/{token}", response_model=LyricsApprovalRead)
async def get_approval(token: str, db: DbSession, workflow: Workflow) -> Any:
    """Lyrics and status for an approval link. Past-expiry drafts read as expired."""
    return await workflow.view(db, token)


@router.post("/{token}/approve", response_model=ApproveResponse)
async def approve_lyrics(
    token: str,
    request: Request,
    db: DbSession,
    workflow: Workflow,
    limiter: Limiter,
) -> Any:
    """Approve the lyrics and start audio generation."""
    await _limit(limiter, request, token)
    result = await workflow.approve(db, token)
    return ApproveResponse(
        approval_id=result.approval_id,
        status="approved",
        already_approved=result.already_approved,
    )


@router.post("/{token}/reject", response_model=RejectResponse)
async def reject_lyrics(
    token: str,
    data: RejectRequest,
    request: Request,
    db: DbSession,
    workflow: Workflow,
    limiter: Limiter,
) -> Any:
    """Reject the lyrics. A new draft is generated while regenerations remain."""
    await _limit(limiter, request, token)
    result = await workflow.reject(db, token, data.reason)
    return RejectResponse(
        approval_id=result.approval_id,
        status=result.status,
        regeneration_count=result.regeneration_count,
        new_approval_id=result.new_approval_id,
        message=result.error,
    )
