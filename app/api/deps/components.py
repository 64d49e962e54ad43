"""Pipeline components as FastAPI dependencies (overridable in tests)."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.rate_limit import RateLimiter, rate_limiter
from app.services.fulfillment.admin import AdminOperations, admin_operations
from app.services.fulfillment.audio_trigger import AudioCallbackHandler, AudioTaskPoller
from app.services.fulfillment.lyrics_workflow import LyricsApprovalWorkflow, lyrics_workflow
from app.services.fulfillment.notification_queue import NotificationQueue, notification_queue
from app.services.fulfillment.release_scheduler import ReleaseScheduler, release_scheduler


def get_workflow() -> LyricsApprovalWorkflow:
    return lyrics_workflow


def get_release_scheduler() -> ReleaseScheduler:
    return release_scheduler


def get_notification_queue() -> NotificationQueue:
    return notification_queue


def get_admin_operations() -> AdminOperations:
    return admin_operations


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_callback_handler(
    workflow: LyricsApprovalWorkflow = Depends(get_workflow),
) -> AudioCallbackHandler:
    return AudioCallbackHandler(workflow.audio)


def get_audio_poller(
    workflow: LyricsApprovalWorkflow = Depends(get_workflow),
) -> AudioTaskPoller:
    return AudioTaskPoller(workflow.audio)


DbSession = Annotated[AsyncSession, Depends(get_db)]
Workflow = Annotated[LyricsApprovalWorkflow, Depends(get_workflow)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
