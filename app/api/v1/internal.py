"""Internal API endpoints — protected by shared secret, not user auth.

These endpoints are called by cron jobs / external schedulers and by the
checkout flow, not by customers. They validate a shared secret via the
X-Cron-Secret header.
"""

import logging
import uuid as uuid_pkg
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    DbSession,
    Workflow,
    get_audio_poller,
    get_notification_queue,
    get_release_scheduler,
    verify_cron_secret,
)
from app.services.fulfillment.audio_trigger import AudioTaskPoller
from app.services.fulfillment.notification_queue import NotificationQueue
from app.services.fulfillment.release_scheduler import ReleaseScheduler

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.post("/release-sweep")
async def trigger_release_sweep(
    db: DbSession,
    scheduler: ReleaseScheduler = Depends(get_release_scheduler),
) -> dict[str, Any]:
    """
    Release every approved song whose release time has passed.

    Protected by X-Cron-Secret header. Safe to call concurrently: each order
    is released by a conditional update, so overlapping sweeps release a
    song once.
    """
    report = await scheduler.sweep(db)
    return asdict(report)


@router.post("/notification-drain")
async def trigger_notification_drain(
    queue: NotificationQueue = Depends(get_notification_queue),
) -> dict[str, Any]:
    """Deliver due notifications and reschedule failures with backoff."""
    report = await queue.drain()
    return asdict(report)


@router.post("/audio-poll")
async def trigger_audio_poll(
    limit: int = Query(default=50, ge=1, le=200),
    poller: AudioTaskPoller = Depends(get_audio_poller),
) -> dict[str, Any]:
    """Query the audio provider for tasks whose callback never arrived."""
    report = await poller.poll(limit=limit)
    return asdict(report)


@router.post("/orders/{order_id}/jobs")
async def start_order_fulfillment(
    order_id: uuid_pkg.UUID,
    db: DbSession,
    workflow: Workflow,
    variant: int = Query(default=1, ge=1, le=10),
) -> dict[str, Any]:
    """
    Create the fulfillment job for a paid order and generate its first draft.

    Idempotent: calling it again for the same order returns the active job.
    """
    result = await workflow.intake(db, order_id, variant)
    logger.info(
        f"[internal] Order {order_id}: job {result.job_id} "
        f"({'created' if result.created else 'existing'})"
    )
    return asdict(result)
