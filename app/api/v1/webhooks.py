"""Provider webhooks."""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends

from app.api.deps import DbSession, get_callback_handler
from app.core.exceptions import NotFoundError, ValidationError
from app.services.fulfillment.audio_trigger import AudioCallbackHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/audio")
async def audio_callback(
    db: DbSession,
    payload: dict[str, Any] = Body(...),
    handler: AudioCallbackHandler = Depends(get_callback_handler),
) -> dict[str, Any]:
    """
    Completion callback from the audio provider.

    Progress callbacks and repeats of an applied result return 200 with
    `status` set accordingly; the provider expects a fast 2xx.
    """
    outcome = await handler.handle(db, payload)
    if outcome.status == "invalid":
        raise ValidationError(outcome.detail or "Invalid callback payload")
    if outcome.status == "unknown_task":
        raise NotFoundError("Job for task")
    return asdict(outcome)
