"""Unit tests for the pipeline error -> HTTP status mapping."""

import uuid

import pytest

from app.main import status_for
from app.services.fulfillment.exceptions import (
    AlreadyProcessed,
    DeliveryFailure,
    Expired,
    InvalidJobState,
    InvalidToken,
    NotFound,
    PipelineError,
    RateLimitExceeded,
    RegenerationCapExceeded,
    UpstreamGenerationError,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (InvalidToken("bad token"), 404),
        (NotFound("job missing"), 404),
        (Expired("expired"), 410),
        (AlreadyProcessed("done", "approved"), 409),
        (InvalidJobState(uuid.uuid4(), "completed", ("failed",)), 409),
        (RegenerationCapExceeded(uuid.uuid4(), 3), 409),
        (RateLimitExceeded("ip:1", "APPROVAL_ACTION", 30), 429),
        (UpstreamGenerationError("audio", "HTTP 500"), 502),
        (DeliveryFailure("down"), 502),
        (PipelineError("unexpected"), 500),
    ],
)
def test_status_for(exc, expected):
    assert status_for(exc) == expected


def test_public_message_hides_operator_detail():
    exc = UpstreamGenerationError("lyrics", "Anthropic 529 overloaded")

    assert "529" in exc.message
    assert "529" not in exc.public_message
