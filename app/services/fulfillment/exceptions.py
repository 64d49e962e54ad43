"""Error taxonomy for the order-fulfillment pipeline.

Provider and network failures are translated into these kinds at the
component boundary. `public_message` is the only text that reaches
customers; `message` carries operator detail and is logged.
"""

import uuid as uuid_pkg


class PipelineError(Exception):
    """Base class for fulfillment errors."""

    public_message = "We're working on your song. Please try again later."

    def __init__(self, message: str, public_message: str | None = None):
        self.message = message
        if public_message is not None:
            self.public_message = public_message
        super().__init__(message)


class NotFound(PipelineError):
    """A job, approval, song or order does not exist."""

    public_message = "Not found."


class InvalidJobState(PipelineError):
    """A job is not in a state that allows the requested transition."""

    def __init__(self, job_id: uuid_pkg.UUID, status: str, expected: tuple[str, ...]):
        self.job_id = job_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Job {job_id} is {status}, expected one of {', '.join(expected)}"
        )


class UpstreamGenerationError(PipelineError):
    """Lyric or audio provider failed or returned unusable content.

    Recoverable: retried through regeneration or by an operator.
    """

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class InvalidToken(PipelineError):
    """No approval exists for the given token."""

    public_message = "This approval link is not valid."


class Expired(PipelineError):
    """The approval's expiry has passed."""

    public_message = "This approval link has expired."


class AlreadyProcessed(PipelineError):
    """The approval was already acted on (or superseded by a newer draft)."""

    public_message = "These lyrics were already processed."

    def __init__(self, message: str, status: str):
        self.status = status
        super().__init__(message)


class RegenerationCapExceeded(PipelineError):
    """Lyrics were rejected more times than the regeneration cap allows.

    Terminal: the job needs manual escalation.
    """

    public_message = "Our team will review your lyrics personally."

    def __init__(self, job_id: uuid_pkg.UUID, cap: int):
        self.job_id = job_id
        self.cap = cap
        super().__init__(
            f"Regeneration limit reached after {cap} attempts for job {job_id}; "
            f"manual intervention required"
        )


class DeliveryFailure(PipelineError):
    """The email provider did not accept a notification."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceeded(PipelineError):
    """Caller exceeded an advisory rate limit."""

    public_message = "Too many requests. Please try again later."

    def __init__(self, identifier: str, action: str, retry_after: int):
        self.identifier = identifier
        self.action = action
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {action} by {identifier}")


class OrderNotPaid(PipelineError):
    """Fulfillment was requested for an order that is not paid."""

    public_message = "This order has not been paid yet."

    def __init__(self, order_id: uuid_pkg.UUID, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} is {status}, expected paid")
