"""Pipeline policies - retry, expiry and release rules for order fulfillment.

Every timing or cap that governs the pipeline lives here so components get
it through their constructors instead of reading module constants.
"""

from dataclasses import dataclass
from datetime import timedelta

from app.config.settings import Settings, settings


@dataclass(frozen=True)
class ApprovalPolicy:
    """Rules for the lyrics approval cycle."""

    approval_ttl: timedelta = timedelta(hours=72)
    regeneration_cap: int = 3
    # An audio claim this old without a task reference belongs to a dead submission
    stale_audio_claim: timedelta = timedelta(minutes=30)


@dataclass(frozen=True)
class ReleasePolicy:
    """Rules for scheduling finished songs."""

    release_delay: timedelta = timedelta(hours=24)
    auto_approve_songs: bool = True


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff rules for outbound notification delivery."""

    max_retries: int = 5
    base_delay: timedelta = timedelta(minutes=5)
    batch_size: int = 20
    concurrency: int = 10
    stale_after: timedelta = timedelta(minutes=15)

    def next_delay(self, retry_count: int) -> timedelta:
        """Delay before the next attempt once `retry_count` attempts have failed."""
        return self.base_delay * (2**retry_count)

    def is_exhausted(self, retry_count: int, max_retries: int | None = None) -> bool:
        """True once `retry_count` failed attempts reach the cap (an entry's own cap wins)."""
        cap = self.max_retries if max_retries is None else max_retries
        return retry_count >= cap


def approval_policy_from(config: Settings = settings) -> ApprovalPolicy:
    return ApprovalPolicy(
        approval_ttl=timedelta(hours=config.approval_ttl_hours),
        regeneration_cap=config.regeneration_cap,
        stale_audio_claim=timedelta(minutes=config.audio_claim_stale_minutes),
    )


def release_policy_from(config: Settings = settings) -> ReleasePolicy:
    return ReleasePolicy(
        release_delay=timedelta(hours=config.release_delay_hours),
        auto_approve_songs=config.auto_approve_songs,
    )


def retry_policy_from(config: Settings = settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=config.notification_max_retries,
        base_delay=timedelta(seconds=config.notification_base_delay_seconds),
        batch_size=config.notification_batch_size,
        concurrency=config.notification_concurrency,
        stale_after=timedelta(minutes=config.notification_stale_minutes),
    )
