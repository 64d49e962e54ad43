"""Rate limiting for customer-triggered side effects.

Counts requests per (identifier, action) in one-minute buckets stored in the
`rate_limits` table, so every instance shares the same view. A request is
allowed while the buckets inside the rolling window add up to less than
the cap.

The limiter is an abuse deterrent, not a security boundary: if the check
itself fails (database down, timeout), the request is allowed.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.domain.base_operations import affected_rows
from app.models.base import utcnow
from app.models.rate_limit import RateLimitWindow
from app.services.fulfillment.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for rate limiting."""

    max_count: int  # Maximum requests allowed
    window_minutes: int  # Rolling window in minutes


# Presets per customer-facing action
RATE_LIMITS: dict[str, RateLimitConfig] = {
    "CHECKOUT": RateLimitConfig(max_count=5, window_minutes=60),
    "GENERATE_LYRICS": RateLimitConfig(max_count=10, window_minutes=60),
    "GENERATE_AUDIO": RateLimitConfig(max_count=10, window_minutes=60),
    "UPLOAD": RateLimitConfig(max_count=20, window_minutes=60),
    "EMAIL": RateLimitConfig(max_count=3, window_minutes=60),
    "ADMIN_ACTION": RateLimitConfig(max_count=50, window_minutes=60),
    "APPROVAL_ACTION": RateLimitConfig(max_count=10, window_minutes=60),
}


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


def bucket_for(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


class RateLimiter:
    """Database-backed rolling-window rate limiter."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_maker = session_maker or async_session_maker
        self.clock = clock

    async def _evaluate(
        self, identifier: str, action: str, max_count: int, window_minutes: int
    ) -> RateLimitDecision:
        now = self.clock()
        window = timedelta(minutes=window_minutes)
        window_start = now - window

        async with self.session_maker() as db:
            row = (
                await db.execute(
                    select(
                        func.coalesce(func.sum(RateLimitWindow.count), 0),
                        func.min(RateLimitWindow.bucket_start),
                    )
                    .where(RateLimitWindow.identifier == identifier)  # type: ignore[arg-type]
                    .where(RateLimitWindow.action == action)  # type: ignore[arg-type]
                    .where(RateLimitWindow.bucket_start > window_start)  # type: ignore[arg-type]
                )
            ).one()
            count, oldest = int(row[0]), row[1]

            if count >= max_count:
                retry_after = window_minutes * 60
                if oldest is not None:
                    retry_after = int((oldest + window - now).total_seconds()) + 1
                return RateLimitDecision(allowed=False, count=count, retry_after=max(retry_after, 1))

            statement = insert(RateLimitWindow).values(
                id=uuid_pkg.uuid4(),
                identifier=identifier,
                action=action,
                bucket_start=bucket_for(now),
                count=1,
            )
            statement = statement.on_conflict_do_update(
                constraint="uq_rate_limits_identifier_action_bucket",
                set_={"count": RateLimitWindow.count + 1},
            )
            await db.execute(statement)
            await db.commit()

        return RateLimitDecision(allowed=True, count=count + 1)

    async def evaluate(
        self, identifier: str, action: str, max_count: int, window_minutes: int
    ) -> RateLimitDecision:
        """Count this request and decide. Fails open on any error."""
        try:
            return await self._evaluate(identifier, action, max_count, window_minutes)
        except Exception as e:
            logger.warning(f"[rate-limit] Check for {action}/{identifier} failed, allowing: {e}")
            return RateLimitDecision(allowed=True, count=0)

    async def check(
        self, identifier: str, action: str, max_count: int, window_minutes: int
    ) -> bool:
        """True if the request is allowed."""
        decision = await self.evaluate(identifier, action, max_count, window_minutes)
        return decision.allowed

    async def enforce(self, identifier: str, action: str, config: RateLimitConfig) -> None:
        """Raise RateLimitExceeded when the request is over the limit."""
        decision = await self.evaluate(identifier, action, config.max_count, config.window_minutes)
        if not decision.allowed:
            logger.info(f"[rate-limit] {action} limited for {identifier} ({decision.count} in window)")
            raise RateLimitExceeded(identifier, action, decision.retry_after)

    async def cleanup(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Delete buckets older than the longest window in use."""
        cutoff = self.clock() - older_than
        async with self.session_maker() as db:
            result = await db.execute(
                delete(RateLimitWindow).where(
                    RateLimitWindow.bucket_start < cutoff  # type: ignore[arg-type]
                )
            )
            await db.commit()
        deleted = affected_rows(result)
        if deleted:
            logger.info(f"[rate-limit] Removed {deleted} expired bucket(s)")
        return deleted


# Singleton instance for application-wide use
rate_limiter = RateLimiter()
