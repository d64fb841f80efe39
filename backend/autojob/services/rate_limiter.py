"""
Per-user quotas for calls to the job board API.

RateLimiter: fixed one-hour window, N calls per user (the job board allows 500).
DailyCap: per-user counter for the current calendar day, expiring at midnight.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Optional
from uuid import UUID

from autojob.database_types import utcnow
from autojob.services.counters import CounterStore

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: timedelta = timedelta(0)


@dataclass(frozen=True)
class RateLimitUsage:
    used: int
    limit: int
    resets_in: timedelta

    @property
    def allowed(self) -> bool:
        return self.used < self.limit


class RateLimiter:
    """
    Fixed-window limiter over a CounterStore.

    Call ``allow`` immediately before every external call that counts against
    the quota. The counter is incremented first, so concurrent callers can
    never both take the last slot.
    """

    def __init__(self, store: CounterStore, limit: int, window: timedelta = WINDOW):
        self.store = store
        self.limit = limit
        self.window = window

    @staticmethod
    def key(user_id: UUID) -> str:
        return f"rate_limit:hh:user:{user_id}"

    async def allow(self, user_id: UUID) -> RateLimitDecision:
        count, ttl = await self.store.incr(self.key(user_id), self.window)
        if count > self.limit:
            logger.warning(
                f"Rate limit exceeded for user {user_id}: {count}/{self.limit}",
                extra={"user_id": str(user_id), "retry_after": int(ttl.total_seconds())},
            )
            return RateLimitDecision(allowed=False, retry_after=ttl)
        return RateLimitDecision(allowed=True)

    async def saturate(self, user_id: UUID, retry_after: timedelta) -> None:
        """Use up the user's window after the job board itself answered 429."""
        ttl = retry_after if retry_after > timedelta(0) else self.window
        await self.store.set(self.key(user_id), self.limit, ttl)
        logger.warning(
            f"Job board throttled user {user_id}, local quota exhausted for {int(ttl.total_seconds())}s",
            extra={"user_id": str(user_id), "retry_after": int(ttl.total_seconds())},
        )

    async def usage(self, user_id: UUID) -> RateLimitUsage:
        """Current window usage. Does not consume quota."""
        count, ttl = await self.store.get(self.key(user_id))
        return RateLimitUsage(used=min(count, self.limit), limit=self.limit, resets_in=ttl)


def time_until_midnight(now: datetime, tz: tzinfo) -> timedelta:
    local = now.astimezone(tz)
    midnight = datetime.combine(local.date() + timedelta(days=1), time(0, 0), tzinfo=tz)
    return midnight - local


class DailyCap:
    """
    Counts one kind of action per user per calendar day.

    ``check`` reads without consuming; ``record`` is called only once the
    action actually happened, so a failed search does not use up the day.
    """

    def __init__(
        self,
        store: CounterStore,
        name: str,
        limit: int,
        tz: tzinfo,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.name = name
        self.limit = limit
        self.tz = tz
        self._clock = clock or utcnow

    def _today(self) -> date:
        return self._clock().astimezone(self.tz).date()

    def key(self, user_id: UUID, day: Optional[date] = None) -> str:
        day = day or self._today()
        return f"user:{user_id}:{self.name}:{day.isoformat()}"

    async def used(self, user_id: UUID) -> int:
        count, _ = await self.store.get(self.key(user_id))
        return count

    async def check(self, user_id: UUID) -> bool:
        """True while the user still has capacity left today."""
        return await self.used(user_id) < self.limit

    async def record(self, user_id: UUID) -> int:
        ttl = time_until_midnight(self._clock(), self.tz)
        count, _ = await self.store.incr(self.key(user_id), ttl)
        return count
