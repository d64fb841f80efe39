"""
Expiring counters backing the rate limiter and the daily search cap, plus
the per-job run locks that keep two processes from running one job.

Two backends share one interface:

- RedisCounterStore: shared across workers, increments are atomic on the server
- InMemoryCounterStore: single process only (local runs and tests)
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from autojob.database_types import utcnow

logger = logging.getLogger(__name__)

# Delete the lock only while it still holds the caller's token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class CounterStore(ABC):
    """Integer counters that expire a fixed time after their first increment."""

    @abstractmethod
    async def incr(self, key: str, ttl: timedelta) -> tuple[int, timedelta]:
        """
        Atomically increment ``key``.

        The expiry is set only when the key is created, so the window is
        anchored at the first increment.

        Returns:
            (new value, time left until the key expires)
        """

    @abstractmethod
    async def get(self, key: str) -> tuple[int, timedelta]:
        """Current value and time to expiry without changing anything. Missing keys read as (0, 0s)."""

    @abstractmethod
    async def set(self, key: str, value: int, ttl: timedelta) -> None:
        """Overwrite ``key`` with ``value`` and restart its expiry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def acquire(self, key: str, ttl: timedelta) -> Optional[str]:
        """
        Take an exclusive lock that expires after ``ttl``.

        Returns:
            Token to pass to ``release``, or None when the lock is already held
        """

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Release the lock if ``token`` still owns it."""

    async def close(self) -> None:
        return None


class RedisCounterStore(CounterStore):
    """Counters in Redis: INCR + EXPIRE NX in one MULTI/EXEC."""

    def __init__(self, client: Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        logger.info(f"Counter store using Redis: {url}")
        return cls(client)

    async def incr(self, key: str, ttl: timedelta) -> tuple[int, timedelta]:
        seconds = max(1, int(ttl.total_seconds()))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, seconds, nx=True)
            pipe.ttl(key)
            count, _, remaining = await pipe.execute()
        return int(count), timedelta(seconds=max(int(remaining), 0))

    async def get(self, key: str) -> tuple[int, timedelta]:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.ttl(key)
            value, remaining = await pipe.execute()
        if value is None:
            return 0, timedelta(0)
        return int(value), timedelta(seconds=max(int(remaining), 0))

    async def set(self, key: str, value: int, ttl: timedelta) -> None:
        await self._redis.set(key, value, ex=max(1, int(ttl.total_seconds())))

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def acquire(self, key: str, ttl: timedelta) -> Optional[str]:
        token = uuid.uuid4().hex
        acquired = await self._redis.set(key, token, nx=True, px=max(1, int(ttl.total_seconds() * 1000)))
        return token if acquired else None

    async def release(self, key: str, token: str) -> None:
        await self._redis.eval(RELEASE_SCRIPT, 1, key, token)

    async def close(self) -> None:
        await self._redis.close()
        logger.info("Disconnected from Redis")


class InMemoryCounterStore(CounterStore):
    """
    Process-local counters.

    Args:
        clock: Returns the current aware datetime; tests pass a fake one to
            move windows forward without sleeping.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow
        self._values: dict[str, tuple[int, datetime]] = {}
        self._locks: dict[str, tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: datetime) -> Optional[tuple[int, datetime]]:
        entry = self._values.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._values[key]
            return None
        return entry

    async def incr(self, key: str, ttl: timedelta) -> tuple[int, timedelta]:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = (0, now + ttl)
            count, expires_at = entry[0] + 1, entry[1]
            self._values[key] = (count, expires_at)
            return count, expires_at - now

    async def get(self, key: str) -> tuple[int, timedelta]:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return 0, timedelta(0)
            return entry[0], entry[1] - now

    async def set(self, key: str, value: int, ttl: timedelta) -> None:
        async with self._lock:
            self._values[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)

    async def acquire(self, key: str, ttl: timedelta) -> Optional[str]:
        async with self._lock:
            now = self._clock()
            if key in self._locks and self._locks[key][1] > now:
                return None
            token = uuid.uuid4().hex
            self._locks[key] = (token, now + ttl)
            return token

    async def release(self, key: str, token: str) -> None:
        async with self._lock:
            if key in self._locks and self._locks[key][0] == token:
                del self._locks[key]


def create_counter_store(redis_url: str) -> CounterStore:
    """Redis when a URL is configured, otherwise in-process counters."""
    if redis_url:
        return RedisCounterStore.from_url(redis_url)
    logger.warning("REDIS_URL not set, using in-process counters (single worker only)")
    return InMemoryCounterStore()
