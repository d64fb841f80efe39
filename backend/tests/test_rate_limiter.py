"""
Tests for the per-user API rate limiter, the daily caps and the counter stores.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from autojob.services.counters import InMemoryCounterStore, RedisCounterStore
from autojob.services.rate_limiter import DailyCap, RateLimiter, time_until_midnight

from conftest import FakeClock


@pytest.mark.asyncio
async def test_quota_allows_500_then_denies():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(clock=clock), limit=500)
    user_id = uuid4()

    for _ in range(500):
        decision = await limiter.allow(user_id)
        assert decision.allowed

    clock.advance(minutes=20)
    denied = await limiter.allow(user_id)
    assert not denied.allowed
    assert timedelta(0) < denied.retry_after <= timedelta(hours=1)
    assert denied.retry_after == timedelta(minutes=40)


@pytest.mark.asyncio
async def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(clock=clock), limit=500)
    user_id = uuid4()

    for _ in range(501):
        await limiter.allow(user_id)

    clock.advance(hours=1, seconds=1)
    decision = await limiter.allow(user_id)
    assert decision.allowed
    usage = await limiter.usage(user_id)
    assert usage.used == 1


@pytest.mark.asyncio
async def test_concurrent_callers_never_exceed_quota():
    limiter = RateLimiter(InMemoryCounterStore(), limit=10)
    user_id = uuid4()

    decisions = await asyncio.gather(*(limiter.allow(user_id) for _ in range(25)))

    assert sum(1 for d in decisions if d.allowed) == 10


@pytest.mark.asyncio
async def test_users_have_separate_windows():
    limiter = RateLimiter(InMemoryCounterStore(), limit=1)
    first, second = uuid4(), uuid4()

    assert (await limiter.allow(first)).allowed
    assert not (await limiter.allow(first)).allowed
    assert (await limiter.allow(second)).allowed


@pytest.mark.asyncio
async def test_usage_does_not_consume_quota():
    limiter = RateLimiter(InMemoryCounterStore(), limit=2)
    user_id = uuid4()

    await limiter.allow(user_id)
    for _ in range(5):
        usage = await limiter.usage(user_id)
    assert usage.used == 1
    assert usage.allowed
    assert (await limiter.allow(user_id)).allowed


def test_time_until_midnight_in_local_zone():
    now = datetime(2026, 3, 10, 20, 30, tzinfo=timezone.utc)
    # 23:30 in Moscow (UTC+3)
    assert time_until_midnight(now, ZoneInfo("Europe/Moscow")) == timedelta(minutes=30)


@pytest.mark.asyncio
async def test_daily_cap_check_and_record():
    clock = FakeClock()
    cap = DailyCap(InMemoryCounterStore(clock=clock), "searches", 1, timezone.utc, clock=clock)
    user_id = uuid4()

    assert await cap.check(user_id)
    assert await cap.record(user_id) == 1
    assert not await cap.check(user_id)
    assert await cap.used(user_id) == 1


@pytest.mark.asyncio
async def test_daily_cap_resets_next_day():
    clock = FakeClock()
    cap = DailyCap(InMemoryCounterStore(clock=clock), "searches", 1, timezone.utc, clock=clock)
    user_id = uuid4()

    await cap.record(user_id)
    clock.advance(days=1)

    assert await cap.check(user_id)
    assert cap.key(user_id).endswith("2026-03-11")


@pytest.mark.asyncio
async def test_in_memory_missing_key_reads_zero():
    store = InMemoryCounterStore()
    assert await store.get("nope") == (0, timedelta(0))


@pytest.mark.asyncio
async def test_in_memory_delete():
    store = InMemoryCounterStore()
    await store.incr("k", timedelta(minutes=1))
    await store.delete("k")
    assert (await store.get("k"))[0] == 0


def _redis_with_pipeline(results):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=pipe)
    context.__aexit__ = AsyncMock(return_value=False)
    client = MagicMock()
    client.pipeline.return_value = context
    return client, pipe


@pytest.mark.asyncio
async def test_redis_incr_sets_expiry_only_on_creation():
    client, pipe = _redis_with_pipeline([1, True, 3600])
    store = RedisCounterStore(client)

    count, remaining = await store.incr("rate_limit:hh:user:1", timedelta(hours=1))

    assert count == 1
    assert remaining == timedelta(hours=1)
    client.pipeline.assert_called_once_with(transaction=True)
    pipe.incr.assert_called_once_with("rate_limit:hh:user:1")
    pipe.expire.assert_called_once_with("rate_limit:hh:user:1", 3600, nx=True)


@pytest.mark.asyncio
async def test_redis_get_missing_key():
    client, _ = _redis_with_pipeline([None, -2])
    store = RedisCounterStore(client)

    assert await store.get("missing") == (0, timedelta(0))


@pytest.mark.asyncio
async def test_redis_get_existing_key():
    client, _ = _redis_with_pipeline(["42", 120])
    store = RedisCounterStore(client)

    assert await store.get("k") == (42, timedelta(seconds=120))


@pytest.mark.asyncio
async def test_saturate_exhausts_window_for_retry_after():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(clock=clock), limit=500)
    user_id = uuid4()
    await limiter.allow(user_id)

    await limiter.saturate(user_id, timedelta(minutes=20))

    usage = await limiter.usage(user_id)
    assert usage.used == 500
    assert usage.resets_in == timedelta(minutes=20)
    denied = await limiter.allow(user_id)
    assert not denied.allowed
    assert denied.retry_after == timedelta(minutes=20)

    clock.advance(minutes=20, seconds=1)
    assert (await limiter.allow(user_id)).allowed


@pytest.mark.asyncio
async def test_saturate_without_retry_after_uses_full_window():
    limiter = RateLimiter(InMemoryCounterStore(clock=FakeClock()), limit=500)
    user_id = uuid4()

    await limiter.saturate(user_id, timedelta(0))

    assert (await limiter.usage(user_id)).resets_in == timedelta(hours=1)


@pytest.mark.asyncio
async def test_in_memory_lock_is_exclusive_until_released():
    store = InMemoryCounterStore(clock=FakeClock())

    token = await store.acquire("lock", timedelta(minutes=11))
    assert token is not None
    assert await store.acquire("lock", timedelta(minutes=11)) is None

    # A stale token does not release someone else's lock
    await store.release("lock", "not-the-owner")
    assert await store.acquire("lock", timedelta(minutes=11)) is None

    await store.release("lock", token)
    assert await store.acquire("lock", timedelta(minutes=11)) is not None


@pytest.mark.asyncio
async def test_in_memory_lock_expires():
    clock = FakeClock()
    store = InMemoryCounterStore(clock=clock)
    assert await store.acquire("lock", timedelta(minutes=11)) is not None

    clock.advance(minutes=11)

    assert await store.acquire("lock", timedelta(minutes=11)) is not None


@pytest.mark.asyncio
async def test_redis_lock_uses_set_nx_with_expiry():
    client = MagicMock()
    client.set = AsyncMock(side_effect=[True, None])
    client.eval = AsyncMock(return_value=1)
    store = RedisCounterStore(client)

    token = await store.acquire("automation:run_lock:job:1", timedelta(minutes=11))
    assert token is not None
    assert await store.acquire("automation:run_lock:job:1", timedelta(minutes=11)) is None

    args, kwargs = client.set.call_args_list[0]
    assert args == ("automation:run_lock:job:1", token)
    assert kwargs == {"nx": True, "px": 660000}

    await store.release("automation:run_lock:job:1", token)
    script, numkeys, key, value = client.eval.await_args.args
    assert numkeys == 1
    assert key == "automation:run_lock:job:1"
    assert value == token


@pytest.mark.asyncio
async def test_redis_set_overwrites_with_expiry():
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    store = RedisCounterStore(client)

    await store.set("rate_limit:hh:user:1", 500, timedelta(minutes=20))

    client.set.assert_awaited_once_with("rate_limit:hh:user:1", 500, ex=1200)
