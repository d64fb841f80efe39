"""
Tests for the credential lifecycle: expiry buffer, single-flight refresh,
removal on refresh failure and the initial code exchange.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.database import session_factory
from autojob.exceptions import AuthError
from autojob.models.user import User
from autojob.models.user_credential import UserCredential
from autojob.services.token_manager import TokenManager


async def _store_credential(db: AsyncSession, user: User, expires_at) -> None:
    db.add(UserCredential(
        user_id=user.id,
        access_token="access-old",
        refresh_token="refresh-old",
        expires_at=expires_at,
    ))
    await db.commit()


async def _stored(user: User):
    async with session_factory() as s:
        result = await s.execute(select(UserCredential).where(UserCredential.user_id == user.id))
        return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_valid_credential_is_returned_without_refresh(db, test_user, oauth, clock):
    await _store_credential(db, test_user, clock() + timedelta(hours=1))
    manager = TokenManager(session_factory, oauth, clock=clock)

    credential = await manager.get_valid_credential(test_user.id)

    assert credential.access_token == "access-old"
    assert oauth.refresh_calls == 0


@pytest.mark.asyncio
async def test_expiring_credential_refreshed_once_for_concurrent_callers(db, test_user, oauth, clock):
    """Four minutes left is inside the five-minute buffer; ten callers share one refresh."""
    await _store_credential(db, test_user, clock() + timedelta(minutes=4))
    oauth.refresh_delay = 0.05
    manager = TokenManager(session_factory, oauth, clock=clock)

    results = await asyncio.gather(*(manager.get_valid_credential(test_user.id) for _ in range(10)))

    assert oauth.refresh_calls == 1
    assert {c.access_token for c in results} == {"access-refreshed-1"}

    stored = await _stored(test_user)
    assert stored.access_token == "access-refreshed-1"
    # No new refresh token in the response: the old one is kept
    assert stored.refresh_token == "refresh-old"
    assert stored.expires_at == clock() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_refreshed_credential_is_cached(db, test_user, oauth, clock):
    await _store_credential(db, test_user, clock() + timedelta(minutes=4))
    manager = TokenManager(session_factory, oauth, clock=clock)

    await manager.get_valid_credential(test_user.id)
    await manager.get_valid_credential(test_user.id)

    assert oauth.refresh_calls == 1


@pytest.mark.asyncio
async def test_refresh_failure_deletes_credential(db, test_user, oauth, clock):
    await _store_credential(db, test_user, clock() - timedelta(minutes=1))
    oauth.fail_refresh = True
    manager = TokenManager(session_factory, oauth, clock=clock)

    with pytest.raises(AuthError):
        await manager.get_valid_credential(test_user.id)

    assert await _stored(test_user) is None
    assert not await manager.has_credential(test_user.id)


@pytest.mark.asyncio
async def test_missing_credential_raises(db, test_user, oauth, clock):
    manager = TokenManager(session_factory, oauth, clock=clock)

    with pytest.raises(AuthError):
        await manager.get_valid_credential(test_user.id)
    assert oauth.refresh_calls == 0


@pytest.mark.asyncio
async def test_exchange_code_upserts_credential(db, test_user, oauth, clock):
    await _store_credential(db, test_user, clock() - timedelta(days=1))
    manager = TokenManager(session_factory, oauth, clock=clock)

    credential = await manager.exchange_authorization_code(test_user.id, "abc")

    assert credential.access_token == "access-abc"
    assert credential.refresh_token == "refresh-abc"
    async with session_factory() as s:
        rows = (await s.execute(
            select(UserCredential).where(UserCredential.user_id == test_user.id)
        )).scalars().all()
    assert len(rows) == 1
    assert rows[0].access_token == "access-abc"


@pytest.mark.asyncio
async def test_disconnect_removes_credential_and_cache(db, test_user, oauth, clock):
    await _store_credential(db, test_user, clock() + timedelta(hours=1))
    manager = TokenManager(session_factory, oauth, clock=clock)
    await manager.get_valid_credential(test_user.id)

    assert await manager.disconnect(test_user.id) is True
    assert await manager.get_credential(test_user.id) is None
    assert await manager.disconnect(test_user.id) is False
