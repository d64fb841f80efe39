"""
Token lifecycle for user-delegated job board credentials.

Every call the engine makes to the job board goes through
``TokenManager.get_valid_credential``. Credentials expiring within the buffer
are refreshed before use; concurrent callers for one user share a single
in-flight refresh.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.database_types import utcnow
from autojob.exceptions import AuthError, PersistenceError
from autojob.models.user_credential import UserCredential
from autojob.services.oauth import OAuthClient, TokenResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Detached snapshot of a stored credential."""
    user_id: UUID
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    token_type: str = "bearer"
    scope: Optional[str] = None

    def expires_within(self, buffer: timedelta, now: datetime) -> bool:
        return self.expires_at - now < buffer

    @classmethod
    def from_model(cls, row: UserCredential) -> "Credential":
        return cls(
            user_id=row.user_id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=row.expires_at,
            token_type=row.token_type,
            scope=row.scope,
        )


class TokenManager:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        oauth: OAuthClient,
        expiry_buffer: timedelta = timedelta(minutes=5),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.oauth = oauth
        self.expiry_buffer = expiry_buffer
        self._clock = clock or utcnow
        self._cache: dict[UUID, Credential] = {}
        self._inflight: dict[UUID, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def authorization_url(self, state: Optional[str] = None) -> tuple[str, str]:
        return self.oauth.authorization_url(state)

    async def get_valid_credential(self, user_id: UUID) -> Credential:
        """
        Return a credential that is good for at least the expiry buffer.

        Raises:
            AuthError: No credential stored, or the refresh failed (the
                stored credential is deleted in that case)
        """
        credential = self._cache.get(user_id)
        if credential is None:
            credential = await self._load(user_id)
            if credential is None:
                raise AuthError(f"No job board credential for user {user_id}")

        if not credential.expires_within(self.expiry_buffer, self._clock()):
            return credential

        async with self._lock:
            # Another caller may have finished a refresh while we were loading
            cached = self._cache.get(user_id)
            if cached is not None and not cached.expires_within(self.expiry_buffer, self._clock()):
                return cached

            task = self._inflight.get(user_id)
            if task is None:
                logger.info(f"Refreshing job board token for user {user_id}")
                task = asyncio.create_task(self._refresh(user_id, credential))
                self._inflight[user_id] = task
                task.add_done_callback(lambda t, uid=user_id: self._forget(uid, t))

        # Shield so a caller hitting its own deadline does not cancel the
        # refresh the other callers are waiting on
        return await asyncio.shield(task)

    def _forget(self, user_id: UUID, task: asyncio.Task) -> None:
        if self._inflight.get(user_id) is task:
            del self._inflight[user_id]

    async def _refresh(self, user_id: UUID, credential: Credential) -> Credential:
        try:
            token = await self.oauth.refresh(credential.refresh_token)
        except AuthError as e:
            logger.warning(
                f"Token refresh failed for user {user_id}, removing credential: {e}",
                extra={"user_id": str(user_id)},
            )
            await self._delete(user_id)
            raise

        refreshed = self._snapshot(user_id, token, fallback_refresh=credential.refresh_token)
        await self._store(refreshed)
        self._cache[user_id] = refreshed
        logger.info(f"Token refreshed for user {user_id}, expires at {refreshed.expires_at.isoformat()}")
        return refreshed

    async def exchange_authorization_code(self, user_id: UUID, code: str) -> Credential:
        """Initial OAuth exchange after the user granted access. Replaces any stored credential."""
        token = await self.oauth.exchange_code(code)
        credential = self._snapshot(user_id, token)
        await self._store(credential)
        self._cache[user_id] = credential
        logger.info(f"Job board account connected for user {user_id}")
        return credential

    async def get_credential(self, user_id: UUID) -> Optional[Credential]:
        """Stored credential as-is, without refreshing."""
        credential = self._cache.get(user_id)
        if credential is None:
            credential = await self._load(user_id)
        return credential

    async def has_credential(self, user_id: UUID) -> bool:
        return await self.get_credential(user_id) is not None

    async def disconnect(self, user_id: UUID) -> bool:
        """Delete the stored credential. Returns False when there was none."""
        deleted = await self._delete(user_id)
        logger.info(f"Job board account disconnected for user {user_id}")
        return deleted

    def _snapshot(self, user_id: UUID, token: TokenResponse, fallback_refresh: Optional[str] = None) -> Credential:
        return Credential(
            user_id=user_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token or fallback_refresh,
            expires_at=token.expires_at(self._clock()),
            token_type=token.token_type,
            scope=token.scope,
        )

    async def _load(self, user_id: UUID) -> Optional[Credential]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(UserCredential).where(UserCredential.user_id == user_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        # A refresh may have completed while this load was in flight
        return self._cache.setdefault(user_id, Credential.from_model(row))

    async def _store(self, credential: Credential) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(UserCredential).where(UserCredential.user_id == credential.user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = UserCredential(user_id=credential.user_id)
                    db.add(row)
                row.access_token = credential.access_token
                row.refresh_token = credential.refresh_token
                row.expires_at = credential.expires_at
                row.token_type = credential.token_type
                row.scope = credential.scope
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store credential for user {credential.user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Could not store credential: {e}") from e

    async def _delete(self, user_id: UUID) -> bool:
        self._cache.pop(user_id, None)
        async with self.session_factory() as db:
            result = await db.execute(
                delete(UserCredential).where(UserCredential.user_id == user_id)
            )
            await db.commit()
        return result.rowcount > 0
