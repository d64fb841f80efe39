"""
Request authentication.

Login and registration live in the surrounding application; it sets an
httpOnly ``auth_token`` cookie that, for now, carries the user id.
"""
import logging
from uuid import UUID

from fastapi import Cookie, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.database import get_db
from autojob.models.user import User

logger = logging.getLogger(__name__)


async def get_current_user(
    auth_token: str = Cookie(None),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Dependency to get current authenticated user from httpOnly cookie.

    Args:
        auth_token: Authentication cookie (httpOnly)
        db: Database session

    Returns:
        User: The authenticated user

    Raises:
        HTTPException 401: If cookie is missing, invalid or user not found
    """
    if not auth_token:
        raise HTTPException(status_code=401, detail="Not authenticated.")

    try:
        user_id = UUID(auth_token)
    except ValueError:
        logger.warning(f"Malformed auth token: {auth_token[:40]!r}")
        raise HTTPException(status_code=401, detail="Invalid token.")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="Invalid token. User not found.")

    return user
