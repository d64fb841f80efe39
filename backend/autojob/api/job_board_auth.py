"""
Job board account connection (OAuth 2.0 authorization-code flow).

1. GET  /auth-url   -> URL to send the user to, plus a CSRF state cookie
2. POST /connect    -> exchange the returned code (or GET /callback)
3. GET  /status     -> whether a credential is stored and when it expires
4. POST /disconnect -> forget the credential
"""
import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response

from autojob.api.auth import get_current_user
from autojob.api.automation import get_automation_service
from autojob.database_types import utcnow
from autojob.exceptions import AuthError
from autojob.models.user import User
from autojob.schemas.automation import (
    AuthUrlResponse,
    ConnectAccountRequest,
    ConnectionStatusResponse,
)
from autojob.services.automation import AutomationService

logger = logging.getLogger(__name__)
router = APIRouter()

STATE_COOKIE = "job_board_oauth_state"


async def _connect(
    service: AutomationService,
    user: User,
    code: str,
    state: Optional[str],
    expected_state: Optional[str],
    response: Response,
) -> ConnectionStatusResponse:
    if expected_state and state != expected_state:
        logger.warning(f"OAuth state mismatch for user {user.id}")
        raise HTTPException(status_code=400, detail="Invalid OAuth state.")

    try:
        credential = await service.connect_account(user.id, code)
    except AuthError as e:
        raise HTTPException(status_code=400, detail=f"Failed to connect job board account: {e}")

    response.delete_cookie(STATE_COOKIE)
    minutes_left = int((credential.expires_at - utcnow()).total_seconds() // 60)
    return ConnectionStatusResponse(
        connected=True,
        expires_at=credential.expires_at,
        minutes_left=max(minutes_left, 0),
        scope=credential.scope,
    )


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    response: Response,
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """Authorization URL for the job board consent screen."""
    url, state = service.token_manager.authorization_url()
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        httponly=True,
        samesite="lax",
        max_age=600,
    )
    return AuthUrlResponse(auth_url=url, state=state)


@router.post("/connect", response_model=ConnectionStatusResponse)
async def connect_account(
    request: ConnectAccountRequest,
    response: Response,
    job_board_oauth_state: Optional[str] = Cookie(None),
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """
    Exchange an authorization code for a credential.

    A job that was disconnected because its credential was lost resumes.
    """
    return await _connect(
        service, current_user, request.authorization_code, request.state, job_board_oauth_state, response
    )


@router.get("/callback", response_model=ConnectionStatusResponse)
async def oauth_callback(
    response: Response,
    code: str = Query(..., min_length=1),
    state: Optional[str] = Query(None),
    job_board_oauth_state: Optional[str] = Cookie(None),
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    """Redirect target registered with the job board."""
    return await _connect(service, current_user, code, state, job_board_oauth_state, response)


@router.get("/status", response_model=ConnectionStatusResponse)
async def connection_status(
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    credential = await service.token_manager.get_credential(current_user.id)
    if credential is None:
        return ConnectionStatusResponse(connected=False)

    minutes_left = int((credential.expires_at - utcnow()).total_seconds() // 60)
    return ConnectionStatusResponse(
        connected=True,
        expires_at=credential.expires_at,
        minutes_left=max(minutes_left, 0),
        scope=credential.scope,
    )


@router.post("/disconnect", response_model=ConnectionStatusResponse)
async def disconnect_account(
    current_user: User = Depends(get_current_user),
    service: AutomationService = Depends(get_automation_service),
):
    await service.disconnect_account(current_user.id)
    return ConnectionStatusResponse(connected=False)
