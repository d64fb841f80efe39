"""
OAuth 2.0 client for the job board's token endpoint.

Handles the authorization-code exchange and refresh-token exchange. Tokens
are stored by the TokenManager; this module only talks HTTP.
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

import aiohttp

from autojob.config import settings
from autojob.exceptions import AuthError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    token_type: str = "bearer"
    scope: Optional[str] = None

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        if not payload.get("access_token"):
            raise AuthError("Token endpoint returned no access_token")
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in") or 0),
            token_type=(payload.get("token_type") or "bearer").lower(),
            scope=payload.get("scope"),
        )


class OAuthClient:
    """Talks to the job board's OAuth endpoints with the app's client credentials."""

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        redirect_url: str = None,
        auth_url: str = None,
        token_url: str = None,
        scopes: Optional[list[str]] = None,
        timeout_s: float = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.job_board_client_id
        self.client_secret = client_secret if client_secret is not None else settings.job_board_client_secret
        self.redirect_url = redirect_url or settings.job_board_redirect_url
        self.auth_url = auth_url or settings.job_board_auth_url
        self.token_url = token_url or settings.job_board_token_url
        self.scopes = scopes if scopes is not None else settings.job_board_scopes
        self.timeout = aiohttp.ClientTimeout(total=timeout_s or settings.http_timeout_seconds)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def authorization_url(self, state: Optional[str] = None) -> tuple[str, str]:
        """
        Build the URL the user is redirected to for consent.

        Returns:
            (url, state) - state is generated when not given and must be
            checked on the callback
        """
        state = state or secrets.token_urlsafe(32)
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "state": state,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        return f"{self.auth_url}?{urlencode(params)}", state

    async def exchange_code(self, code: str) -> TokenResponse:
        return await self._token_request({
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_url,
        })

    async def refresh(self, refresh_token: str) -> TokenResponse:
        if not refresh_token:
            raise AuthError("No refresh token stored")
        return await self._token_request({
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
        })

    async def _token_request(self, form: dict) -> TokenResponse:
        grant = form["grant_type"]
        session = self._get_session()
        try:
            async with session.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            ) as resp:
                if resp.status != 200:
                    body = await resp.text(errors="ignore")
                    logger.error(f"Token request ({grant}) failed: status={resp.status} body={body[:200]!r}")
                    raise AuthError(f"Token endpoint rejected {grant} (HTTP {resp.status})")
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Token request ({grant}) error: {type(e).__name__}: {e}")
            raise AuthError(f"Token endpoint unreachable: {type(e).__name__}") from e

        return TokenResponse.from_payload(payload)
