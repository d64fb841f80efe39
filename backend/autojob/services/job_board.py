"""
Job board API client (hh.ru-compatible).

All calls use the user's own OAuth credential. Quota accounting is the
caller's job: call RateLimiter.allow before search and apply.
"""
import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Optional

import aiohttp

from autojob.config import settings
from autojob.exceptions import (
    ApplyRateLimitError,
    AuthError,
    DuplicateApplicationError,
    JobBoardError,
    RateLimitExceededError,
)
from autojob.schemas.automation import SearchSettings
from autojob.schemas.job_board import ResumeProfile, Vacancy
from autojob.services.token_manager import Credential

logger = logging.getLogger(__name__)

EXPERIENCE_VALUES = {"noExperience", "between1And3", "between3And6", "moreThan6"}
EMPLOYMENT_VALUES = {"full", "part", "project", "volunteer", "probation"}
SCHEDULE_VALUES = {"fullDay", "shift", "flexible", "remote", "flyInFlyOut"}

DUPLICATE_ERROR_VALUES = {"already_applied"}
LIMIT_ERROR_VALUES = {"limit_exceeded"}


def build_search_params(search: SearchSettings) -> dict[str, str]:
    """
    Translate stored search settings into vacancy search query parameters.

    Unknown experience/employment/schedule values fall back to the board's
    most common option. Results are limited to the last 24 hours, newest first.
    """
    text = " OR ".join(p.strip() for p in search.positions if p.strip())
    if not text and search.keywords:
        text = " ".join(search.keywords)

    params = {
        "text": text,
        "experience": search.experience if search.experience in EXPERIENCE_VALUES else "noExperience",
        "employment": search.employment if search.employment in EMPLOYMENT_VALUES else "full",
        "schedule": search.schedule if search.schedule in SCHEDULE_VALUES else "fullDay",
        "order_by": "publication_time",
        "search_period": "1",
        "per_page": "100",
        "page": "0",
        "only_with_salary": "true",
    }
    if search.area_id:
        params["area"] = search.area_id
    if search.salary_min:
        params["salary"] = str(search.salary_min)
    if search.exclude_words:
        params["excluded_text"] = ", ".join(search.exclude_words)
    return params


def matches_search_filters(vacancy: Vacancy, search: SearchSettings) -> bool:
    """
    Filters the search endpoint cannot express: location names and a salary ceiling.

    A vacancy passes the location filter when it is remote or its location
    contains one of the configured names. It fails the ceiling only when
    its lowest offered salary is already above ``salary_max``.
    """
    names = [name.strip().lower() for name in search.locations if name.strip()]
    if names and not vacancy.remote:
        location = (vacancy.location or "").lower()
        if not any(name in location for name in names):
            return False
    if search.salary_max and vacancy.salary is not None:
        lowest = vacancy.salary.salary_from or vacancy.salary.salary_to
        if lowest and lowest > search.salary_max:
            return False
    return True


def _retry_after(resp: aiohttp.ClientResponse, default: timedelta) -> timedelta:
    value = resp.headers.get("Retry-After")
    if value and value.isdigit():
        return timedelta(seconds=int(value))
    return default


def _error_values(body: Any) -> set[str]:
    if not isinstance(body, dict):
        return set()
    return {e.get("value") for e in body.get("errors") or [] if isinstance(e, dict) and e.get("value")}


class JobBoardClient:
    """Thin async wrapper over the three job board operations the engine needs."""

    def __init__(
        self,
        base_url: str = None,
        timeout_s: float = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or settings.job_board_api_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s or settings.http_timeout_seconds)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _headers(self, credential: Credential) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "User-Agent": f"AutoJob/1.0 (user_id: {credential.user_id})",
            "HH-User-Agent": f"AutoJob/1.0 (user_id: {credential.user_id})",
            "Accept": "application/json",
        }

    async def _get_json(self, credential: Credential, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().get(
                url, params=params, headers=self._headers(credential), timeout=self.timeout
            ) as resp:
                if resp.status == 401:
                    raise AuthError(f"Job board rejected the access token (GET {path})")
                if resp.status == 429:
                    raise RateLimitExceededError(_retry_after(resp, timedelta(hours=1)))
                if resp.status != 200:
                    body = await resp.text(errors="ignore")
                    logger.error(f"GET {path} failed: status={resp.status} body={body[:200]!r}")
                    raise JobBoardError(f"Job board API error: {resp.status}", status_code=resp.status)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    logger.error(f"GET {path} returned a non-JSON body: {e}")
                    raise JobBoardError(f"Job board returned an unreadable response (GET {path})") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"GET {path} error: {type(e).__name__}: {e}")
            raise JobBoardError(f"Job board unreachable: {type(e).__name__}") from e

    async def search(self, credential: Credential, params: dict[str, str]) -> list[Vacancy]:
        data = await self._get_json(credential, "/vacancies", params=params)
        items = (data.get("items") or []) if isinstance(data, dict) else []
        vacancies = []
        for item in items:
            try:
                vacancies.append(Vacancy.from_api(item))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed vacancy {item!r:.80}: {e}")
        logger.info(
            f"Vacancy search for user {credential.user_id} returned {len(vacancies)} items",
            extra={"user_id": str(credential.user_id), "found": data.get("found") if isinstance(data, dict) else None},
        )
        return vacancies

    async def get_resumes(self, credential: Credential) -> list[ResumeProfile]:
        data = await self._get_json(credential, "/resumes/mine")
        items = (data.get("items") or []) if isinstance(data, dict) else (data or [])
        resumes = []
        for item in items:
            try:
                resumes.append(ResumeProfile.from_api(item))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed resume {item!r:.80}: {e}")
        return resumes

    async def submit_application(
        self,
        credential: Credential,
        vacancy_id: str,
        resume_id: str,
        message: str,
    ) -> Optional[str]:
        """
        Apply to a vacancy with the given resume.

        Returns:
            The job board's id for the application, when it reports one

        Raises:
            DuplicateApplicationError: Already applied to this vacancy
            ApplyRateLimitError: Board-side throttling or daily apply limit
            AuthError: Access token rejected
            JobBoardError: Anything else
        """
        url = f"{self.base_url}/negotiations"
        payload = {"vacancy_id": vacancy_id, "resume_id": resume_id, "message": message}
        try:
            async with self._get_session().post(
                url, json=payload, headers=self._headers(credential), timeout=self.timeout
            ) as resp:
                if resp.status in (200, 201):
                    # hh.ru answers 201 with an empty body and a Location header
                    text = await resp.text(errors="ignore")
                    try:
                        body = json.loads(text) if text.strip() else None
                    except ValueError:
                        body = None
                    if isinstance(body, dict) and body.get("id"):
                        return str(body["id"])
                    return resp.headers.get("Location", "").rsplit("/", 1)[-1] or None

                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = None
                errors = _error_values(body)
                description = body.get("description") if isinstance(body, dict) else None

                if errors & DUPLICATE_ERROR_VALUES:
                    raise DuplicateApplicationError(f"Already applied to vacancy {vacancy_id}")
                if resp.status == 429 or errors & LIMIT_ERROR_VALUES:
                    raise ApplyRateLimitError(
                        description or "Job board application limit reached",
                        retry_after=_retry_after(resp, timedelta(0)) or None,
                    )
                if resp.status == 401:
                    raise AuthError("Job board rejected the access token (POST /negotiations)")
                raise JobBoardError(
                    description or f"Job board API error: {resp.status}",
                    status_code=resp.status,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"POST /negotiations error: {type(e).__name__}: {e}")
            raise JobBoardError(f"Job board unreachable: {type(e).__name__}") from e
