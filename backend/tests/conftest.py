"""
Pytest fixtures for testing.
"""
import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Import database module BEFORE app to allow override
import autojob.database
from autojob.config import Settings
from autojob.database import Base, session_factory
from autojob.exceptions import AuthError
# Import ALL models so Base.metadata knows about all tables
from autojob.models import (
    Application,
    AutomationJob,
    Notification,
    ProcessedVacancy,
    User,
    UserCredential,
)
from autojob.schemas.job_board import ExperienceEntry, ResumeProfile, SalaryRange, Vacancy
from autojob.services.automation import AutomationService, build_automation_service
from autojob.services.counters import InMemoryCounterStore
from autojob.services.notifications import Notifier
from autojob.services.oauth import TokenResponse
from autojob.services.email import EmailService

# Now import app (after we can override database)
from autojob.main import app as fastapi_app


# Test database URL (use in-memory SQLite for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Tuesday 10:00 UTC
START = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable time source shared by the service, counters and tests."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeOAuthClient:
    """Stands in for the job board token endpoint."""

    def __init__(self, expires_in: int = 3600):
        self.expires_in = expires_in
        self.refresh_calls = 0
        self.exchange_calls = 0
        self.refresh_delay = 0.0
        self.fail_refresh = False
        self.fail_exchange = False

    def authorization_url(self, state: Optional[str] = None) -> tuple[str, str]:
        state = state or "test-state"
        return f"https://hh.example/oauth/authorize?state={state}", state

    async def exchange_code(self, code: str) -> TokenResponse:
        self.exchange_calls += 1
        if self.fail_exchange:
            raise AuthError("Token endpoint rejected authorization_code (HTTP 400)")
        return TokenResponse(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_in=self.expires_in,
            scope="vacancies",
        )

    async def refresh(self, refresh_token: str) -> TokenResponse:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.fail_refresh:
            raise AuthError("Token endpoint rejected refresh_token (HTTP 400)")
        return TokenResponse(
            access_token=f"access-refreshed-{self.refresh_calls}",
            refresh_token=None,
            expires_in=self.expires_in,
        )

    async def close(self) -> None:
        return None


class FakeJobBoard:
    """
    In-memory job board.

    ``apply_errors`` maps vacancy ids to the exception submit_application
    raises for them; everything else is accepted.
    """

    def __init__(self):
        self.resumes: list[ResumeProfile] = [make_resume()]
        self.vacancies: list[Vacancy] = []
        self.apply_errors: dict[str, Exception] = {}
        self.search_error: Optional[Exception] = None
        self.resume_error: Optional[Exception] = None
        self.search_calls: list[dict] = []
        self.applied: list[tuple[str, str, str]] = []
        self.tokens_used: list[str] = []

    async def search(self, credential, params):
        self.tokens_used.append(credential.access_token)
        self.search_calls.append(params)
        if self.search_error:
            raise self.search_error
        return list(self.vacancies)

    async def get_resumes(self, credential):
        self.tokens_used.append(credential.access_token)
        if self.resume_error:
            raise self.resume_error
        return list(self.resumes)

    async def submit_application(self, credential, vacancy_id, resume_id, message):
        self.tokens_used.append(credential.access_token)
        error = self.apply_errors.get(vacancy_id)
        if error:
            raise error
        self.applied.append((vacancy_id, resume_id, message))
        return f"neg-{vacancy_id}"

    async def close(self) -> None:
        return None


def make_resume(**overrides) -> ResumeProfile:
    data = dict(
        id="resume-1",
        first_name="Ivan",
        last_name="Petrov",
        email="ivan@example.com",
        skills=["Python", "Go", "Docker"],
        experience=[ExperienceEntry(start=date(2020, 1, 1), end=date(2023, 1, 1))],
        desired_salary=SalaryRange(salary_from=200000, salary_to=200000),
        location="Moscow",
    )
    data.update(overrides)
    return ResumeProfile(**data)


def make_vacancy(vacancy_id: str, **overrides) -> Vacancy:
    """A vacancy that scores 1.0 against make_resume() unless overridden."""
    data = dict(
        id=vacancy_id,
        title=f"Python developer {vacancy_id}",
        employer="Acme",
        salary=SalaryRange(salary_from=190000, salary_to=210000),
        required_skills=["python"],
        experience="between1And3",
        location="Moscow",
        remote=False,
        url=f"https://hh.example/vacancy/{vacancy_id}",
    )
    data.update(overrides)
    return Vacancy(**data)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database for each test.
    Ensures cleanup happens even if test fails.
    """
    # StaticPool keeps a single connection so every session sees the same in-memory database
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    original_engine = autojob.database.engine
    original_sessionmaker = autojob.database.AsyncSessionLocal

    autojob.database.engine = test_engine
    autojob.database.AsyncSessionLocal = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    session = autojob.database.AsyncSessionLocal()

    try:
        yield session
    finally:
        await session.close()
        async with test_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await test_engine.dispose()

        autojob.database.engine = original_engine
        autojob.database.AsyncSessionLocal = original_sessionmaker


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def job_board() -> FakeJobBoard:
    return FakeJobBoard()


@pytest.fixture
def counter_store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        redis_url="",
        email_mode="dev",
        scheduler_timezone="UTC",
        max_daily_searches=1,
    )


@pytest_asyncio.fixture
async def service(
    db: AsyncSession,
    test_settings: Settings,
    counter_store: InMemoryCounterStore,
    oauth: FakeOAuthClient,
    job_board: FakeJobBoard,
    clock: FakeClock,
) -> AsyncGenerator[AutomationService, None]:
    """Fully wired automation service against the test database and fakes."""
    automation = build_automation_service(
        test_settings,
        session_factory,
        counter_store,
        oauth=oauth,
        job_board=job_board,
        notifier=Notifier(session_factory, EmailService("dev")),
        clock=clock,
    )
    try:
        yield automation
    finally:
        await automation.shutdown()


@pytest_asyncio.fixture
async def test_user(db: AsyncSession) -> User:
    user = User(email="testuser@example.com", full_name="Test User")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def connected_user(db: AsyncSession, test_user: User, clock: FakeClock) -> User:
    """test_user with a stored credential valid for another hour."""
    db.add(UserCredential(
        user_id=test_user.id,
        access_token="access-initial",
        refresh_token="refresh-initial",
        expires_at=clock() + timedelta(hours=1),
        scope="vacancies",
    ))
    await db.commit()
    return test_user


@pytest_asyncio.fixture
async def async_client(service: AutomationService) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing endpoints.

    ASGITransport does not run the lifespan, so the service built by the
    ``service`` fixture is attached to app state directly.
    """
    fastapi_app.state.automation = service
    transport = ASGITransport(app=fastapi_app)

    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        follow_redirects=True
    ) as client:
        yield client


@pytest_asyncio.fixture
async def client(async_client: AsyncClient, test_user: User) -> AsyncClient:
    """
    Authenticated client with httpOnly cookie.

    The cookie contains just the user_id.
    """
    async_client.cookies.set("auth_token", str(test_user.id))
    return async_client
