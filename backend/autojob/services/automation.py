"""
Automation service: the operations the API and worker call.

Owns the lifecycle of a user's AutomationJob (start, stop, resume, settings)
and wires the orchestrator and scheduler together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.config import Settings
from autojob.database_types import utcnow
from autojob.exceptions import (
    AlreadyActiveError,
    AutomationNotFoundError,
    NotActiveError,
    NotConnectedError,
)
from autojob.models.application import Application
from autojob.models.automation_job import DEFAULT_SCHEDULE, AutomationJob, JobStatus
from autojob.schemas.automation import (
    AutomationStatusResponse,
    JobStatistics,
    RateLimitInfo,
    ScheduleConfig,
    SearchSettings,
    StartAutomationRequest,
    TodayStats,
    UpdateAutomationSettingsRequest,
)
from autojob.services.counters import CounterStore
from autojob.services.email import EmailService
from autojob.services.job_board import JobBoardClient
from autojob.services.notifications import NotificationType, Notifier
from autojob.services.oauth import OAuthClient
from autojob.services.orchestrator import AutomationOrchestrator
from autojob.services.rate_limiter import DailyCap, RateLimiter
from autojob.services.scheduler import RunCalendar, Scheduler
from autojob.services.token_manager import Credential, TokenManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunAccepted:
    job_id: UUID
    accepted: bool


def job_statistics(job: AutomationJob) -> JobStatistics:
    return JobStatistics(
        total_runs=job.total_runs or 0,
        vacancies_found=job.vacancies_found or 0,
        applications_sent=job.applications_sent or 0,
        avg_match_score=round(job.avg_match_score or 0.0, 4),
        external_requests=job.external_requests or 0,
    )


class AutomationService:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        token_manager: TokenManager,
        orchestrator: AutomationOrchestrator,
        scheduler: Scheduler,
        rate_limiter: RateLimiter,
        search_cap: DailyCap,
        notifier: Notifier,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.token_manager = token_manager
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.rate_limiter = rate_limiter
        self.search_cap = search_cap
        self.notifier = notifier
        self._clock = clock or utcnow

    @property
    def calendar(self) -> RunCalendar:
        return self.scheduler.calendar

    async def get_job(self, db: AsyncSession, user_id: UUID) -> Optional[AutomationJob]:
        result = await db.execute(select(AutomationJob).where(AutomationJob.user_id == user_id))
        return result.scalar_one_or_none()

    async def _require_job(self, db: AsyncSession, user_id: UUID) -> AutomationJob:
        job = await self.get_job(db, user_id)
        if job is None:
            raise AutomationNotFoundError(user_id)
        return job

    async def start_automation(
        self,
        user_id: UUID,
        request: Optional[StartAutomationRequest] = None,
    ) -> AutomationJob:
        """
        Activate automation for a user, creating the job on first start.

        Raises:
            NotConnectedError: No job board credential stored
            AlreadyActiveError: Job is already active
        """
        request = request or StartAutomationRequest()
        if not await self.token_manager.has_credential(user_id):
            raise NotConnectedError()

        async with self.session_factory() as db:
            job = await self.get_job(db, user_id)
            if job is not None and job.is_active():
                raise AlreadyActiveError()

            if job is None:
                schedule = dict(DEFAULT_SCHEDULE)
                schedule["time_of_day"] = self.calendar.default_time_of_day
                job = AutomationJob(
                    user_id=user_id,
                    schedule=schedule,
                    search_settings=SearchSettings().model_dump(),
                )
                db.add(job)

            if request.schedule is not None:
                job.schedule = request.schedule.model_dump()
            if request.search_settings is not None:
                job.search_settings = request.search_settings.model_dump()

            job.status = JobStatus.ACTIVE.value
            job.last_error = None
            job.next_run = self.calendar.next_run_for(job, self._clock())
            await db.commit()
            await db.refresh(job)

        self.scheduler.schedule(job)
        if request.run_immediately:
            self.scheduler.submit(job.id, user_id)

        self.notifier.notify(user_id, NotificationType.AUTOMATION_STARTED, {
            "job_id": str(job.id),
            "next_run": job.next_run.isoformat() if job.next_run else None,
        })
        logger.info(
            f"Automation started for user {user_id}",
            extra={"user_id": str(user_id), "job_id": str(job.id)},
        )
        return job

    async def stop_automation(self, user_id: UUID) -> AutomationJob:
        """Pause the job. A run already in progress finishes; no new run is scheduled."""
        async with self.session_factory() as db:
            job = await self._require_job(db, user_id)
            self.scheduler.unschedule(job.id)
            was_active = job.is_active()
            job.status = JobStatus.PAUSED.value
            job.next_run = None
            await db.commit()
            await db.refresh(job)

        if was_active:
            self.notifier.notify(user_id, NotificationType.AUTOMATION_STOPPED, {"job_id": str(job.id)})
        logger.info(
            f"Automation stopped for user {user_id}",
            extra={"user_id": str(user_id), "job_id": str(job.id)},
        )
        return job

    async def resume_automation(self, user_id: UUID) -> Optional[AutomationJob]:
        """
        Reactivate a job that was disconnected because its credential was lost.

        Returns:
            The job, or None when the user has no disconnected job
        """
        if not await self.token_manager.has_credential(user_id):
            raise NotConnectedError()

        async with self.session_factory() as db:
            job = await self.get_job(db, user_id)
            if job is None or job.status != JobStatus.DISCONNECTED.value:
                return None
            job.status = JobStatus.ACTIVE.value
            job.last_error = None
            job.next_run = self.calendar.next_run_for(job, self._clock())
            await db.commit()
            await db.refresh(job)

        self.scheduler.schedule(job)
        self.notifier.notify(user_id, NotificationType.AUTOMATION_RESUMED, {"job_id": str(job.id)})
        logger.info(f"Automation resumed after reconnect for user {user_id}")
        return job

    async def run_now(self, user_id: UUID) -> RunAccepted:
        """
        Submit an immediate run. Shares the scheduled runs' guard and quotas.

        Raises:
            NotActiveError: No active job for the user
        """
        async with self.session_factory() as db:
            job = await self.get_job(db, user_id)
        if job is None or not job.is_active():
            raise NotActiveError()

        accepted = self.scheduler.submit(job.id, user_id)
        logger.info(f"Run-now for user {user_id}: {'accepted' if accepted else 'already running'}")
        return RunAccepted(job_id=job.id, accepted=accepted)

    async def update_settings(
        self,
        user_id: UUID,
        request: UpdateAutomationSettingsRequest,
    ) -> AutomationJob:
        async with self.session_factory() as db:
            job = await self._require_job(db, user_id)
            if request.schedule is not None:
                job.schedule = request.schedule.model_dump()
            if request.search_settings is not None:
                job.search_settings = request.search_settings.model_dump()
            if job.is_active():
                job.next_run = self.calendar.next_run_for(job, self._clock())
            await db.commit()
            await db.refresh(job)

        if job.is_active() and request.schedule is not None:
            self.scheduler.schedule(job)
        logger.info(f"Automation settings updated for user {user_id}")
        return job

    async def get_status(self, user_id: UUID) -> AutomationStatusResponse:
        """Job state plus today's counters and rate limit usage. Consumes no quota."""
        now = self._clock()
        tz = self.calendar.tz
        day_start = datetime.combine(now.astimezone(tz).date(), time(0, 0), tzinfo=tz)

        async with self.session_factory() as db:
            job = await self._require_job(db, user_id)
            result = await db.execute(
                select(func.count(Application.id)).where(
                    and_(
                        Application.user_id == user_id,
                        Application.applied_at >= day_start,
                    )
                )
            )
            applications_today = result.scalar_one()

        usage = await self.rate_limiter.usage(user_id)
        searches_today = await self.search_cap.used(user_id)
        connected = await self.token_manager.has_credential(user_id)

        return AutomationStatusResponse(
            job_id=str(job.id),
            user_id=str(job.user_id),
            status=job.status,
            schedule=ScheduleConfig.model_validate(job.schedule or DEFAULT_SCHEDULE),
            search_settings=SearchSettings.model_validate(job.search_settings or {}),
            stats=job_statistics(job),
            last_run=job.last_run,
            next_run=job.next_run,
            last_error=job.last_error,
            created_at=job.created_at,
            updated_at=job.updated_at,
            connected=connected,
            running=self.scheduler.is_running(job.id),
            today=TodayStats(
                applications=applications_today,
                searches=searches_today,
                last_search=job.last_run,
            ),
            rate_limit=RateLimitInfo(
                allowed=usage.allowed,
                used=usage.used,
                max=usage.limit,
                retry_after_seconds=0 if usage.allowed else int(usage.resets_in.total_seconds()),
            ),
        )

    async def list_applications(self, user_id: UUID, limit: int = 50, offset: int = 0) -> tuple[list[Application], int]:
        async with self.session_factory() as db:
            total = (await db.execute(
                select(func.count(Application.id)).where(Application.user_id == user_id)
            )).scalar_one()
            result = await db.execute(
                select(Application)
                .where(Application.user_id == user_id)
                .order_by(Application.applied_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), total

    async def connect_account(self, user_id: UUID, code: str) -> Credential:
        """Store the credential from an authorization code and resume a disconnected job."""
        credential = await self.token_manager.exchange_authorization_code(user_id, code)
        await self.resume_automation(user_id)
        return credential

    async def disconnect_account(self, user_id: UUID) -> bool:
        """Delete the credential. An active job is marked disconnected until reconnect."""
        deleted = await self.token_manager.disconnect(user_id)
        async with self.session_factory() as db:
            job = await self.get_job(db, user_id)
            if job is not None and job.is_active():
                self.scheduler.unschedule(job.id)
                job.status = JobStatus.DISCONNECTED.value
                job.next_run = None
                await db.commit()
        return deleted

    async def restore_active_jobs(self) -> int:
        """Register triggers for every active job (on startup)."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(AutomationJob).where(AutomationJob.status == JobStatus.ACTIVE.value)
            )
            jobs = list(result.scalars().all())

        for job in jobs:
            self.scheduler.schedule(job)
        logger.info(f"Restored {len(jobs)} active automation job(s)")
        return len(jobs)

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.notifier.drain()
        await self.orchestrator.job_board.close()
        await self.token_manager.oauth.close()


def build_automation_service(
    config: Settings,
    session_factory: Callable[[], AsyncSession],
    counter_store: CounterStore,
    oauth: Optional[OAuthClient] = None,
    job_board: Optional[JobBoardClient] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AutomationService:
    """Wire the engine from settings. Collaborators can be swapped for fakes in tests."""
    clock = clock or utcnow
    tz = ZoneInfo(config.scheduler_timezone)

    token_manager = TokenManager(
        session_factory,
        oauth or OAuthClient(),
        expiry_buffer=timedelta(minutes=config.token_expiry_buffer_minutes),
        clock=clock,
    )
    rate_limiter = RateLimiter(counter_store, limit=config.api_requests_per_hour)
    search_cap = DailyCap(counter_store, "searches", config.max_daily_searches, tz, clock=clock)
    notifier = notifier or Notifier(session_factory, EmailService(config.email_mode))
    calendar = RunCalendar(
        tz=tz,
        enforce_days_of_week=config.enforce_days_of_week,
        default_time_of_day=config.default_time_of_day,
    )

    orchestrator = AutomationOrchestrator(
        session_factory=session_factory,
        token_manager=token_manager,
        job_board=job_board or JobBoardClient(),
        rate_limiter=rate_limiter,
        search_cap=search_cap,
        notifier=notifier,
        next_run_for=calendar.next_run_for,
        min_match_score=config.min_match_score,
        max_applications_per_run=config.max_applications_per_run,
        run_timeout=timedelta(minutes=config.run_timeout_minutes),
        mark_skipped_as_processed=config.mark_skipped_as_processed,
        clock=clock,
        locks=counter_store,
    )
    scheduler = Scheduler(orchestrator, calendar, clock=clock)

    return AutomationService(
        session_factory=session_factory,
        token_manager=token_manager,
        orchestrator=orchestrator,
        scheduler=scheduler,
        rate_limiter=rate_limiter,
        search_cap=search_cap,
        notifier=notifier,
        clock=clock,
    )
