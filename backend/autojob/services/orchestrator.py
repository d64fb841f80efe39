"""
Automation run orchestrator.

One run of a user's automation job:

    verify connection -> fetch resume -> search -> filter new
        -> evaluate and apply (loop) -> persist -> report

Any failure before the loop ends the run (top-level failure). Failures of a
single apply call are recorded on that Application and the loop goes on.
Applications, ledger entries and job statistics are committed together.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.database_types import utcnow
from autojob.exceptions import (
    ApplyRateLimitError,
    AuthError,
    DailyCapExceededError,
    DataError,
    DuplicateApplicationError,
    InvalidSettingsError,
    JobBoardError,
    NoResumeError,
    PersistenceError,
    QuotaError,
    RateLimitExceededError,
    RunDeadlineExceeded,
)
from autojob.models.application import Application, ApplicationStatus
from autojob.models.automation_job import AutomationJob, JobStatus
from autojob.models.processed_vacancy import ProcessedStatus
from autojob.schemas.automation import SearchSettings
from autojob.schemas.job_board import ResumeProfile, Vacancy
from autojob.services import ledger
from autojob.services.cover_letter import build_cover_letter
from autojob.services.counters import CounterStore
from autojob.services.job_board import JobBoardClient, build_search_params, matches_search_filters
from autojob.services.matcher import MatchResult, score
from autojob.services.notifications import NotificationType, Notifier
from autojob.services.rate_limiter import DailyCap, RateLimiter
from autojob.services.token_manager import Credential, TokenManager

logger = logging.getLogger(__name__)


class RunOutcome(str, enum.Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"                    # Deadline hit mid-loop, partial results saved
    DISCONNECTED = "disconnected"              # Credential lost, job disconnected
    QUOTA_EXCEEDED = "quota_exceeded"          # Daily cap or rate limit
    DATA_ERROR = "data_error"                  # No resume, bad settings
    FAILED = "failed"                          # Job board error before the loop
    PERSISTENCE_FAILED = "persistence_failed"
    SKIPPED = "skipped"                        # Job missing, not active or already running


@dataclass
class RunReport:
    job_id: UUID
    user_id: Optional[UUID]
    started_at: datetime
    outcome: RunOutcome = RunOutcome.COMPLETED
    finished_at: Optional[datetime] = None
    vacancies_found: int = 0
    new_vacancies: int = 0
    evaluated: int = 0
    applications_created: int = 0
    applications_sent: int = 0
    avg_match_score: float = 0.0
    external_calls: int = 0
    error: Optional[str] = None
    scores: list[float] = field(default_factory=list, repr=False)

    @property
    def duration(self) -> timedelta:
        return (self.finished_at or self.started_at) - self.started_at

    def as_payload(self) -> dict:
        return {
            "job_id": str(self.job_id),
            "outcome": self.outcome.value,
            "vacancies_found": self.vacancies_found,
            "new_vacancies": self.new_vacancies,
            "evaluated": self.evaluated,
            "applications_created": self.applications_created,
            "applications_sent": self.applications_sent,
            "avg_match_score": round(self.avg_match_score, 4),
            "external_calls": self.external_calls,
            "duration_seconds": round(self.duration.total_seconds(), 3),
            "error": self.error,
        }


@dataclass
class _Applied:
    application: Application
    processed: ProcessedStatus


class AutomationOrchestrator:
    """
    Executes runs. Holds no per-run state, so one instance serves every job.

    The scheduler keeps a job to one run per process; ``locks`` extends that
    across processes (API workers and the CLI worker) with a per-job lock.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        token_manager: TokenManager,
        job_board: JobBoardClient,
        rate_limiter: RateLimiter,
        search_cap: DailyCap,
        notifier: Notifier,
        next_run_for: Callable[[AutomationJob, datetime], Optional[datetime]],
        min_match_score: float = 0.7,
        max_applications_per_run: int = 50,
        run_timeout: timedelta = timedelta(minutes=10),
        mark_skipped_as_processed: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[CounterStore] = None,
    ):
        self.session_factory = session_factory
        self.token_manager = token_manager
        self.job_board = job_board
        self.rate_limiter = rate_limiter
        self.search_cap = search_cap
        self.notifier = notifier
        self.next_run_for = next_run_for
        self.min_match_score = min_match_score
        self.max_applications_per_run = max_applications_per_run
        self.run_timeout = run_timeout
        self.mark_skipped_as_processed = mark_skipped_as_processed
        self._clock = clock or utcnow
        self.locks = locks

    @staticmethod
    def lock_key(job_id: UUID) -> str:
        return f"automation:run_lock:job:{job_id}"

    async def run(self, job_id: UUID, deadline: Optional[datetime] = None) -> RunReport:
        """
        Execute one run of a job.

        Args:
            job_id: AutomationJob id
            deadline: Cooperative deadline, checked between vacancies
                (defaults to now + run_timeout)

        Returns:
            RunReport; failures are reported through ``outcome``/``error``,
            never raised
        """
        started = self._clock()
        deadline = deadline or started + self.run_timeout

        async with self.session_factory() as db:
            job = await db.get(AutomationJob, job_id)

        if job is None or not job.is_active():
            state = job.status if job else "missing"
            logger.info(f"Skipping run for job {job_id}: job is {state}")
            return RunReport(
                job_id=job_id,
                user_id=job.user_id if job else None,
                started_at=started,
                finished_at=started,
                outcome=RunOutcome.SKIPPED,
            )

        lock_token = None
        if self.locks is not None:
            # Outlives the deadline by a minute to cover the final commit
            lock_ttl = max(deadline - started, timedelta(0)) + timedelta(minutes=1)
            lock_token = await self.locks.acquire(self.lock_key(job.id), lock_ttl)
            if lock_token is None:
                logger.info(f"Skipping run for job {job_id}: another run is in progress")
                return RunReport(
                    job_id=job.id,
                    user_id=job.user_id,
                    started_at=started,
                    finished_at=started,
                    outcome=RunOutcome.SKIPPED,
                    error="Another run of this job is in progress",
                )

        report = RunReport(job_id=job.id, user_id=job.user_id, started_at=started)
        logger.info(
            f"Automation run started for user {job.user_id}",
            extra={"job_id": str(job.id), "user_id": str(job.user_id)},
        )

        try:
            await self._execute(job, report, deadline)
        except AuthError as e:
            await self._fail(job, report, RunOutcome.DISCONNECTED, e, disconnect=True)
        except QuotaError as e:
            await self._fail(job, report, RunOutcome.QUOTA_EXCEEDED, e)
        except DataError as e:
            await self._fail(job, report, RunOutcome.DATA_ERROR, e)
        except JobBoardError as e:
            await self._fail(job, report, RunOutcome.FAILED, e)
        except PersistenceError as e:
            await self._fail(job, report, RunOutcome.PERSISTENCE_FAILED, e)
        except Exception as e:
            logger.error(f"Unexpected error in automation run for job {job.id}: {e}", exc_info=True)
            await self._fail(job, report, RunOutcome.FAILED, e)
        finally:
            if lock_token is not None:
                await self.locks.release(self.lock_key(job.id), lock_token)

        report.finished_at = self._clock()
        logger.info(
            f"Automation run for user {job.user_id} finished: {report.outcome.value}, "
            f"{report.applications_sent}/{report.new_vacancies} applied in "
            f"{report.duration.total_seconds():.1f}s",
            extra=report.as_payload(),
        )
        return report

    async def _execute(self, job: AutomationJob, report: RunReport, deadline: datetime) -> None:
        user_id = job.user_id
        try:
            search = SearchSettings.model_validate(job.search_settings or {})
        except ValidationError as e:
            raise InvalidSettingsError(f"Invalid search settings: {e.errors()[0].get('msg')}") from e

        # VerifyConnection
        credential = await self.token_manager.get_valid_credential(user_id)

        # FetchResume
        resume = await self._fetch_primary_resume(credential, report)

        # Search
        vacancies = await self._search(credential, search, report)
        report.vacancies_found = len(vacancies)

        try:
            async with self.session_factory() as db:
                # FilterNew
                fresh = await ledger.filter_new(db, user_id, vacancies)
                report.new_vacancies = len(fresh)

                # EvaluateAndApply
                applied: list[_Applied] = []
                try:
                    await self._evaluate_and_apply(db, user_id, resume, fresh, report, deadline, applied)
                except RunDeadlineExceeded as e:
                    # Partial results are still committed below
                    report.outcome = RunOutcome.TIMED_OUT
                    report.error = str(e)
                    logger.warning(f"{report.error} for user {user_id}")
                if report.scores:
                    report.avg_match_score = sum(report.scores) / len(report.scores)

                # Persist
                await self._persist(db, job.id, report)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist run results for job {job.id}: {e}", exc_info=True)
            raise PersistenceError(f"Could not save run results: {e}") from e

        # Report
        report.finished_at = self._clock()
        for item in applied:
            if item.application.status == ApplicationStatus.SENT.value:
                self.notifier.notify(user_id, NotificationType.APPLICATION_SENT, {
                    "vacancy_id": item.application.vacancy_id,
                    "vacancy_title": item.application.vacancy_title,
                    "company_name": item.application.company_name,
                    "match_score": item.application.match_score,
                })
        if report.outcome == RunOutcome.TIMED_OUT:
            self.notifier.notify(user_id, NotificationType.AUTOMATION_FAILED, report.as_payload())
        else:
            self.notifier.notify(user_id, NotificationType.AUTOMATION_COMPLETED, report.as_payload())

    async def _fetch_primary_resume(self, credential: Credential, report: RunReport) -> ResumeProfile:
        report.external_calls += 1
        resumes = await self.job_board.get_resumes(credential)
        if not resumes:
            raise NoResumeError()
        return resumes[0]

    async def _search(self, credential: Credential, search: SearchSettings, report: RunReport) -> list[Vacancy]:
        user_id = credential.user_id
        if not await self.search_cap.check(user_id):
            raise DailyCapExceededError(await self.search_cap.used(user_id), self.search_cap.limit)

        decision = await self.rate_limiter.allow(user_id)
        if not decision.allowed:
            raise RateLimitExceededError(decision.retry_after)

        report.external_calls += 1
        try:
            vacancies = await self.job_board.search(credential, build_search_params(search))
        except RateLimitExceededError as e:
            await self.rate_limiter.saturate(user_id, e.retry_after)
            raise
        await self.search_cap.record(user_id)
        return [v for v in vacancies if matches_search_filters(v, search)]

    async def _evaluate_and_apply(
        self,
        db: AsyncSession,
        user_id: UUID,
        resume: ResumeProfile,
        vacancies: list[Vacancy],
        report: RunReport,
        deadline: datetime,
        applied: list[_Applied],
    ) -> None:
        """Appends to ``applied`` as it goes so a deadline keeps what was done."""
        for vacancy in vacancies:
            now = self._clock()
            if now >= deadline:
                raise RunDeadlineExceeded(
                    f"Run deadline exceeded after {report.evaluated} of {len(vacancies)} vacancies"
                )
            if report.applications_created >= self.max_applications_per_run:
                logger.info(
                    f"Application cap of {self.max_applications_per_run} reached for user {user_id}, "
                    f"{len(vacancies) - report.evaluated} vacancies left for later runs"
                )
                break

            result = score(vacancy, resume, now=now)
            report.evaluated += 1
            report.scores.append(result.score)

            if result.score < self.min_match_score:
                if self.mark_skipped_as_processed:
                    await ledger.mark_processed(db, user_id, vacancy.id, ProcessedStatus.SKIPPED)
                continue

            item = await self._apply(db, user_id, vacancy, resume, result, report)
            applied.append(item)
            await ledger.mark_processed(db, user_id, vacancy.id, item.processed)

    async def _apply(
        self,
        db: AsyncSession,
        user_id: UUID,
        vacancy: Vacancy,
        resume: ResumeProfile,
        result: MatchResult,
        report: RunReport,
    ) -> _Applied:
        cover_letter = build_cover_letter(vacancy, resume, result, now=self._clock())
        application = Application(
            user_id=user_id,
            vacancy_id=vacancy.id,
            vacancy_title=vacancy.title,
            company_name=vacancy.employer,
            vacancy_url=vacancy.url,
            resume_id=resume.id,
            cover_letter=cover_letter,
            match_score=result.score,
            automated=True,
            applied_at=self._clock(),
        )
        processed = ProcessedStatus.FAILED

        try:
            decision = await self.rate_limiter.allow(user_id)
            if not decision.allowed:
                raise ApplyRateLimitError(
                    f"Rate limit reached, retry after {int(decision.retry_after.total_seconds())}s",
                    retry_after=decision.retry_after,
                )
            credential = await self.token_manager.get_valid_credential(user_id)
            report.external_calls += 1
            external_id = await self.job_board.submit_application(
                credential, vacancy.id, resume.id, cover_letter
            )
            application.status = ApplicationStatus.SENT.value
            application.external_application_id = external_id
            processed = ProcessedStatus.APPLIED
            report.applications_sent += 1
        except DuplicateApplicationError as e:
            application.status = ApplicationStatus.DUPLICATE.value
            application.error_message = str(e)
            processed = ProcessedStatus.APPLIED
        except ApplyRateLimitError as e:
            application.status = ApplicationStatus.RATE_LIMITED.value
            application.error_message = str(e)
        except AuthError as e:
            application.status = ApplicationStatus.AUTH_FAILED.value
            application.error_message = str(e)
        except (JobBoardError, PersistenceError) as e:
            # A refresh that could not be stored fails this item only
            application.status = ApplicationStatus.FAILED.value
            application.error_message = str(e)

        if application.status != ApplicationStatus.SENT.value:
            logger.warning(
                f"Apply to vacancy {vacancy.id} failed for user {user_id}: "
                f"{application.status}: {application.error_message}"
            )

        db.add(application)
        report.applications_created += 1
        return _Applied(application=application, processed=processed)

    async def _persist(self, db: AsyncSession, job_id: UUID, report: RunReport) -> None:
        """Commit applications, ledger entries and cumulative statistics in one transaction."""
        job = await db.get(AutomationJob, job_id)
        if job is None:
            raise PersistenceError(f"Automation job {job_id} disappeared during the run")

        previous = job.evaluated_count or 0
        evaluated = len(report.scores)
        if evaluated:
            job.avg_match_score = (
                (job.avg_match_score or 0.0) * previous + sum(report.scores)
            ) / (previous + evaluated)
        job.evaluated_count = previous + evaluated
        job.total_runs = (job.total_runs or 0) + 1
        job.vacancies_found = (job.vacancies_found or 0) + report.vacancies_found
        job.applications_sent = (job.applications_sent or 0) + report.applications_sent
        job.external_requests = (job.external_requests or 0) + report.external_calls
        job.last_run = report.started_at
        # A stop during the run leaves the job paused with no next run
        job.next_run = self.next_run_for(job, self._clock()) if job.is_active() else None
        job.last_error = report.error if report.outcome == RunOutcome.TIMED_OUT else None

        await db.commit()

    async def _fail(
        self,
        job: AutomationJob,
        report: RunReport,
        outcome: RunOutcome,
        error: Exception,
        disconnect: bool = False,
    ) -> None:
        """Record a top-level failure. Statistics are left as they were."""
        report.outcome = outcome
        report.error = str(error)
        report.finished_at = self._clock()
        logger.warning(
            f"Automation run for user {job.user_id} failed ({outcome.value}): {error}",
            extra={"job_id": str(job.id), "user_id": str(job.user_id), "category": getattr(error, "category", None)},
        )

        try:
            async with self.session_factory() as db:
                current = await db.get(AutomationJob, job.id)
                if current is not None:
                    current.last_error = report.error
                    if disconnect:
                        current.status = JobStatus.DISCONNECTED.value
                        current.next_run = None
                    elif current.is_active():
                        current.next_run = self.next_run_for(current, self._clock())
                    await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record run failure for job {job.id}: {e}", exc_info=True)

        if disconnect:
            self.notifier.notify(job.user_id, NotificationType.CONNECTION_LOST, {"error": report.error})
        elif outcome != RunOutcome.QUOTA_EXCEEDED:
            self.notifier.notify(job.user_id, NotificationType.AUTOMATION_FAILED, report.as_payload())
