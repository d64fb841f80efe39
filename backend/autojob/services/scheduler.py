"""
In-process scheduler for automation jobs.

Each scheduled job gets one asyncio trigger task that sleeps until the next
occurrence of the job's time of day and then submits a run. Scheduled and
manual runs both go through ``submit``, which refuses to start a second run
for a job that already has one in flight.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Iterable, Optional
from uuid import UUID

from autojob.database_types import utcnow
from autojob.models.automation_job import AutomationJob
from autojob.services.orchestrator import AutomationOrchestrator, RunOutcome, RunReport

logger = logging.getLogger(__name__)

TRIGGERED_FREQUENCIES = {"daily", "weekly"}


def parse_time_of_day(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def compute_next_run(
    now: datetime,
    time_of_day: str,
    tz: tzinfo,
    days_of_week: Optional[Iterable[int]] = None,
    enforce_days_of_week: bool = False,
) -> datetime:
    """
    Next occurrence of ``time_of_day`` (local to ``tz``) strictly after ``now``.

    Args:
        now: Aware reference time
        time_of_day: "HH:MM"
        tz: Timezone the schedule is expressed in
        days_of_week: Allowed weekdays, 0 = Sunday
        enforce_days_of_week: Skip days not listed in ``days_of_week``

    Returns:
        Aware datetime in UTC
    """
    at = parse_time_of_day(time_of_day)
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate += timedelta(days=1)

    allowed = set(days_of_week or [])
    if enforce_days_of_week and allowed:
        for _ in range(7):
            # Python: Monday = 0; schedules: Sunday = 0
            if (candidate.weekday() + 1) % 7 in allowed:
                break
            candidate += timedelta(days=1)

    return candidate.astimezone(timezone.utc)


@dataclass
class JobEntry:
    job_id: UUID
    user_id: UUID
    trigger: Optional[asyncio.Task] = None
    run_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.run_task is not None and not self.run_task.done()


class JobRegistry:
    """
    Job id -> trigger handle and in-flight run.

    An entry lives while its job has a trigger or a run in progress.
    """

    def __init__(self):
        self._entries: dict[UUID, JobEntry] = {}

    def get(self, job_id: UUID) -> Optional[JobEntry]:
        return self._entries.get(job_id)

    def ensure(self, job_id: UUID, user_id: UUID) -> JobEntry:
        entry = self._entries.get(job_id)
        if entry is None:
            entry = JobEntry(job_id=job_id, user_id=user_id)
            self._entries[job_id] = entry
        return entry

    def release(self, job_id: UUID) -> None:
        """Drop the entry once it has neither a trigger nor a run."""
        entry = self._entries.get(job_id)
        if entry is not None and entry.trigger is None and not entry.running:
            del self._entries[job_id]

    def is_running(self, job_id: UUID) -> bool:
        entry = self._entries.get(job_id)
        return entry is not None and entry.running

    def is_scheduled(self, job_id: UUID) -> bool:
        entry = self._entries.get(job_id)
        return entry is not None and entry.trigger is not None

    def entries(self) -> list[JobEntry]:
        return list(self._entries.values())

    def __contains__(self, job_id: UUID) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class RunCalendar:
    """Turns stored schedules into trigger times."""

    def __init__(
        self,
        tz: Optional[tzinfo] = None,
        enforce_days_of_week: bool = False,
        default_time_of_day: str = "08:00",
    ):
        self.tz = tz or timezone.utc
        self.enforce_days_of_week = enforce_days_of_week
        self.default_time_of_day = default_time_of_day

    def next_run_for(self, job: AutomationJob, now: datetime) -> Optional[datetime]:
        return self.next_run_for_schedule(job.schedule or {}, now)

    def next_run_for_schedule(self, schedule: dict, now: datetime) -> Optional[datetime]:
        """Next trigger time for a schedule; None for manual or disabled schedules."""
        if not schedule.get("enabled", True):
            return None
        if schedule.get("frequency", "daily") not in TRIGGERED_FREQUENCIES:
            return None
        return compute_next_run(
            now,
            schedule.get("time_of_day") or self.default_time_of_day,
            self.tz,
            schedule.get("days_of_week"),
            self.enforce_days_of_week,
        )


class Scheduler:
    def __init__(
        self,
        orchestrator: AutomationOrchestrator,
        calendar: RunCalendar,
        registry: Optional[JobRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.orchestrator = orchestrator
        self.calendar = calendar
        self.registry = registry or JobRegistry()
        self._clock = clock or utcnow

    def schedule(self, job: AutomationJob) -> Optional[datetime]:
        """
        (Re)register the trigger for a job, replacing any existing one.

        Returns:
            First trigger time, or None when the schedule has no trigger
        """
        entry = self.registry.ensure(job.id, job.user_id)
        if entry.trigger is not None:
            entry.trigger.cancel()
            entry.trigger = None

        first = self.calendar.next_run_for(job, self._clock())
        if first is None:
            self.registry.release(job.id)
            logger.info(f"Job {job.id} has no automatic trigger (manual or disabled schedule)")
            return None

        entry.trigger = asyncio.create_task(self._trigger_loop(job.id, job.user_id, dict(job.schedule or {})))
        logger.info(
            f"Automation job scheduled, first run at {first.isoformat()}",
            extra={"job_id": str(job.id), "user_id": str(job.user_id)},
        )
        return first

    def unschedule(self, job_id: UUID) -> None:
        """Remove the trigger. A run already in progress is left to finish."""
        entry = self.registry.get(job_id)
        if entry is None:
            return
        if entry.trigger is not None:
            entry.trigger.cancel()
            entry.trigger = None
        self.registry.release(job_id)
        logger.info(f"Automation job {job_id} unscheduled")

    def submit(self, job_id: UUID, user_id: UUID) -> bool:
        """
        Start a run unless one is already in flight for this job.

        Returns:
            True if a run was started, False if the job was busy
        """
        entry = self.registry.ensure(job_id, user_id)
        if entry.running:
            logger.info(f"Run for job {job_id} already in progress, ignoring start request")
            return False
        entry.run_task = asyncio.create_task(self._run(job_id))
        entry.run_task.add_done_callback(lambda _t, jid=job_id: self.registry.release(jid))
        return True

    def is_running(self, job_id: UUID) -> bool:
        return self.registry.is_running(job_id)

    async def wait_for_run(self, job_id: UUID) -> Optional[RunReport]:
        """Await the in-flight run of a job, if any."""
        entry = self.registry.get(job_id)
        if entry is None or entry.run_task is None:
            return None
        return await asyncio.shield(entry.run_task)

    async def _run(self, job_id: UUID) -> Optional[RunReport]:
        try:
            report = await self.orchestrator.run(job_id)
        except Exception as e:
            logger.error(f"Unhandled error in run for job {job_id}: {e}", exc_info=True)
            return None
        if report.outcome == RunOutcome.DISCONNECTED:
            self.unschedule(job_id)
        return report

    async def _trigger_loop(self, job_id: UUID, user_id: UUID, schedule: dict) -> None:
        last_fired: Optional[datetime] = None
        try:
            while True:
                now = self._clock()
                if last_fired is not None:
                    # Never fire twice for the same occurrence if the sleep woke early
                    now = max(now, last_fired + timedelta(seconds=1))
                next_run = self.calendar.next_run_for_schedule(schedule, now)
                if next_run is None:
                    return
                delay = (next_run - self._clock()).total_seconds()
                await asyncio.sleep(max(0.0, delay))

                last_fired = next_run
                logger.info(f"Scheduled trigger fired for job {job_id}")
                self.submit(job_id, user_id)
        except asyncio.CancelledError:
            logger.debug(f"Trigger for job {job_id} cancelled")
            raise

    async def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Cancel all triggers and give in-flight runs a grace period to finish."""
        runs = []
        for entry in self.registry.entries():
            if entry.trigger is not None:
                entry.trigger.cancel()
                entry.trigger = None
            if entry.running:
                runs.append(entry.run_task)

        if runs:
            logger.info(f"Waiting for {len(runs)} automation run(s) to finish")
            done, pending = await asyncio.wait(runs, timeout=grace_seconds)
            for task in pending:
                task.cancel()
        for entry in self.registry.entries():
            self.registry.release(entry.job_id)
