"""
Tests for next-run computation, the per-job run guard and trigger handling.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from autojob.models.automation_job import AutomationJob
from autojob.services.orchestrator import RunOutcome, RunReport
from autojob.services.scheduler import (
    JobRegistry,
    RunCalendar,
    Scheduler,
    compute_next_run,
)

from conftest import FakeClock


def test_next_run_after_time_of_day_is_tomorrow():
    now = datetime(2026, 3, 10, 8, 5, tzinfo=timezone.utc)
    assert compute_next_run(now, "08:00", timezone.utc) == datetime(2026, 3, 11, 8, 0, tzinfo=timezone.utc)


def test_next_run_before_time_of_day_is_today():
    now = datetime(2026, 3, 10, 7, 55, tzinfo=timezone.utc)
    assert compute_next_run(now, "08:00", timezone.utc) == datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


def test_next_run_exactly_at_time_of_day_is_tomorrow():
    now = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
    assert compute_next_run(now, "08:00", timezone.utc).day == 11


def test_next_run_in_local_timezone():
    # 04:30 UTC is 07:30 in Moscow
    now = datetime(2026, 3, 10, 4, 30, tzinfo=timezone.utc)
    result = compute_next_run(now, "08:00", ZoneInfo("Europe/Moscow"))
    assert result == datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc)


def test_days_of_week_advisory_by_default():
    # Friday evening, weekdays only: the daily trigger still fires on Saturday
    now = datetime(2026, 3, 13, 9, 0, tzinfo=timezone.utc)
    result = compute_next_run(now, "08:00", timezone.utc, [1, 2, 3, 4, 5])
    assert result == datetime(2026, 3, 14, 8, 0, tzinfo=timezone.utc)


def test_days_of_week_enforced_skips_weekend():
    now = datetime(2026, 3, 13, 9, 0, tzinfo=timezone.utc)
    result = compute_next_run(now, "08:00", timezone.utc, [1, 2, 3, 4, 5], enforce_days_of_week=True)
    # Monday
    assert result == datetime(2026, 3, 16, 8, 0, tzinfo=timezone.utc)


def test_calendar_has_no_trigger_for_manual_or_disabled():
    calendar = RunCalendar()
    now = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
    assert calendar.next_run_for_schedule({"frequency": "manual"}, now) is None
    assert calendar.next_run_for_schedule({"enabled": False}, now) is None
    assert calendar.next_run_for_schedule({"frequency": "weekly", "time_of_day": "09:30"}, now) == datetime(
        2026, 3, 11, 9, 30, tzinfo=timezone.utc
    )


def test_registry_release_keeps_busy_entries():
    registry = JobRegistry()
    job_id = uuid4()
    entry = registry.ensure(job_id, uuid4())
    entry.trigger = MagicMock()

    registry.release(job_id)
    assert job_id in registry

    entry.trigger = None
    registry.release(job_id)
    assert job_id not in registry
    assert len(registry) == 0


class SlowOrchestrator:
    """Orchestrator stand-in whose runs block until released."""

    def __init__(self, outcome: RunOutcome = RunOutcome.COMPLETED):
        self.outcome = outcome
        self.calls = 0
        self.release = asyncio.Event()

    async def run(self, job_id):
        self.calls += 1
        await self.release.wait()
        now = datetime.now(timezone.utc)
        return RunReport(job_id=job_id, user_id=None, started_at=now, finished_at=now, outcome=self.outcome)


def _job(**schedule) -> AutomationJob:
    return AutomationJob(
        id=uuid4(),
        user_id=uuid4(),
        status="active",
        schedule={"enabled": True, "frequency": "daily", "time_of_day": "08:00", **schedule},
    )


@pytest.mark.asyncio
async def test_second_submit_while_running_is_noop():
    orchestrator = SlowOrchestrator()
    scheduler = Scheduler(orchestrator, RunCalendar())
    job_id, user_id = uuid4(), uuid4()

    assert scheduler.submit(job_id, user_id) is True
    await asyncio.sleep(0)
    assert scheduler.submit(job_id, user_id) is False
    assert scheduler.is_running(job_id)

    orchestrator.release.set()
    report = await scheduler.wait_for_run(job_id)

    assert report.outcome == RunOutcome.COMPLETED
    assert orchestrator.calls == 1
    await asyncio.sleep(0)
    assert job_id not in scheduler.registry

    # Guard lifted once the run finished
    assert scheduler.submit(job_id, user_id) is True
    await scheduler.shutdown(grace_seconds=1)


@pytest.mark.asyncio
async def test_schedule_and_unschedule():
    clock = FakeClock()
    scheduler = Scheduler(SlowOrchestrator(), RunCalendar(), clock=clock)
    job = _job()

    first = scheduler.schedule(job)

    assert first == datetime(2026, 3, 11, 8, 0, tzinfo=timezone.utc)
    assert scheduler.registry.is_scheduled(job.id)

    scheduler.unschedule(job.id)
    assert not scheduler.registry.is_scheduled(job.id)
    assert job.id not in scheduler.registry


@pytest.mark.asyncio
async def test_reschedule_replaces_trigger():
    scheduler = Scheduler(SlowOrchestrator(), RunCalendar(), clock=FakeClock())
    job = _job()

    scheduler.schedule(job)
    first_trigger = scheduler.registry.get(job.id).trigger
    scheduler.schedule(job)
    await asyncio.sleep(0.01)

    assert first_trigger.cancelled()
    assert scheduler.registry.get(job.id).trigger is not first_trigger
    await scheduler.shutdown(grace_seconds=1)


@pytest.mark.asyncio
async def test_manual_schedule_gets_no_trigger():
    scheduler = Scheduler(SlowOrchestrator(), RunCalendar(), clock=FakeClock())
    job = _job(frequency="manual")

    assert scheduler.schedule(job) is None
    assert job.id not in scheduler.registry


@pytest.mark.asyncio
async def test_unschedule_lets_running_run_finish():
    orchestrator = SlowOrchestrator()
    scheduler = Scheduler(orchestrator, RunCalendar(), clock=FakeClock())
    job = _job()
    scheduler.schedule(job)
    scheduler.submit(job.id, job.user_id)
    await asyncio.sleep(0)

    scheduler.unschedule(job.id)
    assert scheduler.is_running(job.id)

    orchestrator.release.set()
    report = await scheduler.wait_for_run(job.id)
    assert report.outcome == RunOutcome.COMPLETED


@pytest.mark.asyncio
async def test_disconnected_run_removes_trigger():
    orchestrator = SlowOrchestrator(outcome=RunOutcome.DISCONNECTED)
    orchestrator.release.set()
    scheduler = Scheduler(orchestrator, RunCalendar(), clock=FakeClock())
    job = _job()
    scheduler.schedule(job)

    scheduler.submit(job.id, job.user_id)
    await scheduler.wait_for_run(job.id)

    assert not scheduler.registry.is_scheduled(job.id)


@pytest.mark.asyncio
async def test_trigger_fires_when_due():
    orchestrator = SlowOrchestrator()
    orchestrator.release.set()
    # 07:59:59.95 - the trigger is due in 50ms
    clock = FakeClock(datetime(2026, 3, 10, 7, 59, 59, 950000, tzinfo=timezone.utc))
    scheduler = Scheduler(orchestrator, RunCalendar(), clock=clock)
    job = _job()

    scheduler.schedule(job)
    await asyncio.sleep(0.2)

    assert orchestrator.calls == 1
    await scheduler.shutdown(grace_seconds=1)
