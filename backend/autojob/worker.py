"""
Worker entrypoint: run one user's automation job once, outside the API process.

Uses the same orchestrator, caps and rate limits as scheduled runs. The
orchestrator's per-job lock lives in the counter store, so with Redis
configured the worker cannot overlap a run started by the API.
"""
import asyncio
import logging
import sys
from uuid import UUID

from sqlalchemy import select

from autojob.config import settings
from autojob.database import engine, session_factory
from autojob.models.automation_job import AutomationJob
from autojob.services.automation import build_automation_service
from autojob.services.counters import create_counter_store
from autojob.services.orchestrator import RunOutcome

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def worker_main(user_id: str) -> int:
    counter_store = create_counter_store(settings.redis_url)
    service = build_automation_service(settings, session_factory, counter_store)
    try:
        async with session_factory() as db:
            result = await db.execute(
                select(AutomationJob).where(AutomationJob.user_id == UUID(user_id))
            )
            job = result.scalar_one_or_none()
        if job is None:
            print(f"No automation job for user {user_id}.")
            return 1

        report = await service.orchestrator.run(job.id)
        if report.outcome == RunOutcome.SKIPPED:
            print(f"Run skipped: {report.error or 'automation is not active'}")
            return 2
        print(f"Run finished: {report.outcome.value}")
        for key, value in report.as_payload().items():
            print(f"  {key}: {value}")
        return 0 if report.outcome == RunOutcome.COMPLETED else 2
    finally:
        await service.shutdown()
        await counter_store.close()
        await engine.dispose()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python -m autojob.worker <user_id>")
        sys.exit(1)
    sys.exit(asyncio.run(worker_main(sys.argv[1])))
