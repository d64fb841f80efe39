"""
Processed-vacancy ledger.

Records every vacancy a user's automation has already handled so later runs
never evaluate or apply to it again. Functions take the caller's session and
do not commit; the orchestrator commits ledger entries together with the
applications of a run.
"""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.models.processed_vacancy import ProcessedStatus, ProcessedVacancy
from autojob.schemas.job_board import Vacancy

logger = logging.getLogger(__name__)


async def get_record(db: AsyncSession, user_id: UUID, vacancy_id: str) -> Optional[ProcessedVacancy]:
    result = await db.execute(
        select(ProcessedVacancy).where(
            and_(
                ProcessedVacancy.user_id == user_id,
                ProcessedVacancy.vacancy_id == vacancy_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def is_processed(db: AsyncSession, user_id: UUID, vacancy_id: str) -> bool:
    return await get_record(db, user_id, vacancy_id) is not None


async def mark_processed(
    db: AsyncSession,
    user_id: UUID,
    vacancy_id: str,
    status: ProcessedStatus,
) -> ProcessedVacancy:
    """
    Upsert the ledger entry for (user, vacancy). Last write wins on status.

    Returns:
        The new or updated record (flushed, not committed)
    """
    record = await get_record(db, user_id, vacancy_id)
    if record is None:
        record = ProcessedVacancy(user_id=user_id, vacancy_id=vacancy_id, status=status.value)
        db.add(record)
    else:
        record.status = status.value
    await db.flush()
    return record


async def processed_ids(db: AsyncSession, user_id: UUID, vacancy_ids: Iterable[str]) -> set[str]:
    ids = list(vacancy_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(ProcessedVacancy.vacancy_id).where(
            and_(
                ProcessedVacancy.user_id == user_id,
                ProcessedVacancy.vacancy_id.in_(ids),
            )
        )
    )
    return set(result.scalars().all())


async def filter_new(db: AsyncSession, user_id: UUID, vacancies: list[Vacancy]) -> list[Vacancy]:
    """Drop vacancies already in the ledger, keeping search order and removing repeats."""
    seen = await processed_ids(db, user_id, (v.id for v in vacancies))
    fresh = []
    for vacancy in vacancies:
        if vacancy.id in seen:
            continue
        seen.add(vacancy.id)
        fresh.append(vacancy)
    logger.debug(f"Ledger filter for user {user_id}: {len(vacancies)} found, {len(fresh)} new")
    return fresh
