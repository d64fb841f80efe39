from sqlalchemy import Column, String, ForeignKey, UniqueConstraint
import uuid
import enum

from autojob.database import Base
from autojob.database_types import GUID, UTCDateTime, utcnow


class ProcessedStatus(str, enum.Enum):
    APPLIED = "applied"  # Application sent
    SKIPPED = "skipped"  # Scored below threshold
    FAILED = "failed"    # Apply attempted but not sent (duplicate, rate limited, ...)


class ProcessedVacancy(Base):
    """
    Idempotency anchor: a vacancy already handled for a user is never
    evaluated again on later runs.
    """
    __tablename__ = "processed_vacancies"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False)
    vacancy_id = Column(String, nullable=False)
    status = Column(String, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'vacancy_id', name='uq_processed_user_vacancy'),
    )
