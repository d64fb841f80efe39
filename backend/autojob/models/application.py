from sqlalchemy import Column, String, Float, Boolean, Text, ForeignKey, Index
import uuid
import enum

from autojob.database import Base
from autojob.database_types import GUID, UTCDateTime, utcnow


class ApplicationStatus(str, enum.Enum):
    """Outcome of a single apply attempt."""
    PENDING = "pending"
    SENT = "sent"
    DUPLICATE = "duplicate"        # Job board says we already applied
    RATE_LIMITED = "rate_limited"  # Our limiter or the job board refused the call
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


class Application(Base):
    """
    One apply attempt. Immutable except status and error_message.
    """
    __tablename__ = "applications"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False)

    vacancy_id = Column(String, nullable=False)
    vacancy_title = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    vacancy_url = Column(String, nullable=True)
    resume_id = Column(String, nullable=False)

    cover_letter = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=ApplicationStatus.PENDING.value)
    match_score = Column(Float, nullable=False, default=0.0)

    automated = Column(Boolean, nullable=False, default=True)
    source = Column(String, nullable=False, default="hh.ru")
    external_application_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    applied_at = Column(UTCDateTime, default=utcnow, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # "Applications today" lookups for the status endpoint
        Index('idx_applications_user_applied', 'user_id', 'applied_at'),
    )
