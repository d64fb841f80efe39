from sqlalchemy import Column, String, Integer, Float, Text, ForeignKey
import uuid
import enum

from autojob.database import Base
from autojob.database_types import GUID, JSON, UTCDateTime, utcnow


class JobStatus(str, enum.Enum):
    """Automation job status."""
    ACTIVE = "active"              # Scheduled, runs at every tick
    PAUSED = "paused"              # Stopped by the user
    DISCONNECTED = "disconnected"  # Credential lost, waits for reconnect


DEFAULT_SCHEDULE = {
    "enabled": True,
    "frequency": "daily",
    "time_of_day": "08:00",
    "days_of_week": [1, 2, 3, 4, 5],  # Mon-Fri, 0 = Sunday
}


class AutomationJob(Base):
    __tablename__ = "automation_jobs"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)

    # One job per user; jobs are paused, never deleted
    user_id = Column(GUID, ForeignKey("users.id"), nullable=False, unique=True, index=True)

    status = Column(String, nullable=False, default=JobStatus.ACTIVE.value)

    # Structure: {"enabled": true, "frequency": "daily", "time_of_day": "08:00", "days_of_week": [1, 2, 3, 4, 5]}
    schedule = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_SCHEDULE))

    # Structure: see autojob.schemas.automation.SearchSettings
    search_settings = Column(JSON, nullable=False, default=dict)

    # Cumulative statistics (totals across all runs)
    total_runs = Column(Integer, nullable=False, default=0)
    vacancies_found = Column(Integer, nullable=False, default=0)
    applications_sent = Column(Integer, nullable=False, default=0)
    avg_match_score = Column(Float, nullable=False, default=0.0)
    evaluated_count = Column(Integer, nullable=False, default=0)  # Weight for avg_match_score
    external_requests = Column(Integer, nullable=False, default=0)

    last_run = Column(UTCDateTime, nullable=True)
    next_run = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE.value
