"""Automation-related Pydantic schemas."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ScheduleConfig(BaseModel):
    """When a job runs."""
    enabled: bool = True
    frequency: Literal["daily", "weekly", "manual"] = "daily"
    time_of_day: str = "08:00"
    days_of_week: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])  # 0 = Sunday

    @field_validator("time_of_day")
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("time_of_day must be HH:MM")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError("time_of_day must be HH:MM")
        return f"{hour:02d}:{minute:02d}"

    @field_validator("days_of_week")
    @classmethod
    def validate_days_of_week(cls, v: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("days_of_week must contain values 0-6 (0 = Sunday)")
        return sorted(set(v))


class SearchSettings(BaseModel):
    """What the job searches for. Read-only to the orchestrator."""
    positions: list[str] = Field(default_factory=list)
    salary_min: Optional[int] = Field(default=None, ge=0)
    salary_max: Optional[int] = Field(default=None, ge=0)
    area_id: Optional[str] = None
    locations: list[str] = Field(default_factory=list)
    experience: Optional[str] = None
    employment: Optional[str] = None
    schedule: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    exclude_words: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_salary_range(self) -> "SearchSettings":
        if self.salary_min and self.salary_max and self.salary_min > self.salary_max:
            raise ValueError("salary_min must not exceed salary_max")
        return self


class StartAutomationRequest(BaseModel):
    """Optional overrides when starting automation."""
    schedule: Optional[ScheduleConfig] = None
    search_settings: Optional[SearchSettings] = None
    run_immediately: bool = False


class UpdateAutomationSettingsRequest(BaseModel):
    schedule: Optional[ScheduleConfig] = None
    search_settings: Optional[SearchSettings] = None


class JobStatistics(BaseModel):
    total_runs: int = 0
    vacancies_found: int = 0
    applications_sent: int = 0
    avg_match_score: float = 0.0
    external_requests: int = 0


class TodayStats(BaseModel):
    applications: int = 0
    searches: int = 0
    last_search: Optional[datetime] = None


class RateLimitInfo(BaseModel):
    allowed: bool
    used: int
    max: int
    retry_after_seconds: int = 0


class AutomationJobResponse(BaseModel):
    """Response with job details."""
    job_id: str
    user_id: str
    status: str
    schedule: ScheduleConfig
    search_settings: SearchSettings
    stats: JobStatistics
    last_run: Optional[datetime]
    next_run: Optional[datetime]
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AutomationStatusResponse(AutomationJobResponse):
    """Job details plus live counters."""
    connected: bool
    running: bool
    today: TodayStats
    rate_limit: RateLimitInfo


class RunNowResponse(BaseModel):
    accepted: bool
    job_id: str
    message: str


class ApplicationResponse(BaseModel):
    id: str
    vacancy_id: str
    vacancy_title: Optional[str]
    company_name: Optional[str]
    status: str
    match_score: float
    applied_at: datetime
    external_application_id: Optional[str]
    error_message: Optional[str]


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    total: int


class ConnectAccountRequest(BaseModel):
    authorization_code: str = Field(min_length=1)
    state: Optional[str] = None


class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str


class ConnectionStatusResponse(BaseModel):
    connected: bool
    expires_at: Optional[datetime] = None
    minutes_left: Optional[int] = None
    scope: Optional[str] = None
