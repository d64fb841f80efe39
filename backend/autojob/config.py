from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./autojob.db"

    # Counter cache (empty = in-process counters, single worker only)
    redis_url: str = ""

    # Email
    email_mode: str = "dev"  # dev | prod
    sendgrid_api_key: Optional[str] = None

    # Job board OAuth (user-delegated credentials)
    job_board_client_id: str = ""
    job_board_client_secret: str = ""
    job_board_redirect_url: str = "http://localhost:8000/api/job-board/callback"
    job_board_auth_url: str = "https://hh.ru/oauth/authorize"
    job_board_token_url: str = "https://api.hh.ru/token"
    job_board_api_url: str = "https://api.hh.ru"
    job_board_scopes: list[str] = Field(
        default_factory=lambda: [
            "read_applications",
            "write_applications",
            "read_resumes",
            "vacancies",
        ]
    )
    http_timeout_seconds: float = 30.0
    token_expiry_buffer_minutes: int = 5

    # External API quota (per user, fixed window)
    api_requests_per_hour: int = 500

    # Automation limits
    max_daily_searches: int = 1
    max_applications_per_run: int = 50
    min_match_score: float = 0.7
    run_timeout_minutes: int = 10

    # Scheduling
    default_time_of_day: str = "08:00"
    scheduler_timezone: str = "UTC"
    enforce_days_of_week: bool = False

    # Vacancies scored below the threshold are remembered so they are not re-scored
    mark_skipped_as_processed: bool = True

    # App
    debug: bool = False
    allowed_origins: str = ""


settings = Settings()
