"""
Exception hierarchy for the automation engine.

Run-level failures fall into four categories that decide what happens to the
job afterwards:

- connection: credential invalid or unrefreshable -> job becomes disconnected
- quota: daily cap or rate limit hit -> run aborts, job stays active
- data: no resume or malformed settings -> run aborts, job stays active
- persistence: results could not be saved -> statistics are left untouched

Per-item errors (a single apply call failing) never abort a run.
"""
from datetime import timedelta
from typing import Optional


class AutomationError(Exception):
    """Base exception for all automation errors"""
    category = "internal"


# Connection -----------------------------------------------------------------

class AuthError(AutomationError):
    """The user's job board credential is missing, invalid or could not be refreshed"""
    category = "connection"


# Quota ----------------------------------------------------------------------

class QuotaError(AutomationError):
    category = "quota"


class DailyCapExceededError(QuotaError):
    def __init__(self, used: int, limit: int):
        self.used = used
        self.limit = limit
        super().__init__(f"Daily search limit reached: {used}/{limit}")


class RateLimitExceededError(QuotaError):
    def __init__(self, retry_after: timedelta):
        self.retry_after = retry_after
        super().__init__(
            f"Job board rate limit exceeded, retry after {int(retry_after.total_seconds())}s"
        )


# Data -----------------------------------------------------------------------

class DataError(AutomationError):
    category = "data"


class NoResumeError(DataError):
    def __init__(self):
        super().__init__("No resumes found in the job board account")


class InvalidSettingsError(DataError):
    pass


# Per item -------------------------------------------------------------------

class PerItemError(AutomationError):
    """A single vacancy could not be applied to"""
    category = "item"


class DuplicateApplicationError(PerItemError):
    pass


class ApplyRateLimitError(PerItemError):
    def __init__(self, message: str, retry_after: Optional[timedelta] = None):
        self.retry_after = retry_after
        super().__init__(message)


class JobBoardError(PerItemError):
    """Any other job board API failure"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# Run ------------------------------------------------------------------------

class PersistenceError(AutomationError):
    category = "persistence"


class RunDeadlineExceeded(AutomationError):
    category = "timeout"


# Service --------------------------------------------------------------------

class NotConnectedError(AutomationError):
    def __init__(self):
        super().__init__("Job board account not connected")


class AlreadyActiveError(AutomationError):
    def __init__(self):
        super().__init__("Automation already running for user")


class NotActiveError(AutomationError):
    def __init__(self):
        super().__init__("Automation is not active")


class AutomationNotFoundError(AutomationError):
    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Automation job not found for user {user_id}")
