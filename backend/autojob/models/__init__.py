"""Database models"""
from autojob.models.user import User
from autojob.models.automation_job import AutomationJob, JobStatus
from autojob.models.user_credential import UserCredential
from autojob.models.application import Application, ApplicationStatus
from autojob.models.processed_vacancy import ProcessedVacancy, ProcessedStatus
from autojob.models.notification import Notification

__all__ = [
    "User",
    "AutomationJob",
    "JobStatus",
    "UserCredential",
    "Application",
    "ApplicationStatus",
    "ProcessedVacancy",
    "ProcessedStatus",
    "Notification",
]
