"""
User notifications.

``Notifier.notify`` is fire-and-forget: it schedules delivery in the
background and returns immediately, so a slow or failing channel never holds
up a run. Every event is stored as an in-app Notification; connection-loss
and failure events are also emailed.
"""
import asyncio
import enum
import logging
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autojob.models.notification import Notification
from autojob.models.user import User
from autojob.services.email import EmailService

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    AUTOMATION_STARTED = "automation_started"
    AUTOMATION_STOPPED = "automation_stopped"
    AUTOMATION_RESUMED = "automation_resumed"
    AUTOMATION_COMPLETED = "automation_completed"
    AUTOMATION_FAILED = "automation_failed"
    APPLICATION_SENT = "application_sent"
    CONNECTION_LOST = "hh_connection_lost"


# Also delivered by email
EMAIL_TYPES = {NotificationType.CONNECTION_LOST, NotificationType.AUTOMATION_FAILED}


def render(event: NotificationType, payload: dict) -> tuple[str, str]:
    """Title and message for an event."""
    if event == NotificationType.AUTOMATION_STARTED:
        next_run = payload.get("next_run") or "soon"
        return "Automation started", f"Automatic job search is on. Next run: {next_run}."
    if event == NotificationType.AUTOMATION_STOPPED:
        return "Automation stopped", "Automatic job search is off. You can resume it at any time."
    if event == NotificationType.AUTOMATION_RESUMED:
        return "Automation resumed", "Your job board account is connected again and automatic search has resumed."
    if event == NotificationType.AUTOMATION_COMPLETED:
        return (
            "Automatic search report",
            f"Vacancies found: {payload.get('vacancies_found', 0)}, "
            f"new: {payload.get('new_vacancies', 0)}, "
            f"applications sent: {payload.get('applications_sent', 0)}.",
        )
    if event == NotificationType.AUTOMATION_FAILED:
        return "Automatic search failed", payload.get("error") or "The last automatic run did not finish."
    if event == NotificationType.APPLICATION_SENT:
        title = payload.get("vacancy_title") or "a vacancy"
        company = payload.get("company_name")
        where = f"{title} at {company}" if company else title
        return "Application sent", f"Applied to {where} (match {payload.get('match_score', 0):.0%})."
    if event == NotificationType.CONNECTION_LOST:
        return (
            "Job board account disconnected",
            "We could not renew access to your job board account. Reconnect it to resume automatic search.",
        )
    return event.value, ""


class Notifier:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        email_service: Optional[EmailService] = None,
    ):
        self.session_factory = session_factory
        self.email_service = email_service or EmailService()
        self._pending: set[asyncio.Task] = set()

    def notify(self, user_id: UUID, event: NotificationType, payload: Optional[dict[str, Any]] = None) -> None:
        """Schedule delivery and return without waiting."""
        task = asyncio.create_task(self._deliver(user_id, event, payload or {}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, user_id: UUID, event: NotificationType, payload: dict) -> None:
        title, message = render(event, payload)
        try:
            async with self.session_factory() as db:
                db.add(Notification(
                    user_id=user_id,
                    type=event.value,
                    title=title,
                    message=message,
                    data=payload,
                ))
                await db.commit()

                email = None
                if event in EMAIL_TYPES:
                    result = await db.execute(select(User.email).where(User.id == user_id))
                    email = result.scalar_one_or_none()

            if email:
                await self.email_service.send_notification_email(email, title, message)

            logger.info(f"Notification {event.value} delivered to user {user_id}")
        except Exception as e:
            logger.error(f"Failed to deliver {event.value} notification to user {user_id}: {e}", exc_info=True)
