"""Email channel for notifications that need the user's attention outside the app."""
import html
import logging
from typing import Optional

from autojob.config import settings

logger = logging.getLogger(__name__)

SENDER_ADDRESS = "noreply@autojob.app"
SENDER_NAME = "AutoJob"


def render_notification_html(title: str, message: str) -> str:
    paragraphs = "\n".join(
        f'<p style="margin: 0 0 12px; color: #444; font-size: 15px;">{html.escape(line)}</p>'
        for line in message.splitlines() if line.strip()
    )
    return f"""
    <html>
      <body style="margin: 0; padding: 24px; background: #eef1f5; font-family: Helvetica, Arial, sans-serif;">
        <table role="presentation" width="100%" style="max-width: 560px; margin: 0 auto; background: #fff; border-radius: 6px;">
          <tr><td style="padding: 28px 32px 8px;">
            <h2 style="margin: 0 0 16px; color: #1f2933; font-size: 20px;">{html.escape(title)}</h2>
            {paragraphs}
          </td></tr>
          <tr><td style="padding: 8px 32px 28px; color: #8a94a6; font-size: 12px;">
            Automatic search settings are in your AutoJob dashboard.
          </td></tr>
        </table>
      </body>
    </html>
    """


class EmailService:
    """
    Sends notification emails.

    In ``dev`` mode messages are only logged; ``prod`` sends through SendGrid.
    """

    def __init__(self, mode: Optional[str] = None):
        self.mode = mode or settings.email_mode
        self.sendgrid_client = None
        if self.mode == "prod":
            from sendgrid import SendGridAPIClient
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)

    async def send_notification_email(self, email: str, title: str, message: str) -> bool:
        subject = f"{SENDER_NAME}: {title}"
        text_content = f"{title}\n\n{message}\n"
        return await self._send_email(email, subject, text_content, render_notification_html(title, message))

    async def _send_email(self, to_email: str, subject: str, text_content: str, html_content: str) -> bool:
        if self.sendgrid_client is None:
            logger.info(f"[DEV MODE] Email to {to_email}: {subject}")
            logger.info(f"[DEV MODE] Content:\n{text_content}")
            return True

        from sendgrid.helpers.mail import Content, Email, Mail, To

        mail = Mail(
            from_email=Email(SENDER_ADDRESS, SENDER_NAME),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=Content("text/plain", text_content),
            html_content=Content("text/html", html_content),
        )
        try:
            response = self.sendgrid_client.send(mail)
        except Exception as e:
            # SendGrid raises python_http_client errors for non-2xx responses
            logger.error(f"Error sending email to {to_email}: {e}")
            return False

        if not 200 <= response.status_code < 300:
            logger.error(f"SendGrid rejected email to {to_email}: HTTP {response.status_code}")
            return False
        logger.info(f"Email sent to {to_email}: {subject}")
        return True
