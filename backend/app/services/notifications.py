import logging
import smtplib
from email.message import EmailMessage
from enum import Enum
from html import escape
from typing import Any, Dict, Tuple

from fastapi.concurrency import run_in_threadpool

from backend.app.core.config import settings

logger = logging.getLogger("task24.notifications")


class NotificationKind(str, Enum):
    PROJECT_INVITATION = "project_invitation"


class DeliveryFailed(Exception):
    pass


ROLE_LABELS = {
    "Collaborator": "Collaborator (can edit the project and invite others)",
    "Member": "Member (can create and edit tasks)",
    "Viewer": "Viewer (read-only access)",
}


def render(kind: NotificationKind, data: Dict[str, Any]) -> Tuple[str, str]:
    """Return (subject, html body) for a notification."""
    if kind == NotificationKind.PROJECT_INVITATION:
        project_name = escape(data.get("project_name", ""))
        inviter = escape(data.get("inviter_name") or data.get("inviter_email") or "A teammate")
        role = escape(ROLE_LABELS.get(data.get("role"), data.get("role", "")))
        url = escape(f"{settings.FRONTEND_URL}/invitation?token={data['token']}", quote=True)
        subject = f'Invitation to project "{data.get("project_name", "")}"'
        html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Project invitation</h2>
  <p>{inviter} invited you to join the project <strong>"{project_name}"</strong>.</p>
  <p>Your role: <strong>{role}</strong></p>
  <p style="margin: 30px 0;">
    <a href="{url}" style="background-color: #8B5CF6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
      Accept invitation
    </a>
  </p>
  <p style="color: #666; font-size: 14px;">The link is valid for {settings.INVITATION_TTL_HOURS} hours.</p>
</div>
"""
        return subject, html
    raise ValueError(f"Unknown notification kind: {kind}")


class EmailNotifier:
    """SMTP notification sink. Callers schedule it after their write has committed."""

    def _send(self, address: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = settings.EMAIL_FROM
        message["To"] = address
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=30) as smtp:
            if settings.EMAIL_USE_TLS:
                smtp.starttls()
            if settings.EMAIL_USER:
                smtp.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
            smtp.send_message(message)

    async def notify(self, address: str, kind: NotificationKind, data: Dict[str, Any]) -> None:
        subject, html = render(kind, data)
        if not settings.EMAIL_ENABLED:
            logger.info("Email delivery disabled; skipping %s to %s", kind.value, address)
            return
        try:
            await run_in_threadpool(self._send, address, subject, html)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailed(str(e)) from e
        logger.info("Sent %s to %s", kind.value, address)

    async def send_project_invitation(self, invitation: Dict[str, Any]) -> bool:
        """Background job: never raises, delivery failures are only logged."""
        try:
            await self.notify(
                invitation["email"],
                NotificationKind.PROJECT_INVITATION,
                {
                    "project_name": invitation.get("project_name", ""),
                    "inviter_name": invitation.get("invited_by_name"),
                    "inviter_email": invitation.get("invited_by_email"),
                    "role": invitation.get("role"),
                    "token": invitation["token"],
                },
            )
            return True
        except DeliveryFailed as e:
            logger.warning("Invitation email to %s failed: %s", invitation["email"], e)
            return False
