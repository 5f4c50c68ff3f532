"""
Notification service.
Notifications are rows written inside the caller's transaction; e-mail is a
best-effort copy sent after commit when SMTP is configured.
"""
import smtplib
import uuid
from email.message import EmailMessage
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification


logger = structlog.get_logger(__name__)


def create_notification(db: Session, user_id: uuid.UUID, message: str) -> Notification:
    """
    Append a notification for a user.

    The row is added to the session but not committed, so it shares the
    transaction of the lifecycle operation that produced it.
    """
    notification = Notification(user_id=user_id, message=message)
    db.add(notification)
    return notification


def list_notifications(db: Session, user_id: uuid.UUID, limit: Optional[int] = 50) -> List[Notification]:
    query = (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def email_enabled() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def send_email(to: Optional[str], subject: str, body: str) -> bool:
    """
    Send a plain-text e-mail if SMTP is configured.

    Returns:
        True if the message was handed to the SMTP server
    """
    if not to or not email_enabled():
        logger.debug("email_skipped", to=to, subject=subject)
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content(body)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("notification_email_failed", to=to, error=str(e))
        return False
    return True
