"""
tasks/notification_tasks.py
Email copy of in-app notifications, delivered through Resend.

The in-app row is the source of truth; this task only mirrors it to the
recipient's inbox. Delivery failures are retried with backoff.

Usage:
    from tasks.notification_tasks import send_notification_email
    send_notification_email.delay(str(notification.id))
"""

import html
import logging
import uuid

import resend
from celery import Task
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from config.settings import settings
from shared.utils.i18n import Translator
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Base Task with DB session ──────────────────────────────────────────────────

def sync_database_url(url: str) -> str:
    """postgresql+asyncpg:// → postgresql+psycopg2://, sqlite+aiosqlite:// → sqlite://"""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker = None

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._sessionmaker is None:
            engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine)
        return DatabaseTask._sessionmaker()


# ── Delivery ───────────────────────────────────────────────────────────────────

def build_email_html(title: str, message: str, translator: Translator) -> str:
    footer = translator.t("email.footer", app_name=settings.APP_NAME)
    direction = "rtl" if translator.language == "ar" else "ltr"
    return f"""
    <div dir="{direction}" style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #2563EB; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
            <h1 style="color: white; margin: 0;">{html.escape(settings.APP_NAME)}</h1>
        </div>
        <div style="background: white; padding: 24px; border: 1px solid #eee; border-radius: 0 0 8px 8px;">
            <h2 style="color: #333;">{html.escape(title)}</h2>
            <p style="color: #666; line-height: 1.6;">{html.escape(message)}</p>
            <p style="color: #999; font-size: 12px; margin-top: 24px;">{html.escape(footer)}</p>
            <p><a href="{settings.FRONTEND_URL}/notifications">{settings.FRONTEND_URL}</a></p>
        </div>
    </div>
    """


def _send_email(to_email: str, to_name: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": [f"{to_name} <{to_email}>" if to_name else to_email],
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_notification_email(self, notification_id: str):
    """Mirror one in-app notification to its recipient's email address."""
    from shared.models.models import Notification, User

    db = self.get_session()
    try:
        row = db.execute(
            select(Notification, User)
            .join(User, User.id == Notification.user_id)
            .where(Notification.id == uuid.UUID(notification_id))
        ).first()
        if not row:
            logger.error(f"send_notification_email: notification {notification_id} not found")
            return False

        notification, user = row
        if not user.email or not user.is_active:
            return False

        language = getattr(user.preferred_language, "value", user.preferred_language)
        translator = Translator(language)
        body = build_email_html(notification.title, notification.message, translator)
        sent = _send_email(user.email, user.full_name, notification.title, body)
    finally:
        db.close()

    if not sent:
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    logger.info(f"Notification {notification_id} emailed to user {user.id}")
    return True
