"""
services/notification/dispatcher.py
Turns a lifecycle event into exactly one in-app notification row for one
user, from a fixed (title, message, type) template per event kind.

Not idempotent: every call inserts a new row. Callers that need
de-duplication must do it themselves.
"""

import logging
from datetime import date, time
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.realtime.channel import RealtimeChannel
from shared.models.models import Notification, NotificationType, User
from shared.schemas.schemas import NotificationResponse
from shared.utils.errors import ValidationError
from shared.utils.i18n import Translator

logger = logging.getLogger(__name__)


# event kind → notification type; title/message come from "<event>.title" / "<event>.message"
EVENT_TYPES = {
    "booking_request": NotificationType.BOOKING_REQUEST,
    "booking_confirmed": NotificationType.BOOKING_UPDATE,
    "booking_declined": NotificationType.BOOKING_UPDATE,
    "booking_cancelled": NotificationType.BOOKING_UPDATE,
    "new_message": NotificationType.INFO,
}

# template variable → translation key used when the value is missing
FALLBACKS = {
    "client_name": "fallback.client",
    "provider_name": "fallback.provider",
    "actor_name": "fallback.user",
    "sender_name": "fallback.user",
    "service_details": "fallback.service",
    "date": "fallback.date",
    "time": "fallback.time",
}


def _format(value):
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return value


def render(event: str, translator: Translator, **template_vars) -> tuple[str, str]:
    """Return (title, message) for `event` in the translator's language."""
    if event not in EVENT_TYPES:
        raise ValueError(f"Unknown notification event: {event}")
    params = {key: None for key in FALLBACKS}
    params.update(template_vars)
    for key, value in params.items():
        if not value and key in FALLBACKS:
            value = translator.t(FALLBACKS[key])
        params[key] = _format(value)
    return translator.t(f"{event}.title", **params), translator.t(f"{event}.message", **params)


class NotificationDispatcher:
    def __init__(self, db: AsyncSession, realtime: Optional[RealtimeChannel] = None):
        self.db = db
        self.realtime = realtime

    async def notify(
        self,
        user_id: UUID,
        event: str,
        related_id: Optional[UUID] = None,
        **template_vars,
    ) -> Notification:
        """Insert and commit one notification for `user_id`, then fan it out."""
        result = await self.db.execute(
            select(User.preferred_language).where(User.id == user_id)
        )
        language = result.scalar_one_or_none()
        if language is None:
            raise ValidationError("Notification target does not exist")

        lang = language.value if hasattr(language, "value") else language
        title, message = render(event, Translator(lang), **template_vars)
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=EVENT_TYPES[event],
            related_id=related_id,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()

        if self.realtime is not None:
            await self.realtime.publish(
                user_id,
                "notifications",
                "INSERT",
                NotificationResponse.model_validate(notification).model_dump(mode="json"),
            )
        if settings.EMAIL_NOTIFICATIONS_ENABLED:
            self._queue_email(notification)
        return notification

    @staticmethod
    def _queue_email(notification: Notification) -> None:
        try:
            from tasks.notification_tasks import send_notification_email
            send_notification_email.delay(str(notification.id))
        except Exception as e:
            # Email is a secondary channel; the in-app row already exists
            logger.warning(f"Could not queue email for notification {notification.id}: {e}")
