"""
services/booking/lifecycle.py
Booking state machine and the chat gate that hangs off it.

States: PENDING → CONFIRMED | DECLINED
        CONFIRMED → COMPLETED | CANCELLED
DECLINED, COMPLETED and CANCELLED are terminal; only an admin override
moves a booking out of them.

Every operation checks, in order: existence (NotFound), authorization
(Forbidden), state precondition (InvalidStateTransition / ChatNotUnlocked).
The status change and its audit row are committed first. Notifications
follow in their own unit of work and a failure there is only logged.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.notification.dispatcher import NotificationDispatcher
from services.realtime.channel import RealtimeChannel
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    Message,
    PriceType,
    Service,
    User,
    UserRole,
)
from shared.schemas.schemas import BookingCreateRequest, ChatMessageResponse
from shared.utils.errors import (
    ChatNotUnlocked,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    PersistenceFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.DECLINED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
}
CHAT_OPEN = {BookingStatus.CONFIRMED, BookingStatus.COMPLETED}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in TRANSITIONS.get(BookingStatus(current), set())


def is_chat_unlocked(current: BookingStatus) -> bool:
    return BookingStatus(current) in CHAT_OPEN


def quote_price(
    service: Optional[Service],
    duration_hours: Optional[Decimal],
    submitted: Optional[Decimal],
) -> Optional[Decimal]:
    """
    Hourly services: rate × duration. Fixed and package services: the fixed
    price. Anything else keeps the price the client submitted.
    """
    if service is not None:
        price_type = PriceType(service.price_type)
        if price_type == PriceType.HOURLY and service.hourly_rate is not None and duration_hours:
            return (Decimal(service.hourly_rate) * Decimal(duration_hours)).quantize(Decimal("0.01"))
        if price_type in (PriceType.FIXED, PriceType.PACKAGE) and service.fixed_price is not None:
            return Decimal(service.fixed_price)
    return submitted


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BookingLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationDispatcher,
        realtime: Optional[RealtimeChannel] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.realtime = realtime

    # ── Queries ───────────────────────────────────────────────

    async def get_booking(self, booking_id: UUID) -> Booking:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFound("Booking not found")
        return booking

    async def get_booking_for(self, booking_id: UUID, actor: User) -> Booking:
        """Load a booking visible to `actor`: one of its parties or an admin."""
        booking = await self.get_booking(booking_id)
        if actor.role != UserRole.ADMIN and actor.id not in booking.party_ids():
            raise Forbidden("Not your booking")
        return booking

    # ── Creation ──────────────────────────────────────────────

    async def request_booking(self, client: User, data: BookingCreateRequest) -> Booking:
        if data.provider_id == client.id:
            raise ValidationError("You cannot book your own services")

        result = await self.db.execute(select(User).where(User.id == data.provider_id))
        provider = result.scalar_one_or_none()
        if not provider or provider.role != UserRole.PROVIDER or not provider.is_active:
            raise NotFound("Provider not found")

        service = None
        if data.service_id is not None:
            result = await self.db.execute(select(Service).where(Service.id == data.service_id))
            service = result.scalar_one_or_none()
            if not service or service.provider_id != provider.id:
                raise NotFound("Service not found for this provider")
            if not service.is_active:
                raise ValidationError("This service is not currently available")

        booking = Booking(
            client_id=client.id,
            provider_id=provider.id,
            service_id=service.id if service else None,
            booking_date=data.booking_date,
            booking_time=data.booking_time,
            duration_hours=data.duration_hours,
            total_price=quote_price(service, data.duration_hours, data.total_price),
            notes=data.notes,
            status=BookingStatus.PENDING,
        )
        self.db.add(booking)
        await self._commit(flush_only=True)
        self._audit(booking, None, BookingStatus.PENDING, client, reason="Booking requested")
        await self._commit()

        logger.info(f"Booking {booking.id} requested by {client.id} for provider {provider.id}")
        await self._notify_safely(
            provider.id,
            "booking_request",
            booking.id,
            reload=(booking, client),
            client_name=client.full_name,
            date=booking.booking_date,
            time=booking.booking_time,
        )
        return booking

    # ── Transitions ───────────────────────────────────────────

    async def accept(self, booking_id: UUID, actor: User) -> Booking:
        booking = await self.get_booking(booking_id)
        self._require_provider_or_admin(booking, actor)
        await self._transition(booking, actor, BookingStatus.CONFIRMED)

        await self._notify_safely(
            booking.client_id,
            "booking_confirmed",
            booking.id,
            reload=(booking,),
            provider_name=await self._display_name(booking.provider_id),
            date=booking.booking_date,
            time=booking.booking_time,
        )
        return booking

    async def decline(self, booking_id: UUID, actor: User, reason: Optional[str] = None) -> Booking:
        booking = await self.get_booking(booking_id)
        self._require_provider_or_admin(booking, actor)
        await self._transition(booking, actor, BookingStatus.DECLINED, reason=reason)

        await self._notify_safely(
            booking.client_id,
            "booking_declined",
            booking.id,
            reload=(booking,),
            provider_name=await self._display_name(booking.provider_id),
            date=booking.booking_date,
            time=booking.booking_time,
        )
        return booking

    async def complete(self, booking_id: UUID, actor: User) -> Booking:
        booking = await self.get_booking(booking_id)
        self._require_provider_or_admin(booking, actor)
        await self._transition(booking, actor, BookingStatus.COMPLETED)
        return booking

    async def cancel(self, booking_id: UUID, actor: User, reason: str) -> Booking:
        booking = await self.get_booking(booking_id)
        is_admin = actor.role == UserRole.ADMIN
        if not is_admin and actor.id not in booking.party_ids():
            raise Forbidden("Not your booking")
        await self._transition(booking, actor, BookingStatus.CANCELLED, reason=reason)

        actor_name = actor.full_name
        recipients = booking.party_ids() if is_admin else (booking.counterparty_of(actor.id),)
        for user_id in recipients:
            await self._notify_safely(
                user_id,
                "booking_cancelled",
                booking.id,
                reload=(booking, actor),
                actor_name=actor_name,
                date=booking.booking_date,
                time=booking.booking_time,
            )
        return booking

    async def override_status(
        self, booking_id: UUID, admin: User, status: BookingStatus, reason: str
    ) -> Booking:
        """Admin escape hatch: any state to any state, audited, no notifications."""
        booking = await self.get_booking(booking_id)
        if admin.role != UserRole.ADMIN:
            raise Forbidden("Admin access required")

        from_status = BookingStatus(booking.status)
        target = BookingStatus(status)
        self._apply(booking, admin, target, reason)
        self._audit(booking, from_status, target, admin, reason=reason, metadata={"override": True})
        await self._commit()
        logger.warning(
            f"Booking {booking.id} overridden {from_status.value} → {target.value} by admin {admin.id}"
        )
        return booking

    # ── Chat ──────────────────────────────────────────────────

    async def send_message(self, booking_id: UUID, sender: User, content: str) -> Message:
        booking = await self.get_booking(booking_id)
        if sender.id not in booking.party_ids():
            raise Forbidden("Only the client and the provider can chat on a booking")
        if not is_chat_unlocked(booking.status):
            raise ChatNotUnlocked()

        content = (content or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty")

        recipient_id = booking.counterparty_of(sender.id)
        message = Message(
            booking_id=booking.id,
            sender_id=sender.id,
            recipient_id=recipient_id,
            content=content,
        )
        self.db.add(message)
        await self._commit()

        if self.realtime is not None:
            record = ChatMessageResponse.model_validate(message).model_dump(mode="json")
            for user_id in (recipient_id, sender.id):
                await self.realtime.publish(user_id, "messages", "INSERT", record)

        await self._notify_safely(
            recipient_id,
            "new_message",
            booking.id,
            reload=(message, sender),
            sender_name=sender.full_name,
            service_details=await self._service_title(booking.service_id),
        )
        return message

    # ── Internals ─────────────────────────────────────────────

    @staticmethod
    def _require_provider_or_admin(booking: Booking, actor: User) -> None:
        if actor.role != UserRole.ADMIN and actor.id != booking.provider_id:
            raise Forbidden("Only the booking's provider can do this")

    async def _transition(
        self,
        booking: Booking,
        actor: User,
        target: BookingStatus,
        reason: Optional[str] = None,
    ) -> None:
        current = BookingStatus(booking.status)
        if not can_transition(current, target):
            raise InvalidStateTransition(
                f"Cannot move a {current.value} booking to {target.value}"
            )
        self._apply(booking, actor, target, reason)
        self._audit(booking, current, target, actor, reason=reason)
        await self._commit()
        logger.info(f"Booking {booking.id}: {current.value} → {target.value} by {actor.id}")

    @staticmethod
    def _apply(booking: Booking, actor: User, target: BookingStatus, reason: Optional[str]) -> None:
        booking.status = target
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = _now()
        elif target == BookingStatus.DECLINED:
            booking.decline_reason = reason
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = _now()
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_at = _now()
            booking.cancellation_reason = reason
            if actor.role == UserRole.ADMIN:
                booking.cancelled_by = "admin"
            elif actor.id == booking.client_id:
                booking.cancelled_by = "client"
            else:
                booking.cancelled_by = "provider"

    def _audit(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: User,
        reason: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        self.db.add(
            BookingAuditLog(
                booking_id=booking.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                changed_by_id=actor.id,
                reason=reason,
                audit_metadata=metadata,
            )
        )

    async def _commit(self, flush_only: bool = False) -> None:
        try:
            if flush_only:
                await self.db.flush()
            else:
                await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Booking write rejected by constraint: {e.orig}")
            raise PersistenceFailure("This slot is already booked", status_code=409) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Booking write failed: {e}")
            raise PersistenceFailure() from e

    async def _notify_safely(
        self, user_id: UUID, event: str, related_id: UUID, reload: tuple = (), **template_vars
    ) -> None:
        """
        Dispatch one notification. On failure roll back only the notification
        and reload `reload` (rollback expires every instance in the session).
        """
        try:
            await self.notifier.notify(user_id, event, related_id, **template_vars)
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Notification '{event}' for user {user_id} failed: {e}")
            for obj in reload:
                await self.db.refresh(obj)

    async def _display_name(self, user_id: UUID) -> Optional[str]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        return user.full_name if user else None

    async def _service_title(self, service_id: Optional[UUID]) -> Optional[str]:
        if service_id is None:
            return None
        result = await self.db.execute(select(Service.service_title).where(Service.id == service_id))
        return result.scalar_one_or_none()


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> BookingLifecycle:
    """FastAPI dependency: a controller bound to the request's session."""
    realtime = RealtimeChannel(redis)
    return BookingLifecycle(db, NotificationDispatcher(db, realtime), realtime)
