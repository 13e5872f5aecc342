"""
tests/test_lifecycle.py
BookingLifecycle exercised directly: the transition table, order of checks,
side-effect notifications, the chat gate, and tolerance of notification
failures.
"""

import json
import logging
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.lifecycle import (
    BookingLifecycle,
    can_transition,
    is_chat_unlocked,
    quote_price,
)
from services.realtime.channel import channel_for
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    Message,
    Notification,
    NotificationType,
    PriceType,
    Service,
    User,
)
from shared.schemas.schemas import BookingCreateRequest
from shared.utils.errors import (
    ChatNotUnlocked,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    PersistenceFailure,
    ValidationError,
)
from tests.conftest import future_slot, make_booking


async def _notifications_for(db: AsyncSession, user_id) -> list[Notification]:
    result = await db.execute(
        select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at)
    )
    return list(result.scalars().all())


async def _run(lifecycle: BookingLifecycle, action: str, booking: Booking, client: User, provider: User):
    if action == "accept":
        return await lifecycle.accept(booking.id, provider)
    if action == "decline":
        return await lifecycle.decline(booking.id, provider, "Not available")
    if action == "complete":
        return await lifecycle.complete(booking.id, provider)
    return await lifecycle.cancel(booking.id, client, "Change of plans")


class ExplodingDispatcher:
    async def notify(self, *args, **kwargs):
        raise RuntimeError("notification store unavailable")


# ── Pure rules ─────────────────────────────────────────────────────────────────

def test_transition_table():
    allowed = {
        (BookingStatus.PENDING, BookingStatus.CONFIRMED),
        (BookingStatus.PENDING, BookingStatus.DECLINED),
        (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    }
    for current in BookingStatus:
        for target in BookingStatus:
            assert can_transition(current, target) == ((current, target) in allowed)


def test_chat_unlocked_only_for_confirmed_and_completed():
    assert {s for s in BookingStatus if is_chat_unlocked(s)} == {
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
    }


def test_quote_price_rules():
    hourly = Service(price_type=PriceType.HOURLY, hourly_rate=Decimal("40.00"))
    fixed = Service(price_type=PriceType.FIXED, fixed_price=Decimal("150.00"))
    package = Service(price_type=PriceType.PACKAGE, fixed_price=Decimal("300.00"))

    assert quote_price(hourly, Decimal("2.5"), Decimal("1")) == Decimal("100.00")
    assert quote_price(fixed, Decimal("3"), None) == Decimal("150.00")
    assert quote_price(package, None, None) == Decimal("300.00")
    # No duration on an hourly service: the client's own figure stands
    assert quote_price(hourly, None, Decimal("55.00")) == Decimal("55.00")
    assert quote_price(None, Decimal("2"), Decimal("70.00")) == Decimal("70.00")


# ── Request ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_request_booking_is_pending_and_notifies_provider(
    lifecycle: BookingLifecycle, db: AsyncSession, user: User, provider_user: User, service: Service
):
    booking_date, booking_time = future_slot()
    data = BookingCreateRequest(
        provider_id=provider_user.id,
        service_id=service.id,
        booking_date=booking_date,
        booking_time=booking_time,
        duration_hours=Decimal("2"),
    )

    booking = await lifecycle.request_booking(user, data)

    assert booking.status == BookingStatus.PENDING
    assert booking.total_price == Decimal("80.00")

    notifications = await _notifications_for(db, provider_user.id)
    assert len(notifications) == 1
    notif = notifications[0]
    assert notif.type == NotificationType.BOOKING_REQUEST
    assert notif.related_id == booking.id
    # Provider reads French
    assert notif.title == "🔔 Nouvelle demande de réservation"
    assert "Amira Ben Salah" in notif.message
    assert booking_date.strftime("%d/%m/%Y") in notif.message


@pytest.mark.asyncio
async def test_request_booking_of_self_rejected(
    lifecycle: BookingLifecycle, provider_user: User
):
    booking_date, booking_time = future_slot()
    data = BookingCreateRequest(
        provider_id=provider_user.id, booking_date=booking_date, booking_time=booking_time
    )
    with pytest.raises(ValidationError):
        await lifecycle.request_booking(provider_user, data)


@pytest.mark.asyncio
async def test_request_booking_unknown_provider(lifecycle: BookingLifecycle, user: User, other_user: User):
    booking_date, booking_time = future_slot()
    # other_user exists but is a client, not a provider
    for provider_id in (uuid.uuid4(), other_user.id):
        data = BookingCreateRequest(
            provider_id=provider_id, booking_date=booking_date, booking_time=booking_time
        )
        with pytest.raises(NotFound):
            await lifecycle.request_booking(user, data)


@pytest.mark.asyncio
async def test_request_booking_same_live_slot_rejected(
    lifecycle: BookingLifecycle, user: User, provider_user: User
):
    booking_date, booking_time = future_slot()
    data = BookingCreateRequest(
        provider_id=provider_user.id, booking_date=booking_date, booking_time=booking_time
    )
    await lifecycle.request_booking(user, data)

    with pytest.raises(PersistenceFailure) as exc_info:
        await lifecycle.request_booking(user, data)
    assert exc_info.value.status_code == 409


# ── Transition table against the store ─────────────────────────────────────────

ACTIONS = {
    "accept": BookingStatus.CONFIRMED,
    "decline": BookingStatus.DECLINED,
    "complete": BookingStatus.COMPLETED,
    "cancel": BookingStatus.CANCELLED,
}


@pytest.mark.asyncio
@pytest.mark.parametrize("start", list(BookingStatus))
@pytest.mark.parametrize("action", list(ACTIONS))
async def test_every_action_from_every_state(
    lifecycle: BookingLifecycle,
    db: AsyncSession,
    user: User,
    provider_user: User,
    start: BookingStatus,
    action: str,
):
    booking = await make_booking(db, user, provider_user, start)
    booking_id = booking.id
    target = ACTIONS[action]

    if can_transition(start, target):
        updated = await _run(lifecycle, action, booking, user, provider_user)
        assert updated.status == target
    else:
        with pytest.raises(InvalidStateTransition):
            await _run(lifecycle, action, booking, user, provider_user)
        status = await db.scalar(select(Booking.status).where(Booking.id == booking_id))
        assert status == start


@pytest.mark.asyncio
async def test_double_accept(lifecycle: BookingLifecycle, pending_booking: Booking, provider_user: User):
    await lifecycle.accept(pending_booking.id, provider_user)
    with pytest.raises(InvalidStateTransition):
        await lifecycle.accept(pending_booking.id, provider_user)


# ── Order of checks ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_missing_booking_is_not_found(lifecycle: BookingLifecycle, provider_user: User):
    with pytest.raises(NotFound):
        await lifecycle.accept(uuid.uuid4(), provider_user)


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["accept", "decline", "complete"])
async def test_client_cannot_act_as_provider(
    lifecycle: BookingLifecycle, db: AsyncSession, pending_booking: Booking, user: User, action: str
):
    booking_id = pending_booking.id
    with pytest.raises(Forbidden):
        await getattr(lifecycle, action)(booking_id, user)
    status = await db.scalar(select(Booking.status).where(Booking.id == booking_id))
    assert status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_authorization_checked_before_state(
    lifecycle: BookingLifecycle, db: AsyncSession, user: User, provider_user: User, other_user: User
):
    """A stranger acting on a terminal booking is told Forbidden, not InvalidStateTransition."""
    booking = await make_booking(db, user, provider_user, BookingStatus.DECLINED)
    with pytest.raises(Forbidden):
        await lifecycle.accept(booking.id, other_user)
    with pytest.raises(Forbidden):
        await lifecycle.cancel(booking.id, other_user, "not mine")


@pytest.mark.asyncio
async def test_admin_can_accept(lifecycle: BookingLifecycle, pending_booking: Booking, admin_user: User):
    booking = await lifecycle.accept(pending_booking.id, admin_user)
    assert booking.status == BookingStatus.CONFIRMED


# ── Side effects ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_accept_notifies_client_and_unlocks_chat(
    lifecycle: BookingLifecycle, db: AsyncSession, pending_booking: Booking, user: User, provider_user: User
):
    booking = await lifecycle.accept(pending_booking.id, provider_user)
    assert booking.confirmed_at is not None

    notifications = await _notifications_for(db, user.id)
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.BOOKING_UPDATE
    assert notifications[0].title == "🎉 Booking confirmed!"
    assert "Sami Gharbi" in notifications[0].message

    message = await lifecycle.send_message(booking.id, user, "Hello, see you then!")
    assert message.recipient_id == provider_user.id


@pytest.mark.asyncio
async def test_decline_locks_chat_for_good(
    lifecycle: BookingLifecycle, db: AsyncSession, pending_booking: Booking, user: User, provider_user: User
):
    booking = await lifecycle.decline(pending_booking.id, provider_user, "Fully booked that day")
    assert booking.decline_reason == "Fully booked that day"

    notifications = await _notifications_for(db, user.id)
    assert [n.title for n in notifications] == ["📋 Booking declined"]

    with pytest.raises(ChatNotUnlocked):
        await lifecycle.send_message(booking.id, user, "Why?")


@pytest.mark.asyncio
async def test_complete_sends_no_notification(
    lifecycle: BookingLifecycle, db: AsyncSession, confirmed_booking: Booking, user: User, provider_user: User
):
    booking = await lifecycle.complete(confirmed_booking.id, provider_user)
    assert booking.completed_at is not None
    assert await _notifications_for(db, user.id) == []
    assert await _notifications_for(db, provider_user.id) == []


@pytest.mark.asyncio
async def test_cancel_by_client_notifies_provider_only(
    lifecycle: BookingLifecycle, db: AsyncSession, confirmed_booking: Booking, user: User, provider_user: User
):
    booking = await lifecycle.cancel(confirmed_booking.id, user, "Change of plans")
    assert booking.cancelled_by == "client"
    assert booking.cancellation_reason == "Change of plans"

    assert await _notifications_for(db, user.id) == []
    provider_notes = await _notifications_for(db, provider_user.id)
    assert len(provider_notes) == 1
    assert provider_notes[0].title == "Réservation annulée"
    assert "Amira Ben Salah" in provider_notes[0].message


@pytest.mark.asyncio
async def test_cancel_by_admin_notifies_both_parties(
    lifecycle: BookingLifecycle,
    db: AsyncSession,
    confirmed_booking: Booking,
    user: User,
    provider_user: User,
    admin_user: User,
):
    booking = await lifecycle.cancel(confirmed_booking.id, admin_user, "Reported by support")
    assert booking.cancelled_by == "admin"
    assert len(await _notifications_for(db, user.id)) == 1
    assert len(await _notifications_for(db, provider_user.id)) == 1


@pytest.mark.asyncio
async def test_transitions_are_audited(
    lifecycle: BookingLifecycle, db: AsyncSession, pending_booking: Booking, provider_user: User
):
    await lifecycle.accept(pending_booking.id, provider_user)
    await lifecycle.complete(pending_booking.id, provider_user)

    result = await db.execute(
        select(BookingAuditLog).where(BookingAuditLog.booking_id == pending_booking.id)
    )
    steps = {(log.from_status, log.to_status) for log in result.scalars()}
    assert steps == {("pending", "confirmed"), ("confirmed", "completed")}


@pytest.mark.asyncio
async def test_notification_failure_keeps_transition(
    db: AsyncSession, pending_booking: Booking, provider_user: User, caplog
):
    booking_id = pending_booking.id
    lifecycle = BookingLifecycle(db, ExplodingDispatcher())

    with caplog.at_level(logging.WARNING):
        booking = await lifecycle.accept(booking_id, provider_user)

    assert booking.status == BookingStatus.CONFIRMED
    status = await db.scalar(select(Booking.status).where(Booking.id == booking_id))
    assert status == BookingStatus.CONFIRMED
    assert "booking_confirmed" in caplog.text


# ── Admin override ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_override_status_reopens_terminal_booking(
    lifecycle: BookingLifecycle, db: AsyncSession, user: User, provider_user: User, admin_user: User
):
    booking = await make_booking(db, user, provider_user, BookingStatus.DECLINED)
    updated = await lifecycle.override_status(
        booking.id, admin_user, BookingStatus.CONFIRMED, "Declined by mistake"
    )
    assert updated.status == BookingStatus.CONFIRMED

    log = await db.scalar(
        select(BookingAuditLog).where(
            BookingAuditLog.booking_id == booking.id, BookingAuditLog.to_status == "confirmed"
        )
    )
    assert log.from_status == "declined"
    assert log.audit_metadata == {"override": True}


@pytest.mark.asyncio
async def test_override_status_requires_admin(
    lifecycle: BookingLifecycle, pending_booking: Booking, provider_user: User
):
    with pytest.raises(Forbidden):
        await lifecycle.override_status(
            pending_booking.id, provider_user, BookingStatus.COMPLETED, "Skip ahead"
        )


# ── Chat gate ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,unlocked",
    [
        (BookingStatus.PENDING, False),
        (BookingStatus.CONFIRMED, True),
        (BookingStatus.COMPLETED, True),
        (BookingStatus.DECLINED, False),
        (BookingStatus.CANCELLED, False),
    ],
)
async def test_send_message_follows_booking_status(
    lifecycle: BookingLifecycle,
    db: AsyncSession,
    user: User,
    provider_user: User,
    status: BookingStatus,
    unlocked: bool,
):
    booking = await make_booking(db, user, provider_user, status)
    if unlocked:
        message = await lifecycle.send_message(booking.id, provider_user, "On my way")
        assert message.sender_id == provider_user.id
        assert message.recipient_id == user.id
    else:
        with pytest.raises(ChatNotUnlocked):
            await lifecycle.send_message(booking.id, provider_user, "On my way")


@pytest.mark.asyncio
async def test_only_parties_can_chat(
    lifecycle: BookingLifecycle, confirmed_booking: Booking, other_user: User, admin_user: User
):
    for outsider in (other_user, admin_user):
        with pytest.raises(Forbidden):
            await lifecycle.send_message(confirmed_booking.id, outsider, "Hi")


@pytest.mark.asyncio
async def test_send_message_notifies_and_publishes(
    lifecycle: BookingLifecycle,
    db: AsyncSession,
    fake_redis,
    confirmed_booking: Booking,
    user: User,
    provider_user: User,
):
    pubsub = fake_redis.pubsub()
    await pubsub.subscribe(channel_for(provider_user.id))

    message = await lifecycle.send_message(confirmed_booking.id, user, "  Is 10am still fine?  ")
    assert message.content == "Is 10am still fine?"

    events = []
    for _ in range(5):
        raw = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.2)
        if raw:
            events.append(json.loads(raw["data"]))
    await pubsub.aclose()

    tables = {(e["table"], e["event"]) for e in events}
    assert ("messages", "INSERT") in tables
    assert ("notifications", "INSERT") in tables
    message_event = next(e for e in events if e["table"] == "messages")
    assert message_event["record"]["id"] == str(message.id)

    notifications = await _notifications_for(db, provider_user.id)
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.INFO
    assert notifications[0].title == "Nouveau message"
    assert "Plumbing repair" in notifications[0].message

    stored = await db.scalar(select(Message).where(Message.id == message.id))
    assert stored.is_read is False
