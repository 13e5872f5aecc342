"""
services/chat/router.py
Per-booking chat. A conversation is the booking itself: it opens when the
provider confirms and stays readable after completion.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import BookingLifecycle, get_lifecycle
from shared.middleware.auth import get_current_user
from shared.models.models import Booking, Message, User
from shared.schemas.schemas import (
    ChatMessageCreate,
    ChatMessageResponse,
    ConversationResponse,
    MessageResponse,
)

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """One entry per booking the caller has exchanged messages on, most recent first."""
    unread = func.sum(
        case((and_(Message.recipient_id == current_user.id, Message.is_read == False), 1), else_=0)
    )
    stats = (
        select(
            Message.booking_id.label("booking_id"),
            func.max(Message.created_at).label("last_message_at"),
            unread.label("unread_count"),
        )
        .group_by(Message.booking_id)
        .subquery()
    )
    result = await db.execute(
        select(Booking, stats.c.last_message_at, stats.c.unread_count)
        .join(stats, stats.c.booking_id == Booking.id)
        .where(or_(Booking.client_id == current_user.id, Booking.provider_id == current_user.id))
        .order_by(stats.c.last_message_at.desc())
    )
    rows = result.all()

    other_ids = {booking.counterparty_of(current_user.id) for booking, _, _ in rows}
    names = {}
    if other_ids:
        users = await db.execute(select(User).where(User.id.in_(other_ids)))
        names = {u.id: u.full_name for u in users.scalars()}

    conversations = []
    for booking, last_message_at, unread_count in rows:
        other_id = booking.counterparty_of(current_user.id)
        conversations.append(
            ConversationResponse(
                booking_id=booking.id,
                client_id=booking.client_id,
                provider_id=booking.provider_id,
                other_user_id=other_id,
                other_user_name=names.get(other_id) or None,
                booking_status=booking.status,
                booking_date=booking.booking_date,
                booking_time=booking.booking_time,
                last_message_at=last_message_at,
                unread_count=unread_count or 0,
            )
        )
    return conversations


@router.get("/{booking_id}/messages", response_model=list[ChatMessageResponse])
async def get_messages(
    booking_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """Message history in chronological order."""
    await lifecycle.get_booking_for(booking_id, current_user)
    result = await db.execute(
        select(Message)
        .where(Message.booking_id == booking_id)
        .order_by(Message.created_at, Message.id)
        .limit(limit)
    )
    return [ChatMessageResponse.model_validate(m) for m in result.scalars()]


@router.post(
    "/{booking_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    booking_id: UUID,
    data: ChatMessageCreate,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    message = await lifecycle.send_message(booking_id, current_user, data.content)
    return ChatMessageResponse.model_validate(message)


@router.post("/{booking_id}/read", response_model=MessageResponse)
async def mark_conversation_read(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """
    Mark every message addressed to the caller on this booking as read.
    Each sender gets an UPDATE event so read receipts and badges refresh.
    """
    await lifecycle.get_booking_for(booking_id, current_user)
    result = await db.execute(
        select(Message).where(
            Message.booking_id == booking_id,
            Message.recipient_id == current_user.id,
            Message.is_read == False,
        )
    )
    messages = list(result.scalars().all())
    for message in messages:
        message.is_read = True
    await db.commit()

    if lifecycle.realtime is not None:
        for message in messages:
            record = ChatMessageResponse.model_validate(message).model_dump(mode="json")
            for user_id in (message.sender_id, message.recipient_id):
                await lifecycle.realtime.publish(user_id, "messages", "UPDATE", record)
    return MessageResponse(message=f"{len(messages)} message(s) marked as read")
