"""
services/booking/router.py
Booking endpoints. State changes go through BookingLifecycle; this module
only handles request parsing, listing and response shaping.
States: PENDING → CONFIRMED | DECLINED, CONFIRMED → COMPLETED | CANCELLED
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.lifecycle import BookingLifecycle, get_lifecycle, is_chat_unlocked
from shared.middleware.auth import get_current_user
from shared.models.models import Booking, BookingAuditLog, BookingStatus, User
from shared.schemas.schemas import (
    BookingAuditLogResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingDeclineRequest,
    BookingResponse,
)
from shared.utils.errors import ValidationError

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _enrich_booking(booking: Booking) -> BookingResponse:
    return BookingResponse(
        **{
            col.name: getattr(booking, col.name)
            for col in Booking.__table__.columns
        },
        chat_unlocked=is_chat_unlocked(booking.status),
    )


# ── Creation ──────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """
    Request a booking. The provider receives a `booking_request`
    notification; the booking starts PENDING.
    """
    booking = await lifecycle.request_booking(current_user, data)
    return _enrich_booking(booking)


# ── Queries ───────────────────────────────────────────────────

@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: str = Query(None),
    role: str = Query(None, pattern="^(client|provider)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Bookings where the caller is a party. `role=client` or `role=provider`
    narrows to one side; by default both sides are returned.
    """
    if role == "client":
        query = select(Booking).where(Booking.client_id == current_user.id)
    elif role == "provider":
        query = select(Booking).where(Booking.provider_id == current_user.id)
    else:
        query = select(Booking).where(
            or_(Booking.client_id == current_user.id, Booking.provider_id == current_user.id)
        )

    if status_filter:
        try:
            query = query.where(Booking.status == BookingStatus(status_filter))
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    query = query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [_enrich_booking(b) for b in result.scalars().all()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """Parties see their own bookings, admins see all."""
    booking = await lifecycle.get_booking_for(booking_id, current_user)
    return _enrich_booking(booking)


@router.get("/{booking_id}/history", response_model=list[BookingAuditLogResponse])
async def get_booking_history(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    await lifecycle.get_booking_for(booking_id, current_user)
    result = await db.execute(
        select(BookingAuditLog)
        .where(BookingAuditLog.booking_id == booking_id)
        .order_by(BookingAuditLog.created_at)
    )
    return [BookingAuditLogResponse.model_validate(log) for log in result.scalars()]


# ── Transitions ───────────────────────────────────────────────

@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """Provider accepts a pending booking. Opens the chat."""
    booking = await lifecycle.accept(booking_id, current_user)
    return _enrich_booking(booking)


@router.post("/{booking_id}/decline", response_model=BookingResponse)
async def decline_booking(
    booking_id: UUID,
    data: BookingDeclineRequest = None,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """Provider declines a pending booking. The chat never opens."""
    reason = data.reason if data else None
    booking = await lifecycle.decline(booking_id, current_user, reason)
    return _enrich_booking(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    booking = await lifecycle.complete(booking_id, current_user)
    return _enrich_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    """Either party (or an admin) cancels a confirmed booking."""
    booking = await lifecycle.cancel(booking_id, current_user, data.reason)
    return _enrich_booking(booking)
