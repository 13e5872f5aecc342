"""
services/notification/router.py
In-app notification inbox. Rows are created by NotificationDispatcher;
this router only lists, marks read and deletes them for their owner.
"""

from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.realtime.channel import RealtimeChannel, get_realtime
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, User
from shared.schemas.schemas import MessageResponse, NotificationResponse, PaginatedResponse
from shared.utils.errors import Forbidden, NotFound

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _publish_read(realtime: RealtimeChannel, notifications: list[Notification]) -> None:
    for notif in notifications:
        record = NotificationResponse.model_validate(notif).model_dump(mode="json")
        await realtime.publish(notif.user_id, "notifications", "UPDATE", record)


async def _get_own_notification(notification_id: UUID, user: User, db: AsyncSession) -> Notification:
    result = await db.execute(select(Notification).where(Notification.id == notification_id))
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFound("Notification not found")
    if notif.user_id != user.id:
        raise Forbidden("Not your notification")
    return notif


@router.get("", response_model=PaginatedResponse)
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's in-app notifications, newest first."""
    query = (
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(Notification.created_at.desc())
    )

    if unread_only:
        query = query.where(Notification.is_read == False)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return PaginatedResponse(
        items=[NotificationResponse.model_validate(n) for n in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read == False,
        )
    )
    return {"unread_count": count or 0}


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    realtime: RealtimeChannel = Depends(get_realtime),
):
    result = await db.execute(
        select(Notification).where(
            Notification.user_id == current_user.id, Notification.is_read == False
        )
    )
    unread = list(result.scalars().all())
    now = datetime.now(timezone.utc)
    for notif in unread:
        notif.is_read = True
        notif.read_at = now
    await db.commit()
    await _publish_read(realtime, unread)
    return MessageResponse(message="All notifications marked as read")


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    realtime: RealtimeChannel = Depends(get_realtime),
):
    """Idempotent: an already-read notification keeps its original read_at."""
    notif = await _get_own_notification(notification_id, current_user, db)
    if not notif.is_read:
        notif.is_read = True
        notif.read_at = datetime.now(timezone.utc)
        await db.commit()
        await _publish_read(realtime, [notif])
    return NotificationResponse.model_validate(notif)


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await _get_own_notification(notification_id, current_user, db)
    await db.delete(notif)
    await db.commit()
    return MessageResponse(message="Notification deleted")
