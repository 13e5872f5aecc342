"""
services/admin/router.py
Admin-only endpoints: booking oversight and status override, catalog
categories, provider approval, user moderation, and the audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.booking.lifecycle import BookingLifecycle, get_lifecycle
from services.booking.router import _enrich_booking
from services.catalog.router import CATEGORIES_CACHE_KEY
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    Booking,
    BookingStatus,
    JobCategory,
    ServiceProvider,
    ServiceType,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminBookingStatusRequest,
    AdminReasonRequest,
    BookingResponse,
    JobCategoryCreate,
    JobCategoryResponse,
    MessageResponse,
    PaginatedResponse,
)
from shared.utils.errors import Forbidden, NotFound, ValidationError

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(
        AdminAuditLog(
            admin_id=admin.id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
            ip_address=request.client.host if request and request.client else None,
        )
    )


async def _get_user_or_404(user_id: UUID, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found")
    return user


# ── Booking Oversight ──────────────────────────────────────────────────────────

@router.get("/bookings", response_model=PaginatedResponse)
async def list_all_bookings(
    status_filter: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking)
    if status_filter:
        try:
            query = query.where(Booking.status == BookingStatus(status_filter))
        except ValueError:
            raise ValidationError(f"Invalid status: {status_filter}")

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Booking.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return PaginatedResponse(
        items=[_enrich_booking(b) for b in result.scalars().all()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.post("/bookings/{booking_id}/status", response_model=BookingResponse)
async def override_booking_status(
    booking_id: UUID,
    data: AdminBookingStatusRequest,
    current_user: User = Depends(require_admin),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Force a booking into any status, terminal ones included. No notifications are sent."""
    booking = await lifecycle.override_status(
        booking_id, current_user, BookingStatus(data.status), data.reason
    )
    await _log(db, current_user, "OVERRIDE_BOOKING_STATUS", "Booking", str(booking_id),
               {"status": data.status, "reason": data.reason}, request)
    await db.commit()
    return _enrich_booking(booking)


# ── Catalog ────────────────────────────────────────────────────────────────────

@router.post(
    "/categories",
    response_model=JobCategoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    data: JobCategoryCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    request: Request = None,
):
    existing = await db.scalar(select(JobCategory).where(JobCategory.name == data.name))
    if existing:
        raise ValidationError("A category with this name already exists")

    category = JobCategory(
        name=data.name,
        description=data.description,
        service_type=ServiceType(data.service_type) if data.service_type else None,
    )
    db.add(category)
    await db.flush()
    await _log(db, current_user, "CREATE_CATEGORY", "JobCategory", str(category.id),
               {"name": data.name}, request)
    await db.commit()
    await RedisCache(redis).delete(CATEGORIES_CACHE_KEY)
    return JobCategoryResponse.model_validate(category)


@router.post("/providers/{user_id}/approve", response_model=MessageResponse)
async def approve_provider(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    result = await db.execute(select(ServiceProvider).where(ServiceProvider.user_id == user_id))
    provider = result.scalar_one_or_none()
    if not provider:
        raise NotFound("Provider profile not found")

    provider.is_approved = True
    await _log(db, current_user, "APPROVE_PROVIDER", "ServiceProvider", str(provider.id), {}, request)
    await db.commit()
    return MessageResponse(message="Provider approved")


# ── User Moderation ────────────────────────────────────────────────────────────

@router.post("/users/{user_id}/suspend", response_model=MessageResponse)
async def suspend_user(
    user_id: UUID,
    data: AdminReasonRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Deactivate a user account. Admins cannot be suspended."""
    user = await _get_user_or_404(user_id, db)
    if user.role == UserRole.ADMIN:
        raise Forbidden("Cannot suspend admin users")
    if not user.is_active:
        raise ValidationError("User is already suspended", status_code=409)

    user.is_active = False
    await _log(db, current_user, "SUSPEND_USER", "User", str(user_id),
               {"reason": data.reason}, request)
    await db.commit()
    return MessageResponse(message="User suspended")


@router.post("/users/{user_id}/reactivate", response_model=MessageResponse)
async def reactivate_user(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Re-activate a suspended user account."""
    user = await _get_user_or_404(user_id, db)
    user.is_active = True
    await _log(db, current_user, "REACTIVATE_USER", "User", str(user_id), {}, request)
    await db.commit()
    return MessageResponse(message="User reactivated")


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. SUSPEND_USER"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log — append-only, never editable."""
    query = select(AdminAuditLog, User).join(User, User.id == AdminAuditLog.admin_id)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return {
        "items": [
            {
                "id": str(log.id),
                "admin_name": admin.full_name,
                "admin_email": admin.email,
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "payload": log.payload,
                "ip_address": log.ip_address,
                "created_at": log.created_at.isoformat(),
            }
            for log, admin in result.all()
        ],
        "total": total or 0,
        "page": page,
        "page_size": page_size,
    }
