"""
services/catalog/router.py
Job categories, provider profiles and the services providers offer.
Bookings reference a service to get their price quote.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import get_current_user, require_provider
from shared.models.models import (
    JobCategory,
    PriceType,
    Service,
    ServiceProvider,
    ServiceType,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    JobCategoryResponse,
    ProviderProfileResponse,
    ProviderProfileUpdate,
    ServiceCreateRequest,
    ServiceResponse,
    ServiceUpdateRequest,
)
from shared.utils.errors import Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["Catalog"])

CATEGORIES_CACHE_KEY = "catalog:categories"


# ── Helpers ───────────────────────────────────────────────────

async def _get_service_or_404(service_id: UUID, db: AsyncSession) -> Service:
    result = await db.execute(select(Service).where(Service.id == service_id))
    service = result.scalar_one_or_none()
    if not service:
        raise NotFound("Service not found")
    return service


async def _check_category(category_id: UUID | None, db: AsyncSession) -> None:
    if category_id is None:
        return
    if not await db.scalar(select(JobCategory.id).where(JobCategory.id == category_id)):
        raise ValidationError("Unknown job category")


# ── Categories ────────────────────────────────────────────────

@router.get("/categories", response_model=List[JobCategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """All job categories, alphabetically. Cached until an admin adds one."""
    cache = RedisCache(redis)
    cached = await cache.get(CATEGORIES_CACHE_KEY)
    if cached is not None:
        return [JobCategoryResponse(**c) for c in cached]

    result = await db.execute(select(JobCategory).order_by(JobCategory.name))
    categories = [JobCategoryResponse.model_validate(c) for c in result.scalars()]
    await cache.set(CATEGORIES_CACHE_KEY, [c.model_dump(mode="json") for c in categories])
    return categories


# ── Provider profiles ─────────────────────────────────────────

@router.get("/providers/me", response_model=ProviderProfileResponse)
async def get_my_provider_profile(
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(ServiceProvider).where(ServiceProvider.user_id == current_user.id)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise NotFound("Provider profile not found")
    return ProviderProfileResponse.model_validate(profile)


@router.put("/providers/me", response_model=ProviderProfileResponse)
async def upsert_my_provider_profile(
    data: ProviderProfileUpdate,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    """Create or update the caller's provider profile. Only non-None fields are written."""
    updates = data.model_dump(exclude_none=True)
    await _check_category(updates.get("job_category_id"), db)

    result = await db.execute(
        select(ServiceProvider).where(ServiceProvider.user_id == current_user.id)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        profile = ServiceProvider(
            user_id=current_user.id,
            profile_photo_url=current_user.profile_photo_url,
        )
        db.add(profile)

    for field, value in updates.items():
        setattr(profile, field, value)

    await db.commit()
    await db.refresh(profile)
    return ProviderProfileResponse.model_validate(profile)


@router.get("/providers/{user_id}", response_model=ProviderProfileResponse)
async def get_provider_profile(user_id: UUID, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(ServiceProvider).where(ServiceProvider.user_id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise NotFound("Provider not found")
    return ProviderProfileResponse.model_validate(profile)


# ── Services ──────────────────────────────────────────────────

@router.post("/services", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_service(
    data: ServiceCreateRequest,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    await _check_category(data.job_category_id, db)

    service = Service(
        provider_id=current_user.id,
        job_category_id=data.job_category_id,
        business_name=data.business_name,
        service_title=data.service_title,
        description=data.description,
        location=data.location,
        service_type=ServiceType(data.service_type),
        price_type=PriceType(data.price_type),
        hourly_rate=data.hourly_rate,
        fixed_price=data.fixed_price,
        experience_years=data.experience_years,
        availability_notes=data.availability_notes,
        images=[],
    )
    db.add(service)
    await db.commit()
    logger.info(f"Service {service.id} created by provider {current_user.id}")
    return ServiceResponse.model_validate(service)


@router.get("/services", response_model=List[ServiceResponse])
async def list_services(
    provider_id: UUID = Query(None),
    category_id: UUID = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Active services, newest first, optionally for one provider or category."""
    query = select(Service).where(Service.is_active == True)
    if provider_id:
        query = query.where(Service.provider_id == provider_id)
    if category_id:
        query = query.where(Service.job_category_id == category_id)

    query = query.order_by(Service.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [ServiceResponse.model_validate(s) for s in result.scalars().all()]


@router.get("/services/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: UUID, db: AsyncSession = Depends(get_db)):
    return ServiceResponse.model_validate(await _get_service_or_404(service_id, db))


@router.put("/services/{service_id}", response_model=ServiceResponse)
async def update_service(
    service_id: UUID,
    data: ServiceUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = await _get_service_or_404(service_id, db)
    if current_user.role != UserRole.ADMIN and service.provider_id != current_user.id:
        raise Forbidden("You can only edit your own services")

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(service, field, value)

    await db.commit()
    await db.refresh(service)
    return ServiceResponse.model_validate(service)
