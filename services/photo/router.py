"""
services/photo/router.py
Photo uploads: service galleries and profile pictures.
Files go to object storage; only the public URL is stored in the database.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.photo.photos import PhotoManager
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import (
    MessageResponse,
    ProfilePictureResponse,
    ServiceImageResponse,
)
from shared.utils.storage import ObjectStorage, get_storage

router = APIRouter(prefix="/photos", tags=["Photos"])


def get_photo_manager(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> PhotoManager:
    return PhotoManager(db, storage)


# ── Service photos ────────────────────────────────────────────

@router.get("/services/{service_id}", response_model=list[ServiceImageResponse])
async def list_service_photos(
    service_id: UUID,
    manager: PhotoManager = Depends(get_photo_manager),
):
    images = await manager.list_service_photos(service_id)
    return [ServiceImageResponse.model_validate(i) for i in images]


@router.post(
    "/services/{service_id}",
    response_model=ServiceImageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_service_photo(
    service_id: UUID,
    file: UploadFile = File(...),
    alt_text: str = Form(None),
    current_user: User = Depends(get_current_user),
    manager: PhotoManager = Depends(get_photo_manager),
):
    """Upload a photo (≤5MB, max 3 per service). The new photo becomes primary."""
    # One byte past the limit is enough to reject without buffering huge files
    data = await file.read(settings.SERVICE_PHOTO_MAX_BYTES + 1)
    image = await manager.add_service_photo(
        service_id, current_user, data, file.content_type, file.filename, alt_text
    )
    return ServiceImageResponse.model_validate(image)


@router.post("/services/{service_id}/{image_id}/primary", response_model=ServiceImageResponse)
async def make_primary(
    service_id: UUID,
    image_id: UUID,
    current_user: User = Depends(get_current_user),
    manager: PhotoManager = Depends(get_photo_manager),
):
    image = await manager.set_primary(service_id, image_id, current_user)
    return ServiceImageResponse.model_validate(image)


@router.delete("/services/{service_id}/{image_id}", response_model=MessageResponse)
async def delete_service_photo(
    service_id: UUID,
    image_id: UUID,
    current_user: User = Depends(get_current_user),
    manager: PhotoManager = Depends(get_photo_manager),
):
    await manager.remove_service_photo(service_id, image_id, current_user)
    return MessageResponse(message="Photo deleted")


# ── Profile photos ────────────────────────────────────────────

@router.get("/profile", response_model=list[ProfilePictureResponse])
async def list_my_profile_photos(
    current_user: User = Depends(get_current_user),
    manager: PhotoManager = Depends(get_photo_manager),
):
    pictures = await manager.list_profile_photos(current_user.id)
    return [ProfilePictureResponse.model_validate(p) for p in pictures]


@router.post(
    "/profile",
    response_model=ProfilePictureResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_profile_photo(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    manager: PhotoManager = Depends(get_photo_manager),
):
    """Upload a profile photo (≤10MB). Replaces the active one."""
    data = await file.read(settings.PROFILE_PHOTO_MAX_BYTES + 1)
    picture = await manager.set_profile_photo(
        current_user, data, file.content_type, file.filename
    )
    return ProfilePictureResponse.model_validate(picture)
