"""
services/photo/photos.py
Service photo sets (max 3, exactly one primary) and profile photos
(exactly one active per user).

Primary/active flags are maintained as clear-then-set in two statements
inside one commit. Concurrent uploads to the same service may briefly
leave two primaries; the last writer's flag wins on the next upload.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import (
    ProfilePicture,
    Service,
    ServiceImage,
    ServiceProvider,
    User,
    UserRole,
)
from shared.utils.errors import Forbidden, NotFound, PersistenceFailure, ValidationError
from shared.utils.storage import ObjectStorage, build_key

logger = logging.getLogger(__name__)


def validate_image(content_type: Optional[str], size: int, max_bytes: int) -> None:
    """Reject non-images and oversized files before anything is uploaded."""
    if not content_type or not content_type.lower().startswith("image/"):
        raise ValidationError("Only image files are allowed")
    if size <= 0:
        raise ValidationError("The uploaded file is empty")
    if size > max_bytes:
        raise ValidationError(f"Image must be {max_bytes // (1024 * 1024)}MB or smaller")


class PhotoManager:
    def __init__(self, db: AsyncSession, storage: ObjectStorage):
        self.db = db
        self.storage = storage

    # ── Service photos ────────────────────────────────────────

    async def _get_owned_service(self, service_id: UUID, actor: User) -> Service:
        result = await self.db.execute(select(Service).where(Service.id == service_id))
        service = result.scalar_one_or_none()
        if not service:
            raise NotFound("Service not found")
        if actor.role != UserRole.ADMIN and service.provider_id != actor.id:
            raise Forbidden("You can only manage photos of your own services")
        return service

    async def list_service_photos(self, service_id: UUID) -> list[ServiceImage]:
        result = await self.db.execute(
            select(ServiceImage)
            .where(ServiceImage.service_id == service_id)
            .order_by(ServiceImage.display_order, ServiceImage.created_at)
        )
        return list(result.scalars().all())

    async def add_service_photo(
        self,
        service_id: UUID,
        actor: User,
        data: bytes,
        content_type: Optional[str],
        filename: Optional[str] = None,
        alt_text: Optional[str] = None,
    ) -> ServiceImage:
        """
        Upload a photo and make it the primary one.
        Every existing flag is cleared first, then the new row is inserted
        with is_primary set.
        """
        service = await self._get_owned_service(service_id, actor)
        validate_image(content_type, len(data), settings.SERVICE_PHOTO_MAX_BYTES)

        count = await self.db.scalar(
            select(func.count(ServiceImage.id)).where(ServiceImage.service_id == service.id)
        )
        if (count or 0) >= settings.MAX_SERVICE_PHOTOS:
            raise ValidationError(f"A service can have at most {settings.MAX_SERVICE_PHOTOS} photos")

        bucket = settings.S3_BUCKET_SERVICE_PHOTOS
        key = build_key(str(service.id), filename, content_type)
        await run_in_threadpool(self.storage.upload, bucket, key, data, content_type)

        image = ServiceImage(
            service_id=service.id,
            image_url=self.storage.public_url(bucket, key),
            is_primary=True,
            display_order=count or 0,
            alt_text=alt_text or service.service_title,
        )
        try:
            await self._clear_primary(service.id)
            self.db.add(image)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Saving photo for service {service_id} failed: {e}")
            await run_in_threadpool(self.storage.delete, bucket, key)
            raise PersistenceFailure() from e

        logger.info(f"Service {service.id} photo {image.id} uploaded ({len(data)} bytes)")
        return image

    async def set_primary(self, service_id: UUID, image_id: UUID, actor: User) -> ServiceImage:
        service = await self._get_owned_service(service_id, actor)
        image = await self._get_image(service.id, image_id)
        await self._clear_primary(service.id)
        image.is_primary = True
        await self._commit()
        return image

    async def remove_service_photo(self, service_id: UUID, image_id: UUID, actor: User) -> None:
        """Delete one photo. If it was primary, the oldest remaining photo takes over."""
        service = await self._get_owned_service(service_id, actor)
        image = await self._get_image(service.id, image_id)
        was_primary = image.is_primary
        image_url = image.image_url

        try:
            await self.db.delete(image)
            await self.db.flush()
            if was_primary:
                result = await self.db.execute(
                    select(ServiceImage)
                    .where(ServiceImage.service_id == service.id)
                    .order_by(ServiceImage.created_at, ServiceImage.display_order)
                    .limit(1)
                )
                successor = result.scalar_one_or_none()
                if successor:
                    successor.is_primary = True
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Removing photo {image_id} of service {service_id} failed: {e}")
            raise PersistenceFailure() from e
        await self._commit()

        key = self._key_from_url(settings.S3_BUCKET_SERVICE_PHOTOS, image_url)
        if key:
            await run_in_threadpool(self.storage.delete, settings.S3_BUCKET_SERVICE_PHOTOS, key)

    async def _get_image(self, service_id: UUID, image_id: UUID) -> ServiceImage:
        result = await self.db.execute(
            select(ServiceImage).where(
                ServiceImage.id == image_id, ServiceImage.service_id == service_id
            )
        )
        image = result.scalar_one_or_none()
        if not image:
            raise NotFound("Photo not found")
        return image

    async def _clear_primary(self, service_id: UUID) -> None:
        await self.db.execute(
            update(ServiceImage)
            .where(ServiceImage.service_id == service_id, ServiceImage.is_primary == True)
            .values(is_primary=False)
            .execution_options(synchronize_session="fetch")
        )

    # ── Profile photos ────────────────────────────────────────

    async def set_profile_photo(
        self,
        user: User,
        data: bytes,
        content_type: Optional[str],
        filename: Optional[str] = None,
    ) -> ProfilePicture:
        """
        Upload a new profile photo. All earlier records are deactivated and
        the URL is mirrored onto the user (and provider) profile.
        """
        validate_image(content_type, len(data), settings.PROFILE_PHOTO_MAX_BYTES)

        bucket = settings.S3_BUCKET_PROFILE_PHOTOS
        user_id = user.id
        key = build_key(str(user_id), filename, content_type)
        await run_in_threadpool(self.storage.upload, bucket, key, data, content_type)
        url = self.storage.public_url(bucket, key)

        picture = ProfilePicture(
            user_id=user_id,
            image_url=url,
            is_active=True,
            file_size=len(data),
            mime_type=content_type,
            alt_text=f"Profile photo of {user.full_name}".strip(),
        )
        try:
            await self.db.execute(
                update(ProfilePicture)
                .where(ProfilePicture.user_id == user_id, ProfilePicture.is_active == True)
                .values(is_active=False)
                .execution_options(synchronize_session="fetch")
            )
            self.db.add(picture)
            user.profile_photo_url = url
            await self.db.execute(
                update(ServiceProvider)
                .where(ServiceProvider.user_id == user_id)
                .values(profile_photo_url=url)
                .execution_options(synchronize_session="fetch")
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Saving profile photo for user {user_id} failed: {e}")
            await run_in_threadpool(self.storage.delete, bucket, key)
            raise PersistenceFailure() from e
        logger.info(f"User {user_id} profile photo updated")
        return picture

    async def list_profile_photos(self, user_id: UUID) -> list[ProfilePicture]:
        result = await self.db.execute(
            select(ProfilePicture)
            .where(ProfilePicture.user_id == user_id)
            .order_by(ProfilePicture.created_at.desc())
        )
        return list(result.scalars().all())

    # ── Internals ─────────────────────────────────────────────

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Photo write failed: {e}")
            raise PersistenceFailure() from e

    def _key_from_url(self, bucket: str, url: str) -> Optional[str]:
        marker = f"/{bucket}/"
        if marker not in url:
            return None
        return url.split(marker, 1)[1]
