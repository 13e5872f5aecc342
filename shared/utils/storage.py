"""
shared/utils/storage.py
Object storage for uploaded photos (S3-compatible, Cloudflare R2 in production).
"""

import logging
import uuid
from functools import lru_cache
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import settings
from shared.utils.errors import PersistenceFailure

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


def guess_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].strip().lower()
        if ext:
            return "." + ext
    return EXTENSIONS.get((content_type or "").lower(), "")


def build_key(owner_id: str, filename: Optional[str], content_type: Optional[str]) -> str:
    """<owner>/<random>.<ext>, unique per upload."""
    return f"{owner_id}/{uuid.uuid4().hex}{guess_extension(filename, content_type)}"


class ObjectStorage:
    """Thin wrapper over an S3 client: upload bytes, derive public URLs."""

    def __init__(self, client=None, public_base_url: Optional[str] = None):
        self._client = client
        self.public_base_url = (public_base_url or settings.S3_PUBLIC_BASE_URL).rstrip("/")

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.S3_ACCESS_KEY_ID,
                aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
                endpoint_url=settings.S3_ENDPOINT_URL or None,
                region_name=settings.S3_REGION,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._client

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Store `data` at bucket/path, overwriting any existing object. Returns the key."""
        try:
            self.client.put_object(Bucket=bucket, Key=path, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Upload to {bucket}/{path} failed: {e}")
            raise PersistenceFailure("Upload failed. Please try again.") from e
        return path

    def delete(self, bucket: str, path: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Delete of {bucket}/{path} failed: {e}")

    def public_url(self, bucket: str, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{bucket}/{path}"
        endpoint = (settings.S3_ENDPOINT_URL or "").rstrip("/")
        return f"{endpoint}/{bucket}/{path}"


@lru_cache()
def get_storage() -> ObjectStorage:
    """FastAPI dependency: process-wide storage client."""
    return ObjectStorage()
