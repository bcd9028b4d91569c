"""Menu image storage in a MinIO bucket."""

from __future__ import annotations

import io
import logging
import mimetypes
import os
from typing import Any, Dict, Optional
from uuid import uuid4

from minio import Minio
from minio.error import S3Error

from restopos.core.config import settings
from restopos.core.exceptions import ServiceUnavailableError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024


class MediaService:
    """Upload and delete images. The public id is the object name."""

    def __init__(self, client: Any = None, bucket: Optional[str] = None, public_url: Optional[str] = None) -> None:
        self.bucket = bucket if bucket is not None else settings.media_bucket
        self.public_url = (public_url if public_url is not None else settings.media_public_url).rstrip("/")
        self._client = client

    @property
    def client(self) -> Minio:
        if self._client is None:
            if not settings.minio_access_key or not settings.minio_secret_key:
                raise ServiceUnavailableError("Media storage credentials are not configured")
            self._client = Minio(
                settings.minio_endpoint,
                access_key=settings.minio_access_key,
                secret_key=settings.minio_secret_key,
                secure=settings.minio_secure,
            )
        return self._client

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise ServiceUnavailableError("Media storage is not configured")
        return self.bucket

    def url_for(self, object_name: str) -> str:
        return f"{self.public_url}/{object_name}"

    def upload(self, content: bytes, filename: str, folder: str = "uploads") -> Dict[str, str]:
        bucket = self._require_bucket()
        ext = os.path.splitext(filename or "")[1].lower()
        if ext not in ALLOWED_IMAGE_EXTENSIONS:
            raise ValidationError(f"Unsupported image type '{ext or filename}'")
        if not content:
            raise ValidationError("Uploaded file is empty")
        if len(content) > MAX_IMAGE_BYTES:
            raise ValidationError("Image exceeds the 5 MB limit")

        object_name = f"{folder}/{uuid4().hex}{ext}"
        content_type = mimetypes.guess_type(f"image{ext}")[0] or "application/octet-stream"
        try:
            self.client.put_object(
                bucket,
                object_name,
                io.BytesIO(content),
                length=len(content),
                content_type=content_type,
            )
        except S3Error as e:
            logger.error(f"Image upload to {bucket}/{object_name} failed: {e}")
            raise ServiceUnavailableError("Media storage is unavailable") from e
        logger.info(f"Uploaded image {object_name} ({len(content)} bytes)")
        return {"url": self.url_for(object_name), "public_id": object_name}

    def delete(self, public_id: str) -> None:
        bucket = self._require_bucket()
        try:
            self.client.remove_object(bucket, public_id)
        except S3Error as e:
            logger.error(f"Image delete {bucket}/{public_id} failed: {e}")
            raise ServiceUnavailableError("Media storage is unavailable") from e
