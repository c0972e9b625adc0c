"""
Blob Storage Service

Short-lived signed URLs let the browser upload animal images/documents
straight to S3-compatible object storage and download documents without
ever seeing storage credentials. One flat container (bucket) per asset
class; blob names are ``<uuid>-<sanitized filename>``.
"""

import asyncio
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import PurePath
from typing import Any, Dict, Optional
from urllib.parse import quote

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings, settings
from app.core.exceptions import StorageError, ValidationError

# =============================================================================
# Logger Setup
# =============================================================================

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: str) -> str:
    """Reduce a client filename to a safe object-key suffix."""
    name = PurePath(filename.replace("\\", "/")).name.strip()
    name = _UNSAFE_CHARS.sub("-", name).strip("-.")
    return name[:200] or "file"


def generate_blob_name(filename: str) -> str:
    return f"{uuid.uuid4()}-{sanitize_filename(filename)}"


@dataclass
class SignedUrl:
    url: str
    blob_name: str
    container: str
    expires_at: datetime


# =============================================================================
# Blob Storage Service
# =============================================================================

class BlobStorageService:
    """S3-compatible storage for animal images and documents."""

    def __init__(self, config: Settings = settings, client: Any = None):
        self.config = config
        self.images_container = config.IMAGES_CONTAINER
        self.documents_container = config.DOCUMENTS_CONTAINER
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.config.S3_ENDPOINT_URL,
                aws_access_key_id=self.config.S3_ACCESS_KEY_ID,
                aws_secret_access_key=self.config.S3_SECRET_ACCESS_KEY,
                region_name=self.config.S3_REGION,
            )
            logger.info(
                "Blob storage client initialized",
                endpoint=self.config.S3_ENDPOINT_URL,
                region=self.config.S3_REGION,
            )
        return self._client

    def public_url(self, container: str, blob_name: str) -> str:
        """Stable (unsigned) URL of a blob, used for public image display."""
        key = quote(blob_name)
        if self.config.PUBLIC_BLOB_BASE_URL:
            return f"{self.config.PUBLIC_BLOB_BASE_URL.rstrip('/')}/{container}/{key}"
        if self.config.S3_ENDPOINT_URL:
            return f"{self.config.S3_ENDPOINT_URL.rstrip('/')}/{container}/{key}"
        return f"https://{container}.s3.{self.config.S3_REGION}.amazonaws.com/{key}"

    def _presign(
        self,
        method: str,
        container: str,
        blob_name: str,
        expiry_minutes: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> SignedUrl:
        params = {"Bucket": container, "Key": blob_name}
        if extra:
            params.update(extra)
        try:
            url = self.client.generate_presigned_url(
                ClientMethod=method,
                Params=params,
                ExpiresIn=expiry_minutes * 60,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "Failed to sign blob URL",
                container=container,
                blob_name=blob_name,
                method=method,
                error=str(e),
            )
            raise StorageError("Could not generate a storage URL.", operation=method)

        return SignedUrl(
            url=url,
            blob_name=blob_name,
            container=container,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=expiry_minutes),
        )

    def image_upload_url(self, filename: str, content_type: str) -> SignedUrl:
        """Write-only URL for a new image blob."""
        if not content_type or not content_type.lower().startswith("image/"):
            raise ValidationError("Invalid content type. Only images are allowed.", field="contentType")
        signed = self._presign(
            "put_object",
            self.images_container,
            generate_blob_name(filename),
            self.config.UPLOAD_URL_EXPIRY_MINUTES,
            {"ContentType": content_type},
        )
        logger.info("Image upload URL issued", blob_name=signed.blob_name)
        return signed

    def document_upload_url(self, animal_id: int, filename: str, content_type: str) -> SignedUrl:
        """Write-only URL for a new document blob of ``animal_id``."""
        if content_type not in self.config.ALLOWED_DOCUMENT_TYPES:
            raise ValidationError(
                f"Unsupported document type '{content_type}'.",
                field="contentType",
                details={"allowed": self.config.ALLOWED_DOCUMENT_TYPES},
            )
        signed = self._presign(
            "put_object",
            self.documents_container,
            generate_blob_name(filename),
            self.config.UPLOAD_URL_EXPIRY_MINUTES,
            {"ContentType": content_type},
        )
        logger.info("Document upload URL issued", animal_id=animal_id, blob_name=signed.blob_name)
        return signed

    def document_download_url(self, blob_name: str, filename: Optional[str] = None) -> SignedUrl:
        """Read-only URL for an existing document blob."""
        extra = None
        if filename:
            extra = {"ResponseContentDisposition": f'attachment; filename="{sanitize_filename(filename)}"'}
        return self._presign(
            "get_object",
            self.documents_container,
            blob_name,
            self.config.DOWNLOAD_URL_EXPIRY_MINUTES,
            extra,
        )

    async def delete_blob(self, container: str, blob_name: str) -> bool:
        """
        Delete a blob, best-effort.

        Returns False instead of raising: metadata deletion has already
        committed by the time this runs.
        """
        if not blob_name:
            return False
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=container, Key=blob_name)
            logger.info("Blob deleted", container=container, blob_name=blob_name)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("Blob deletion failed", container=container, blob_name=blob_name, error=str(e))
            return False


@lru_cache()
def get_blob_storage() -> BlobStorageService:
    """Shared storage service (FastAPI dependency)."""
    return BlobStorageService()
