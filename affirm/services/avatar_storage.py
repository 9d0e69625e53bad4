"""
Azure Blob Storage Service
==========================

Uploads and deletes user avatar images in Azure Blob Storage.

Container structure:
    affirm-{env}/
    └── avatars/
        └── user_{user_id}/avatar-{millis}.{ext}

The Azure SDK client is synchronous; calls are pushed to the thread
pool so they never block the event loop.
"""

import logging
import time
from typing import Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings
from fastapi.concurrency import run_in_threadpool

from affirm.config import settings
from affirm.core.errors import UpstreamServiceError
from affirm.utils.helpers import mask_id

logger = logging.getLogger(__name__)

EXTENSION_BY_CONTENT_TYPE = {
    "image/png": "png",
    "image/webp": "webp",
}
DEFAULT_CONTENT_TYPE = "image/jpeg"


class AvatarStorageService:
    """Service for avatar blob operations."""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        container_name: Optional[str] = None,
    ):
        self.connection_string = connection_string or settings.AZURE_STORAGE_CONNECTION_STRING
        self.container_name = container_name or settings.AZURE_STORAGE_CONTAINER

        self._client: Optional[BlobServiceClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.connection_string)

    @property
    def client(self) -> BlobServiceClient:
        """Get or create blob service client."""
        if self._client is None:
            if not self.connection_string:
                raise UpstreamServiceError(
                    "blob_storage",
                    "Azure Storage not configured. "
                    "Set AZURE_STORAGE_CONNECTION_STRING environment variable.",
                )
            self._client = BlobServiceClient.from_connection_string(
                self.connection_string
            )
        return self._client

    @staticmethod
    def build_avatar_key(user_id: str, content_type: str) -> str:
        ext = EXTENSION_BY_CONTENT_TYPE.get(content_type, "jpg")
        return f"avatars/user_{user_id}/avatar-{int(time.time() * 1000)}.{ext}"

    def _upload(self, key: str, content: bytes, content_type: str) -> str:
        blob_client = self.client.get_blob_client(
            container=self.container_name,
            blob=key,
        )
        blob_client.upload_blob(
            content,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )
        return blob_client.url

    async def upload_avatar(
        self,
        user_id: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> dict[str, str]:
        """
        Upload an avatar image.

        Returns:
            Dict with the blob ``key`` and its public ``url``.
        """
        content_type = content_type or DEFAULT_CONTENT_TYPE
        key = self.build_avatar_key(user_id, content_type)

        try:
            url = await run_in_threadpool(self._upload, key, content, content_type)
        except AzureError as e:
            logger.error("Avatar upload failed for user %s: %s", mask_id(user_id), e)
            raise UpstreamServiceError("blob_storage", str(e)) from e

        logger.info("Avatar uploaded: user=%s size=%d", mask_id(user_id), len(content))
        return {"key": key, "url": url}

    def _delete(self, key: str) -> None:
        blob_client = self.client.get_blob_client(
            container=self.container_name,
            blob=key,
        )
        blob_client.delete_blob()

    async def delete_avatar(self, key: Optional[str]) -> bool:
        """Delete an avatar blob. Missing keys and blobs are not errors."""
        if not key:
            return False

        try:
            await run_in_threadpool(self._delete, key)
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            logger.error("Avatar delete failed for key %s: %s", key, e)
            raise UpstreamServiceError("blob_storage", str(e)) from e
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


# Singleton instance
_storage_service: Optional[AvatarStorageService] = None


def get_storage_service() -> AvatarStorageService:
    """Get or create storage service instance."""
    global _storage_service

    if _storage_service is None:
        _storage_service = AvatarStorageService()

    return _storage_service


def close_storage_service() -> None:
    """Release the blob client on shutdown."""
    global _storage_service

    if _storage_service is not None:
        _storage_service.close()
        _storage_service = None
