"""Item photo storage in Azure Blob Storage.

Photos live in one container under ``inventory/{item_id}/{uuid}.{ext}``.
Display URLs are read-only SAS links that expire after
``signed_url_expiry_seconds``.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath
from typing import Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, ContentSettings, generate_blob_sas

from .config import settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "heic"}
DEFAULT_EXTENSION = "jpg"

_blob_service = None


class StorageNotConfiguredError(Exception):
    """Raised when photo storage is used without a connection string."""

    pass


def _get_blob_service() -> BlobServiceClient | None:
    """Get or create the blob service client singleton."""
    global _blob_service
    if _blob_service is not None:
        return _blob_service
    conn_str = settings.azure_storage_connection_string
    if not conn_str:
        logger.warning("AZURE_STORAGE_CONNECTION_STRING not set, photo storage disabled")
        return None
    _blob_service = BlobServiceClient.from_connection_string(conn_str)
    return _blob_service


def _require_service() -> BlobServiceClient:
    service = _get_blob_service()
    if service is None:
        raise StorageNotConfiguredError("Photo storage is not configured")
    return service


def photo_extension(filename: Optional[str]) -> str:
    suffix = PurePosixPath(filename or "").suffix.lower().lstrip(".")
    return suffix if suffix in ALLOWED_EXTENSIONS else DEFAULT_EXTENSION


def make_photo_key(item_id: int, filename: Optional[str] = None) -> str:
    """Build a new storage key for a photo of ``item_id``."""
    return f"inventory/{item_id}/{uuid.uuid4()}.{photo_extension(filename)}"


def key_belongs_to_item(key: str, item_id: int) -> bool:
    return key.startswith(f"inventory/{item_id}/")


def upload_photo(item_id: int, filename: Optional[str], data: bytes, content_type: Optional[str] = None) -> str:
    """Upload photo bytes and return the new key.

    Raises:
        StorageNotConfiguredError: If no storage connection string is set
        AzureError: If the upload fails
    """
    service = _require_service()
    key = make_photo_key(item_id, filename)
    blob = service.get_blob_client(container=settings.azure_storage_container, blob=key)
    blob.upload_blob(
        data,
        overwrite=False,
        content_settings=ContentSettings(content_type=content_type or "application/octet-stream"),
    )
    logger.info("Uploaded photo %s (%d bytes)", key, len(data))
    return key


def signed_url(key: str, expiry_seconds: Optional[int] = None) -> str:
    """Return a read-only URL for ``key`` that expires after ``expiry_seconds``.

    Raises:
        StorageNotConfiguredError: If no storage connection string is set
    """
    service = _require_service()
    expiry = datetime.now(timezone.utc) + timedelta(
        seconds=expiry_seconds or settings.signed_url_expiry_seconds
    )
    sas = generate_blob_sas(
        account_name=service.account_name,
        container_name=settings.azure_storage_container,
        blob_name=key,
        account_key=service.credential.account_key,
        permission=BlobSasPermissions(read=True),
        expiry=expiry,
    )
    blob = service.get_blob_client(container=settings.azure_storage_container, blob=key)
    return f"{blob.url}?{sas}"


def delete_photo(key: str) -> bool:
    """Delete a stored photo. Returns False when it was already gone or the delete failed."""
    service = _get_blob_service()
    if service is None:
        return False
    try:
        service.get_blob_client(container=settings.azure_storage_container, blob=key).delete_blob()
    except ResourceNotFoundError:
        logger.info("Photo %s already deleted", key)
        return False
    except AzureError:
        logger.exception("Failed to delete photo %s", key)
        return False
    logger.info("Deleted photo %s", key)
    return True
