"""
Blob store for uploaded spreadsheets.

Thin wrapper over Supabase Storage. Failures are raised, never swallowed:
the import registry relies on them to run its compensating delete.
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class BlobStoreError(ExternalServiceError):
    """Storage operation failed."""

    def __init__(self, operation: str, path: str, reason: str):
        super().__init__(
            service="storage",
            message=f"Storage {operation} failed",
            details={"operation": operation, "path": path, "reason": reason}
        )


class BlobStore:
    """
    Upload, download and link spreadsheets in a storage bucket.
    """

    def __init__(self):
        self.db = get_supabase_client()

    def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str = XLSX_CONTENT_TYPE
    ) -> str:
        """
        Store bytes at a path. Existing objects are never overwritten.

        Returns:
            The storage path

        Raises:
            BlobStoreError: If storage rejects the write
        """
        logger.debug(
            "uploading_to_storage",
            bucket=bucket,
            path=path,
            size_bytes=len(content)
        )

        try:
            self.db.storage.from_(bucket).upload(
                path,
                content,
                file_options={"content-type": content_type, "upsert": "false"}
            )
        except Exception as e:
            logger.error(
                "storage_upload_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise BlobStoreError("upload", path, str(e)) from e

        logger.info("uploaded_to_storage", bucket=bucket, path=path)
        return path

    def download(self, bucket: str, path: str) -> bytes:
        """
        Fetch stored bytes.

        Raises:
            BlobStoreError: If the object is missing or storage fails
        """
        try:
            content = self.db.storage.from_(bucket).download(path)
        except Exception as e:
            logger.error(
                "storage_download_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise BlobStoreError("download", path, str(e)) from e

        if not content:
            raise BlobStoreError("download", path, "empty object")
        return content

    def url(self, bucket: str, path: str, expires_in: Optional[int] = None) -> str:
        """
        Signed URL for temporary download access.

        Raises:
            BlobStoreError: If storage cannot sign the path
        """
        expires_in = expires_in or settings.signed_url_expiry_seconds
        try:
            result = self.db.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as e:
            logger.warning(
                "signed_url_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise BlobStoreError("sign", path, str(e)) from e

        signed = result.get("signedURL") or result.get("signedUrl")
        if not signed:
            raise BlobStoreError("sign", path, "no URL returned")
        return signed

    def remove(self, bucket: str, path: str) -> None:
        """Delete an object."""
        try:
            self.db.storage.from_(bucket).remove([path])
        except Exception as e:
            logger.error(
                "storage_remove_failed",
                bucket=bucket,
                path=path,
                error=str(e)
            )
            raise BlobStoreError("remove", path, str(e)) from e


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Get or create BlobStore instance."""
    global _blob_store
    if _blob_store is None:
        _blob_store = BlobStore()
    return _blob_store
