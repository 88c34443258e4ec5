"""
Blob storage for product images.

Thin wrapper over a Supabase Storage bucket. Uploads land in a temporary
namespace per import and are copied into a permanent namespace per store
when drafts are promoted:

    temp-imports/<import_id>/<file>   ->   products/<store_id>/<file>
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from exceptions import StorageError

logger = structlog.get_logger(__name__)

TEMP_PREFIX = "temp-imports"
PERMANENT_PREFIX = "products"
LIST_PAGE_SIZE = 100


def temp_prefix(import_id: str) -> str:
    """Temporary namespace of an import."""
    return f"{TEMP_PREFIX}/{import_id}"


def permanent_path(temp_path: str, import_id: str, store_id: str) -> str:
    """
    Map a temporary blob path to its permanent location.

    Replaces the import-scoped prefix with the store-scoped one and keeps the
    remainder of the path.
    """
    prefix = temp_prefix(import_id) + "/"
    if not temp_path.startswith(prefix):
        raise StorageError("copy", temp_path, f"path is outside {prefix}")
    return f"{PERMANENT_PREFIX}/{store_id}/{temp_path[len(prefix):]}"


class StorageService:
    """
    Blob store operations used by the bulk import pipeline.

    put / copy / public_url / list_paths / delete_many.
    """

    def __init__(self, db=None, bucket: Optional[str] = None):
        self.db = db or get_supabase_client()
        self.bucket_name = bucket or settings.storage_bucket

    @property
    def bucket(self):
        return self.db.storage.from_(self.bucket_name)

    def put(self, path: str, content: bytes, content_type: str) -> str:
        """
        Upload bytes and return the public URL.

        Raises:
            StorageError: If the upload is rejected or times out
        """
        logger.debug(
            "uploading_blob",
            path=path,
            size_bytes=len(content),
            content_type=content_type
        )

        try:
            self.bucket.upload(
                path,
                content,
                file_options={"content-type": content_type, "upsert": "false"}
            )
        except Exception as e:
            logger.warning("blob_upload_failed", path=path, error=str(e))
            raise StorageError("upload", path, str(e)) from e

        return self.public_url(path)

    def copy(self, src_path: str, dst_path: str) -> None:
        """
        Copy a blob inside the bucket.

        Raises:
            StorageError: If the copy fails
        """
        try:
            self.bucket.copy(src_path, dst_path)
        except Exception as e:
            logger.warning(
                "blob_copy_failed",
                src=src_path,
                dst=dst_path,
                error=str(e)
            )
            raise StorageError("copy", src_path, str(e)) from e

        logger.debug("blob_copied", src=src_path, dst=dst_path)

    def public_url(self, path: str) -> str:
        """Public URL of a blob."""
        return self.bucket.get_public_url(path)

    def list_paths(self, prefix: str) -> list[str]:
        """
        List every blob path directly under a prefix.

        Pages through the storage listing until a short page is returned.
        """
        paths: list[str] = []
        offset = 0

        while True:
            try:
                page = self.bucket.list(
                    prefix,
                    {"limit": LIST_PAGE_SIZE, "offset": offset}
                )
            except Exception as e:
                raise StorageError("list", prefix, str(e)) from e

            page = page or []
            paths.extend(
                f"{prefix}/{item['name']}" for item in page if item.get("name")
            )

            if len(page) < LIST_PAGE_SIZE:
                return paths
            offset += LIST_PAGE_SIZE

    def delete_many(self, paths: list[str]) -> None:
        """
        Delete blobs in one request.

        Raises:
            StorageError: If the delete fails
        """
        if not paths:
            return

        try:
            self.bucket.remove(paths)
        except Exception as e:
            raise StorageError("delete", paths[0], str(e)) from e

        logger.debug("blobs_deleted", count=len(paths))


# Singleton instance
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """Get or create StorageService instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
