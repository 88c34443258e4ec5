"""
Cleanup of the temporary upload namespace of an import.

Runs after promotion as a background task. Blobs still referenced by drafts
that were not promoted (failed or never validated) are kept so those drafts
can be retried; pass force=True to wipe the whole namespace.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.bulk_import import DraftStatus
from services.bulk_import_service import BulkImportService
from services.storage_service import StorageService, temp_prefix

logger = structlog.get_logger(__name__)


class CleanupService:
    """Deletes temporary blobs of an import. Never raises."""

    def __init__(
        self,
        db=None,
        storage: Optional[StorageService] = None,
        imports: Optional[BulkImportService] = None,
    ):
        self.db = db or get_supabase_client()
        self.storage = storage or StorageService(self.db)
        self.imports = imports or BulkImportService(self.db, self.storage)

    def cleanup_temp_files(self, import_id: str, force: bool = False) -> int:
        """
        Delete the blobs under temp-imports/<import_id>.

        Args:
            import_id: Import UUID
            force: Also delete blobs of drafts that are not created yet

        Returns:
            Number of blobs deleted (0 when cleanup failed)
        """
        logger.info("cleanup_started", import_id=import_id, force=force)

        try:
            keep: set[str] = set()
            if not force:
                for draft in self.imports.list_drafts(import_id):
                    if draft.status != DraftStatus.CREATED:
                        keep.update(img.storage_path for img in draft.images if img.storage_path)

            paths = [
                path for path in self.storage.list_paths(temp_prefix(import_id))
                if path not in keep
            ]
            self.storage.delete_many(paths)

        except Exception as e:
            logger.error("cleanup_failed", import_id=import_id, error=str(e))
            return 0

        logger.info(
            "cleanup_finished",
            import_id=import_id,
            deleted=len(paths),
            kept=len(keep)
        )
        return len(paths)


# Singleton instance
_cleanup_service: Optional[CleanupService] = None


def get_cleanup_service() -> CleanupService:
    """Get or create CleanupService instance."""
    global _cleanup_service
    if _cleanup_service is None:
        _cleanup_service = CleanupService()
    return _cleanup_service
