"""
Bulk import session service.

Owns the lifecycle of one import: creation, upload of files into the
temporary namespace, grouping into draft products and the read side used by
the review screens. Editing, validation and promotion live in their own
services and reuse the read helpers defined here.
"""

import uuid
from typing import Iterable, Optional
import structlog

from config import get_supabase_client, settings
from models.bulk_import import (
    DraftImageResponse,
    DraftProductResponse,
    DraftStatus,
    ImportSessionResponse,
    ImportStatus,
    ImportSummary,
    SkippedFile,
    UploadedFile,
    UploadOutcome,
    UploadResult,
)
from exceptions import (
    AppError,
    DatabaseError,
    DraftNotFoundError,
    ImportNotFoundError,
    StorageError,
)
from services.grouping_service import group_files, product_name
from services.storage_service import StorageService, temp_prefix

logger = structlog.get_logger(__name__)

IMPORTS_TABLE = "bulk_imports"
DRAFTS_TABLE = "draft_products"
IMAGES_TABLE = "draft_images"


def _safe_filename(filename: str) -> str:
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    return name.strip().replace(" ", "_") or "file"


def _normalize_draft(row: dict) -> dict:
    """Replace NULL list columns with empty lists."""
    for column in ("tags", "validation_errors", "original_filenames"):
        if row.get(column) is None:
            row[column] = []
    if row.get("name") is None:
        row["name"] = ""
    return row


class BulkImportService:
    """
    Import session manager.

    Handles create/upload/grouping and reads of imports, drafts and images.
    """

    def __init__(self, db=None, storage: Optional[StorageService] = None):
        self.db = db or get_supabase_client()
        self.storage = storage or StorageService(self.db)
        self.imports_table = IMPORTS_TABLE
        self.drafts_table = DRAFTS_TABLE
        self.images_table = IMAGES_TABLE

    # ===================
    # READ OPERATIONS
    # ===================

    def get_import_row(self, import_id: str) -> dict:
        """
        Fetch the raw import row.

        Raises:
            ImportNotFoundError: If the import doesn't exist
        """
        try:
            result = (
                self.db.table(self.imports_table)
                .select("*")
                .eq("id", import_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportNotFoundError(import_id)
        return result.data[0]

    def get_import(self, import_id: str) -> ImportSessionResponse:
        """Get an import session by ID."""
        return ImportSessionResponse(**self.get_import_row(import_id))

    def list_imports(self, store_id: str, limit: int = 10) -> list[ImportSessionResponse]:
        """
        Recent imports of a store, newest first.

        Args:
            store_id: Store UUID
            limit: Maximum imports returned
        """
        logger.debug("listing_imports", store_id=store_id, limit=limit)

        try:
            result = (
                self.db.table(self.imports_table)
                .select("*")
                .eq("store_id", store_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list_imports_failed", store_id=store_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [ImportSessionResponse(**row) for row in result.data]

    def get_summary(self, import_id: str) -> ImportSummary:
        """
        Import session plus the number of drafts in each status.
        """
        row = self.get_import_row(import_id)

        try:
            result = (
                self.db.table(self.drafts_table)
                .select("status")
                .eq("import_id", import_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_summary_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        counts = {status.value: 0 for status in DraftStatus}
        for draft in result.data:
            counts[draft["status"]] = counts.get(draft["status"], 0) + 1

        return ImportSummary(**row, draft_counts=counts)

    def get_draft_row(self, draft_id: str) -> dict:
        """
        Fetch the raw draft row (without images).

        Raises:
            DraftNotFoundError: If the draft doesn't exist
        """
        try:
            result = (
                self.db.table(self.drafts_table)
                .select("*")
                .eq("id", draft_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_draft_failed", draft_id=draft_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise DraftNotFoundError(draft_id)
        return _normalize_draft(result.data[0])

    def get_images(self, draft_id: str) -> list[dict]:
        """Images owned by a draft, ordered by sort_order."""
        try:
            result = (
                self.db.table(self.images_table)
                .select("*")
                .eq("draft_product_id", draft_id)
                .order("sort_order")
                .execute()
            )
        except Exception as e:
            logger.error("get_images_failed", draft_id=draft_id, error=str(e))
            raise DatabaseError("select", str(e))
        return result.data

    def get_draft(self, draft_id: str) -> DraftProductResponse:
        """Get a draft with its images."""
        row = self.get_draft_row(draft_id)
        return DraftProductResponse(
            **{**row, "images": [DraftImageResponse(**img) for img in self.get_images(draft_id)]}
        )

    def list_drafts(self, import_id: str) -> list[DraftProductResponse]:
        """
        All drafts of an import with nested images.

        Drafts are ordered by sort_order, images by sort_order within each
        draft.
        """
        logger.debug("listing_drafts", import_id=import_id)

        try:
            drafts = (
                self.db.table(self.drafts_table)
                .select("*")
                .eq("import_id", import_id)
                .order("sort_order")
                .execute()
            ).data

            images_by_draft: dict[str, list[dict]] = {d["id"]: [] for d in drafts}
            if drafts:
                images = (
                    self.db.table(self.images_table)
                    .select("*")
                    .in_("draft_product_id", list(images_by_draft))
                    .order("sort_order")
                    .execute()
                ).data
                for image in images:
                    images_by_draft[image["draft_product_id"]].append(image)

        except Exception as e:
            logger.error("list_drafts_failed", import_id=import_id, error=str(e))
            raise DatabaseError("select", str(e))

        return [
            DraftProductResponse(
                **{
                    **_normalize_draft(draft),
                    "images": [DraftImageResponse(**img) for img in images_by_draft[draft["id"]]],
                }
            )
            for draft in drafts
        ]

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create_import(self, store_id: str, user_id: str) -> str:
        """
        Start a new import session.

        Args:
            store_id: Store UUID
            user_id: User UUID

        Returns:
            New import ID

        Raises:
            DatabaseError: If the insert fails
        """
        logger.info("creating_import", store_id=store_id, user_id=user_id)

        try:
            result = (
                self.db.table(self.imports_table)
                .insert({
                    "store_id": store_id,
                    "user_id": user_id,
                    "status": ImportStatus.UPLOADING.value,
                    "total_files": 0,
                    "total_groups": 0,
                    "total_products_created": 0,
                })
                .execute()
            )
        except Exception as e:
            logger.error("create_import_failed", store_id=store_id, error=str(e))
            raise DatabaseError("insert", str(e))

        import_id = result.data[0]["id"]
        logger.info("import_created", import_id=import_id)
        return import_id

    def _store_file(self, import_id: str, file: UploadedFile) -> UploadOutcome:
        """Validate one file and put it in the temporary namespace."""
        if not (file.content_type or "").startswith("image/"):
            return UploadOutcome.skipped(file, f"Unsupported file type: {file.content_type}")
        if file.size == 0:
            return UploadOutcome.skipped(file, "File is empty")
        if file.size > settings.max_upload_bytes:
            return UploadOutcome.skipped(
                file, f"File exceeds {settings.max_upload_bytes} bytes"
            )

        stored_name = f"{uuid.uuid4().hex[:8]}-{_safe_filename(file.filename)}"
        path = f"{temp_prefix(import_id)}/{stored_name}"

        try:
            url = self.storage.put(path, file.content, file.content_type)
        except StorageError as e:
            return UploadOutcome.skipped(file, e.message)

        return UploadOutcome.ok(file, path, url)

    def _next_sort_order(self, import_id: str) -> float:
        result = (
            self.db.table(self.drafts_table)
            .select("sort_order")
            .eq("import_id", import_id)
            .order("sort_order", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return 0
        return (result.data[0].get("sort_order") or 0) + 1

    def _create_draft_from_group(
        self,
        import_id: str,
        key: str,
        members: list[UploadOutcome],
        sort_order: float,
        defaults: dict,
        created: list[str],
    ) -> DraftProductResponse:
        """
        Insert one draft and its images; the first image is primary.

        The draft ID is appended to `created` as soon as the row exists.
        """
        draft = (
            self.db.table(self.drafts_table)
            .insert({
                "import_id": import_id,
                "group_key": key,
                "name": product_name(key),
                "status": DraftStatus.DRAFT.value,
                "sort_order": sort_order,
                "price": defaults.get("price"),
                "stock_quantity": defaults.get("stock_quantity"),
                "category_id": defaults.get("category_id"),
                "tags": defaults.get("tags") or [],
                "validation_errors": [],
                "original_filenames": [m.file.filename for m in members],
            })
            .execute()
        ).data[0]
        created.append(draft["id"])

        images = (
            self.db.table(self.images_table)
            .insert([
                {
                    "draft_product_id": draft["id"],
                    "temp_url": m.temp_url,
                    "storage_path": m.storage_path,
                    "filename": m.storage_path.rsplit("/", 1)[-1],
                    "original_filename": m.file.filename,
                    "file_size": m.file.size,
                    "mime_type": m.file.content_type,
                    "is_primary": index == 0,
                    "sort_order": index,
                }
                for index, m in enumerate(members)
            ])
            .execute()
        ).data

        return DraftProductResponse(
            **{
                **_normalize_draft(draft),
                "images": [DraftImageResponse(**img) for img in images],
            }
        )

    def ingest_upload(self, import_id: str, files: Iterable[UploadedFile]) -> UploadResult:
        """
        Store uploaded files and group them into drafts.

        Each file is handled on its own: a file that is not an image, is too
        large, or fails to upload is reported in `skipped` and left out of
        every group. Counts accumulate across repeated uploads into the same
        import.

        Args:
            import_id: Import UUID
            files: Uploaded files in submission order

        Returns:
            UploadResult with created drafts and skipped files

        Raises:
            ImportNotFoundError: If the import doesn't exist
            DatabaseError: If drafts cannot be written. Rows and blobs of this
                batch are discarded and the import is marked as error
        """
        session = self.get_import_row(import_id)
        files = list(files)

        logger.info("ingesting_upload", import_id=import_id, file_count=len(files))

        outcomes = [self._store_file(import_id, f) for f in files]
        stored = [o for o in outcomes if o.stored]
        skipped = [
            SkippedFile(filename=o.file.filename, reason=o.reason)
            for o in outcomes if not o.stored
        ]

        for item in skipped:
            logger.warning(
                "upload_file_skipped",
                import_id=import_id,
                filename=item.filename,
                reason=item.reason
            )

        groups = group_files(stored, filename=lambda o: o.file.filename)
        defaults = session.get("default_settings") or {}

        created_ids: list[str] = []

        try:
            start = self._next_sort_order(import_id)
            drafts = [
                self._create_draft_from_group(
                    import_id, key, members, start + index, defaults, created_ids
                )
                for index, (key, members) in enumerate(groups.items())
            ]

            self.db.table(self.imports_table).update({
                "total_files": (session.get("total_files") or 0) + len(stored),
                "total_groups": (session.get("total_groups") or 0) + len(drafts),
                "status": ImportStatus.GROUPING.value,
            }).eq("id", import_id).execute()

        except Exception as e:
            logger.error("ingest_upload_failed", import_id=import_id, error=str(e))
            self._discard_batch(import_id, created_ids, [o.storage_path for o in stored])
            self._mark_failed(import_id, str(e))
            if isinstance(e, AppError):
                raise
            raise DatabaseError("insert", str(e))

        logger.info(
            "upload_grouped",
            import_id=import_id,
            stored=len(stored),
            skipped=len(skipped),
            groups=len(drafts)
        )

        return UploadResult(
            import_id=import_id,
            total_files=len(stored),
            total_groups=len(drafts),
            skipped=skipped,
            drafts=drafts,
        )

    def _discard_batch(self, import_id: str, draft_ids: list[str], paths: list[str]) -> None:
        """
        Undo a failed batch: its drafts, their images and the stored blobs.

        Best-effort; earlier batches of the import are left alone.
        """
        try:
            if draft_ids:
                self.db.table(self.images_table).delete().in_(
                    "draft_product_id", draft_ids
                ).execute()
                self.db.table(self.drafts_table).delete().in_("id", draft_ids).execute()
        except Exception as e:
            logger.error(
                "discard_batch_rows_failed",
                import_id=import_id,
                drafts=len(draft_ids),
                error=str(e)
            )

        try:
            self.storage.delete_many(paths)
        except Exception as e:
            logger.warning(
                "discard_batch_blobs_failed",
                import_id=import_id,
                paths=len(paths),
                error=str(e)
            )

    def _mark_failed(self, import_id: str, message: str) -> None:
        """Record a fatal ingest error on the import (best-effort)."""
        try:
            self.db.table(self.imports_table).update({
                "status": ImportStatus.ERROR.value,
                "error_message": message,
            }).eq("id", import_id).execute()
        except Exception as e:
            logger.error("mark_import_failed_failed", import_id=import_id, error=str(e))

    def mark_review(self, import_id: str) -> None:
        """
        Advance an import from grouping to review.

        Called on the first edit of a draft. Progress indicator only; no
        operation is gated on it.
        """
        try:
            self.db.table(self.imports_table).update({
                "status": ImportStatus.REVIEW.value,
            }).eq("id", import_id).eq("status", ImportStatus.GROUPING.value).execute()
        except Exception as e:
            logger.warning("mark_review_failed", import_id=import_id, error=str(e))


# Singleton instance
_bulk_import_service: Optional[BulkImportService] = None


def get_bulk_import_service() -> BulkImportService:
    """Get or create BulkImportService instance."""
    global _bulk_import_service
    if _bulk_import_service is None:
        _bulk_import_service = BulkImportService()
    return _bulk_import_service
