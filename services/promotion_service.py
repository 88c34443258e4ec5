"""
Promotion of ready drafts into catalog products.

Each ready draft is promoted on its own:

    1. copy every image temp -> permanent storage
    2. insert the product
    3. insert one product_images row per copied image
    4. mark the draft created and log the result

A failure in any step rolls back what that draft already wrote (copied
blobs, product rows), logs the failure and leaves the draft `ready` so it
can be retried. No draft's failure stops its siblings. A failed image copy
aborts the draft instead of falling back to the temporary URL, so no product
ever points at a blob that cleanup will delete.

Runs of the same import are serialized by the import's session lock, and the
final write only flips drafts that are still `ready`, so a draft yields at
most one product. A draft that times out is either abandoned before its
final write (and rolled back) or, if the write already started, reported by
its real outcome.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.bulk_import import (
    DraftProductResponse,
    DraftStatus,
    FailedDraft,
    ImportStatus,
    PromotedDraft,
    PromotionResult,
)
from exceptions import DatabaseError, StorageError, ValidationError
from services.bulk_import_service import BulkImportService
from services.draft_editor_service import session_lock
from services.draft_validation_service import draft_errors
from services.storage_service import StorageService, permanent_path

logger = structlog.get_logger(__name__)

PRODUCTS_TABLE = "products"
PRODUCT_IMAGES_TABLE = "product_images"
CREATION_LOG_TABLE = "bulk_import_products"


class PromotionAbandoned(Exception):
    """The caller stopped waiting for this draft (timeout)."""


class PromotionTimedOut(Exception):
    """A draft did not finish within the per-draft deadline."""


class DraftClaim:
    """
    Arbitrates between a draft's worker and the caller's timeout.

    Exactly one side wins: either the caller abandons the draft before the
    worker starts its final write, or the worker commits and the caller waits
    for that outcome.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.abandoned = False
        self.committing = False

    def abandon(self) -> bool:
        """Abandon unless the worker is already committing. True if abandoned."""
        with self._lock:
            if not self.committing:
                self.abandoned = True
            return self.abandoned

    def begin_commit(self) -> bool:
        """Enter the final write unless abandoned. True if the worker may commit."""
        with self._lock:
            if not self.abandoned:
                self.committing = True
            return self.committing


class PromotionService:
    """
    Promotion engine.

    Runs the per-draft loop on a bounded thread pool; session counters are
    written once after every draft has finished.
    """

    def __init__(
        self,
        db=None,
        storage: Optional[StorageService] = None,
        imports: Optional[BulkImportService] = None,
        max_workers: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.db = db or get_supabase_client()
        self.storage = storage or StorageService(self.db)
        self.imports = imports or BulkImportService(self.db, self.storage)
        self.max_workers = max_workers or settings.promotion_max_workers
        self.timeout_seconds = timeout_seconds or settings.promotion_timeout_seconds

    # ===================
    # PER-DRAFT STEPS
    # ===================

    @staticmethod
    def _check_abandoned(claim: DraftClaim) -> None:
        if claim.abandoned:
            raise PromotionAbandoned()

    def _copy_images(
        self,
        session: dict,
        draft: DraftProductResponse,
        copied: list[str],
        claim: DraftClaim,
    ) -> list[dict]:
        """Copy every draft image to permanent storage; returns product_images payloads."""
        rows = []
        for image in sorted(draft.images, key=lambda img: img.sort_order):
            self._check_abandoned(claim)
            if not image.storage_path:
                raise StorageError("copy", image.temp_url, "draft image has no storage path")

            destination = permanent_path(image.storage_path, session["id"], session["store_id"])
            self.storage.copy(image.storage_path, destination)
            copied.append(destination)

            rows.append({
                "url": self.storage.public_url(destination),
                "storage_path": destination,
                "is_primary": image.is_primary,
                "sort_order": image.sort_order,
            })
        return rows

    def _product_payload(self, session: dict, draft: DraftProductResponse) -> dict:
        return {
            "store_id": session["store_id"],
            "name": draft.name,
            "description": draft.description or "",
            "sku": draft.sku or f"AUTO-{draft.id[:8].upper()}",
            "price": draft.price,
            "stock_quantity": draft.stock_quantity or 0,
            "category_id": draft.category_id,
            "tags": draft.tags,
            "active": True,
        }

    def _log_creation(
        self,
        import_id: str,
        draft_id: str,
        product_id: Optional[str],
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Write the creation log row (best-effort)."""
        try:
            self.db.table(CREATION_LOG_TABLE).insert({
                "import_id": import_id,
                "draft_product_id": draft_id,
                "product_id": product_id,
                "created_successfully": success,
                "error_message": error,
            }).execute()
        except Exception as e:
            logger.warning(
                "creation_log_failed",
                import_id=import_id,
                draft_id=draft_id,
                error=str(e)
            )

    def _rollback(self, draft_id: str, product_id: Optional[str], copied: list[str]) -> None:
        """Undo a partial promotion (best-effort)."""
        if product_id:
            try:
                self.db.table(PRODUCT_IMAGES_TABLE).delete().eq("product_id", product_id).execute()
                self.db.table(PRODUCTS_TABLE).delete().eq("id", product_id).execute()
            except Exception as e:
                logger.error(
                    "promotion_rollback_failed",
                    draft_id=draft_id,
                    product_id=product_id,
                    error=str(e)
                )
        if copied:
            try:
                self.storage.delete_many(copied)
            except Exception as e:
                logger.warning(
                    "promotion_blob_rollback_failed",
                    draft_id=draft_id,
                    paths=len(copied),
                    error=str(e)
                )

    def _promote_draft(
        self,
        session: dict,
        draft: DraftProductResponse,
        claim: DraftClaim,
    ) -> str:
        """
        Promote one draft.

        Returns:
            Product ID

        Raises:
            Exception: Any failure, after rollback and failure logging
        """
        copied: list[str] = []
        product_id = None

        try:
            errors = draft_errors(draft)
            if errors:
                raise ValidationError("; ".join(errors), code="DRAFT_NOT_PROMOTABLE")

            image_rows = self._copy_images(session, draft, copied, claim)
            self._check_abandoned(claim)

            product = (
                self.db.table(PRODUCTS_TABLE)
                .insert(self._product_payload(session, draft))
                .execute()
            ).data[0]
            product_id = product["id"]

            self.db.table(PRODUCT_IMAGES_TABLE).insert(
                [{"product_id": product_id, **row} for row in image_rows]
            ).execute()

            if not claim.begin_commit():
                raise PromotionAbandoned()

            claimed = (
                self.db.table(self.imports.drafts_table)
                .update({
                    "status": DraftStatus.CREATED.value,
                    "created_product_id": product_id,
                    "validation_errors": [],
                })
                .eq("id", draft.id)
                .eq("status", DraftStatus.READY.value)
                .execute()
            )
            if not claimed.data:
                raise ValidationError(
                    "Draft is no longer ready",
                    code="DRAFT_NOT_PROMOTABLE",
                    details={"draft_id": draft.id}
                )

        except Exception as e:
            self._rollback(draft.id, product_id, copied)
            if not claim.abandoned:
                self._log_creation(session["id"], draft.id, None, False, _error_message(e))
            raise

        self._log_creation(session["id"], draft.id, product_id, True)
        return product_id

    # ===================
    # SESSION
    # ===================

    def promote_session(self, import_id: str) -> PromotionResult:
        """
        Create catalog products from every ready draft of an import.

        Draft, error and created drafts are skipped. A draft that fails or
        exceeds the per-draft timeout is reported in `failed` and stays
        ready. The import is then marked completed with the running total of
        created products.

        Args:
            import_id: Import UUID

        Returns:
            PromotionResult listing created and failed drafts

        Raises:
            ImportNotFoundError: If the import doesn't exist
            DatabaseError: If drafts cannot be read or the import cannot be finalized
        """
        with session_lock(import_id):
            return self._promote_locked(import_id)

    def _await_draft(self, claim: DraftClaim, future) -> str:
        """
        Wait for one draft's worker within the per-draft deadline.

        Raises:
            PromotionTimedOut: If the deadline passed before the worker
                started committing
        """
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            if claim.abandon():
                raise PromotionTimedOut(f"Promotion timed out after {self.timeout_seconds}s")
            # Final write already started; its outcome decides.
            return future.result()

    def _promote_locked(self, import_id: str) -> PromotionResult:
        session = self.imports.get_import_row(import_id)
        drafts = [
            d for d in self.imports.list_drafts(import_id)
            if d.status == DraftStatus.READY
        ]

        logger.info(
            "promotion_started",
            import_id=import_id,
            drafts=len(drafts),
            workers=self.max_workers
        )

        result = PromotionResult()
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="promote")

        try:
            tasks = []
            for draft in drafts:
                claim = DraftClaim()
                tasks.append((draft, claim, pool.submit(self._promote_draft, session, draft, claim)))

            for draft, claim, future in tasks:
                try:
                    product_id = self._await_draft(claim, future)
                except PromotionTimedOut as e:
                    self._log_creation(import_id, draft.id, None, False, str(e))
                    result.failed.append(FailedDraft(draft_id=draft.id, name=draft.name, error=str(e)))
                    logger.warning("draft_promotion_timeout", import_id=import_id, draft_id=draft.id)
                except Exception as e:
                    result.failed.append(
                        FailedDraft(draft_id=draft.id, name=draft.name, error=_error_message(e))
                    )
                    logger.warning(
                        "draft_promotion_failed",
                        import_id=import_id,
                        draft_id=draft.id,
                        error=_error_message(e)
                    )
                else:
                    result.created.append(
                        PromotedDraft(draft_id=draft.id, product_id=product_id, name=draft.name)
                    )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        try:
            self.db.table(self.imports.imports_table).update({
                "status": ImportStatus.COMPLETED.value,
                "total_products_created": (session.get("total_products_created") or 0) + result.created_count,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }).eq("id", import_id).execute()
        except Exception as e:
            logger.error("finalize_import_failed", import_id=import_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.info(
            "promotion_finished",
            import_id=import_id,
            created=result.created_count,
            failed=result.failed_count
        )
        return result


def _error_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


# Singleton instance
_promotion_service: Optional[PromotionService] = None


def get_promotion_service() -> PromotionService:
    """Get or create PromotionService instance."""
    global _promotion_service
    if _promotion_service is None:
        _promotion_service = PromotionService()
    return _promotion_service
