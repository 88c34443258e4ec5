"""
Draft editor for bulk imports.

Mutations an operator applies while reviewing grouped drafts: field edits,
splitting a group, merging two groups, choosing the primary image, batch
defaults and deletion.

Image ownership (draft_images.draft_product_id) is the only mutable edge in
the model. Every reassignment is issued as a single UPDATE, and structural
operations on the same import are serialized with an in-process lock.
After any structural change each non-empty draft keeps exactly one primary
image.

Any edit of a ready or error draft moves it back to draft, so it has to be
validated again before promotion.
"""

import threading
import uuid
import weakref
from typing import Any, Optional
import structlog

from config import get_supabase_client
from models.bulk_import import (
    BATCH_DEFAULT_FIELDS,
    EDITABLE_DRAFT_FIELDS,
    DraftProductResponse,
    DraftStatus,
)
from exceptions import (
    AppError,
    DatabaseError,
    DraftImageNotFoundError,
    InputError,
    InvalidReferenceError,
    InvalidStatusTransitionError,
)
from services.bulk_import_service import BulkImportService

logger = structlog.get_logger(__name__)

class SessionLock:
    """Mutex of one import. Weak-referenceable so idle entries are dropped."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


_locks_guard = threading.Lock()
_session_locks: "weakref.WeakValueDictionary[str, SessionLock]" = weakref.WeakValueDictionary()


def session_lock(import_id: str) -> SessionLock:
    """
    Lock serializing structural edits and promotion of one import.

    Entries live only while a caller holds a reference to the lock.
    """
    with _locks_guard:
        lock = _session_locks.get(import_id)
        if lock is None:
            lock = _session_locks[import_id] = SessionLock()
        return lock


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, DraftStatus) else str(status)


class DraftEditorService:
    """
    Draft editing business logic.

    Handles field updates, split/merge of image groups, primary image
    selection, batch defaults and deletion.
    """

    def __init__(self, db=None, imports: Optional[BulkImportService] = None):
        self.db = db or get_supabase_client()
        self.imports = imports or BulkImportService(self.db)
        self.drafts_table = self.imports.drafts_table
        self.images_table = self.imports.images_table

    # ===================
    # HELPERS
    # ===================

    @staticmethod
    def _ensure_editable(draft: dict) -> None:
        if draft["status"] == DraftStatus.CREATED.value:
            raise InvalidStatusTransitionError(
                DraftStatus.CREATED.value, DraftStatus.DRAFT.value
            )

    @staticmethod
    def _status_reset(draft: dict) -> dict:
        """Columns that send a validated draft back to draft status."""
        if draft["status"] in (DraftStatus.READY.value, DraftStatus.ERROR.value):
            return {"status": DraftStatus.DRAFT.value, "validation_errors": []}
        return {}

    def _update_draft_row(self, draft_id: str, changes: dict) -> None:
        if changes:
            self.db.table(self.drafts_table).update(changes).eq("id", draft_id).execute()

    def _set_primary(self, image_id: str) -> None:
        self.db.table(self.images_table).update(
            {"is_primary": True}
        ).eq("id", image_id).execute()

    def _sort_order_after(self, draft: dict) -> float:
        """Sort position between a draft and the next one in its import."""
        current = draft.get("sort_order") or 0
        result = (
            self.db.table(self.drafts_table)
            .select("sort_order")
            .eq("import_id", draft["import_id"])
            .gt("sort_order", current)
            .order("sort_order")
            .limit(1)
            .execute()
        )
        if not result.data:
            return current + 1
        return (current + result.data[0]["sort_order"]) / 2

    # ===================
    # FIELD EDITS
    # ===================

    def update_draft(self, draft_id: str, fields: dict) -> DraftProductResponse:
        """
        Partially update a draft.

        Only name, description, sku, price, stock_quantity, category_id, tags
        and status are applied; other keys are ignored. Without an explicit
        status, editing a ready/error draft resets it to draft. Status can be
        set to draft or ready, never to error or created (validator and
        promotion own those).

        Args:
            draft_id: Draft UUID
            fields: Partial field values

        Returns:
            Updated draft with images

        Raises:
            DraftNotFoundError: If the draft doesn't exist
            InvalidStatusTransitionError: On edits of created drafts or
                forbidden status values
        """
        changes = {k: v for k, v in fields.items() if k in EDITABLE_DRAFT_FIELDS}
        draft = self.imports.get_draft_row(draft_id)

        if not changes:
            return self.imports.get_draft(draft_id)

        self._ensure_editable(draft)

        if "status" in changes:
            new_status = _status_value(changes["status"])
            if new_status not in (DraftStatus.DRAFT.value, DraftStatus.READY.value):
                raise InvalidStatusTransitionError(draft["status"], new_status)
            changes["status"] = new_status
            changes["validation_errors"] = []
        else:
            changes.update(self._status_reset(draft))

        logger.info(
            "updating_draft",
            draft_id=draft_id,
            fields=sorted(k for k in changes if k != "validation_errors")
        )

        try:
            self._update_draft_row(draft_id, changes)
        except Exception as e:
            logger.error("update_draft_failed", draft_id=draft_id, error=str(e))
            raise DatabaseError("update", str(e))

        self.imports.mark_review(draft["import_id"])
        return self.imports.get_draft(draft_id)

    # ===================
    # STRUCTURAL EDITS
    # ===================

    def split_group(self, source_draft_id: str, image_ids: list[str]) -> DraftProductResponse:
        """
        Move a subset of a draft's images into a new draft.

        The new draft copies price, stock, category and tags (not images) and
        is named "<source name> (split)". Primary image policy: a moved
        primary stays primary on the new draft, otherwise the first moved
        image becomes primary; a source that lost its primary promotes its
        first remaining image by sort_order.

        Args:
            source_draft_id: Draft to split
            image_ids: Images to move, all owned by the source

        Returns:
            The new draft with its images

        Raises:
            InputError: If image_ids is empty
            DraftNotFoundError: If the source doesn't exist
            InvalidReferenceError: If an image is not owned by the source
        """
        if not image_ids:
            raise InputError("image_ids is required", details={"draft_id": source_draft_id})

        source = self.imports.get_draft_row(source_draft_id)
        self._ensure_editable(source)
        requested = list(dict.fromkeys(image_ids))

        with session_lock(source["import_id"]):
            images = self.imports.get_images(source_draft_id)
            owned = {img["id"] for img in images}
            foreign = [image_id for image_id in requested if image_id not in owned]
            if foreign:
                raise InvalidReferenceError(
                    "Images do not belong to this draft",
                    details={"draft_id": source_draft_id, "image_ids": foreign}
                )

            moving_ids = set(requested)
            moving = [img for img in images if img["id"] in moving_ids]
            remaining = [img for img in images if img["id"] not in moving_ids]
            moved_primary = any(img.get("is_primary") for img in moving)

            try:
                new_draft = (
                    self.db.table(self.drafts_table)
                    .insert({
                        "import_id": source["import_id"],
                        "group_key": f"{source['group_key']}-split-{uuid.uuid4().hex[:6]}",
                        "name": f"{source['name']} (split)",
                        "description": None,
                        "price": source.get("price"),
                        "stock_quantity": source.get("stock_quantity"),
                        "category_id": source.get("category_id"),
                        "tags": list(source.get("tags") or []),
                        "status": DraftStatus.DRAFT.value,
                        "sort_order": self._sort_order_after(source),
                        "validation_errors": [],
                        "original_filenames": [
                            img.get("original_filename") or img["filename"] for img in moving
                        ],
                    })
                    .execute()
                ).data[0]

                self.db.table(self.images_table).update(
                    {"draft_product_id": new_draft["id"]}
                ).in_("id", requested).execute()

                if not moved_primary:
                    self._set_primary(moving[0]["id"])
                if moved_primary and remaining:
                    self._set_primary(remaining[0]["id"])

                self._update_draft_row(source_draft_id, self._status_reset(source))

            except AppError:
                raise
            except Exception as e:
                logger.error("split_group_failed", draft_id=source_draft_id, error=str(e))
                raise DatabaseError("update", str(e))

        logger.info(
            "draft_split",
            source_draft_id=source_draft_id,
            new_draft_id=new_draft["id"],
            moved=len(moving),
            remaining=len(remaining)
        )

        self.imports.mark_review(source["import_id"])
        return self.imports.get_draft(new_draft["id"])

    def merge_groups(self, target_draft_id: str, source_draft_id: str) -> DraftProductResponse:
        """
        Move every image of the source draft into the target and delete the source.

        Source images are appended after the target's images. If both drafts
        carry a primary image, the target's wins.

        Returns:
            The merged target draft

        Raises:
            InputError: If an ID is missing or both IDs are the same
            DraftNotFoundError: If either draft doesn't exist
            InvalidReferenceError: If the drafts belong to different imports
        """
        if not target_draft_id or not source_draft_id:
            raise InputError("target_draft_id and source_draft_id are required")
        if target_draft_id == source_draft_id:
            raise InputError(
                "Cannot merge a draft into itself",
                details={"draft_id": target_draft_id}
            )

        target = self.imports.get_draft_row(target_draft_id)
        source = self.imports.get_draft_row(source_draft_id)

        if target["import_id"] != source["import_id"]:
            raise InvalidReferenceError(
                "Drafts belong to different imports",
                details={"target_draft_id": target_draft_id, "source_draft_id": source_draft_id}
            )
        self._ensure_editable(target)
        self._ensure_editable(source)

        with session_lock(target["import_id"]):
            target_images = self.imports.get_images(target_draft_id)
            source_images = self.imports.get_images(source_draft_id)

            base = max((img.get("sort_order") or 0 for img in target_images), default=-1) + 1
            target_has_primary = any(img.get("is_primary") for img in target_images)
            source_primaries = [img["id"] for img in source_images if img.get("is_primary")]

            try:
                if source_images:
                    self.db.table(self.images_table).update(
                        {"draft_product_id": target_draft_id}
                    ).eq("draft_product_id", source_draft_id).execute()

                    for offset, img in enumerate(source_images):
                        self.db.table(self.images_table).update(
                            {"sort_order": base + offset}
                        ).eq("id", img["id"]).execute()

                    if target_has_primary and source_primaries:
                        self.db.table(self.images_table).update(
                            {"is_primary": False}
                        ).in_("id", source_primaries).execute()
                    elif not target_has_primary and not source_primaries:
                        combined = target_images + source_images
                        self._set_primary(combined[0]["id"])

                changes = self._status_reset(target)
                changes["original_filenames"] = (
                    list(target.get("original_filenames") or [])
                    + list(source.get("original_filenames") or [])
                )
                self._update_draft_row(target_draft_id, changes)

                self.db.table(self.drafts_table).delete().eq("id", source_draft_id).execute()

            except Exception as e:
                logger.error(
                    "merge_groups_failed",
                    target_draft_id=target_draft_id,
                    source_draft_id=source_draft_id,
                    error=str(e)
                )
                raise DatabaseError("update", str(e))

        logger.info(
            "drafts_merged",
            target_draft_id=target_draft_id,
            source_draft_id=source_draft_id,
            moved=len(source_images)
        )

        self.imports.mark_review(target["import_id"])
        return self.imports.get_draft(target_draft_id)

    def change_primary_image(self, draft_id: str, image_id: str) -> DraftProductResponse:
        """
        Make image_id the only primary image of a draft.

        Raises:
            DraftNotFoundError: If the draft doesn't exist
            DraftImageNotFoundError: If the image doesn't exist
            InvalidReferenceError: If the image belongs to another draft
        """
        if not image_id:
            raise InputError("image_id is required", details={"draft_id": draft_id})

        draft = self.imports.get_draft_row(draft_id)
        self._ensure_editable(draft)

        with session_lock(draft["import_id"]):
            result = (
                self.db.table(self.images_table)
                .select("id, draft_product_id")
                .eq("id", image_id)
                .limit(1)
                .execute()
            )
            if not result.data:
                raise DraftImageNotFoundError(image_id)
            if result.data[0]["draft_product_id"] != draft_id:
                raise InvalidReferenceError(
                    "Image does not belong to this draft",
                    details={"draft_id": draft_id, "image_id": image_id}
                )

            try:
                self.db.table(self.images_table).update(
                    {"is_primary": False}
                ).eq("draft_product_id", draft_id).execute()
                self._set_primary(image_id)
                self._update_draft_row(draft_id, self._status_reset(draft))
            except Exception as e:
                logger.error("change_primary_failed", draft_id=draft_id, error=str(e))
                raise DatabaseError("update", str(e))

        logger.info("primary_image_changed", draft_id=draft_id, image_id=image_id)

        self.imports.mark_review(draft["import_id"])
        return self.imports.get_draft(draft_id)

    def delete_draft(self, draft_id: str) -> bool:
        """
        Delete a draft and its images.

        Blobs stay in the temporary namespace until cleanup.

        Raises:
            DraftNotFoundError: If the draft doesn't exist
        """
        draft = self.imports.get_draft_row(draft_id)

        logger.info("deleting_draft", draft_id=draft_id)

        with session_lock(draft["import_id"]):
            try:
                self.db.table(self.images_table).delete().eq(
                    "draft_product_id", draft_id
                ).execute()
                self.db.table(self.drafts_table).delete().eq("id", draft_id).execute()
            except Exception as e:
                logger.error("delete_draft_failed", draft_id=draft_id, error=str(e))
                raise DatabaseError("delete", str(e))

        logger.info("draft_deleted", draft_id=draft_id)
        self.imports.mark_review(draft["import_id"])
        return True

    # ===================
    # BATCH DEFAULTS
    # ===================

    def apply_batch_defaults(self, import_id: str, defaults: dict) -> int:
        """
        Broadcast default values onto every draft still in draft status.

        Only keys present in defaults (price, stock_quantity, category_id,
        tags) are written; other columns are left untouched. Ready, error and
        created drafts are never modified. The defaults are also stored on
        the import and seed drafts from later uploads.

        Args:
            import_id: Import UUID
            defaults: Partial defaults

        Returns:
            Number of drafts updated

        Raises:
            ImportNotFoundError: If the import doesn't exist
        """
        session = self.imports.get_import_row(import_id)
        changes = {k: v for k, v in defaults.items() if k in BATCH_DEFAULT_FIELDS}

        if not changes:
            return 0

        logger.info("applying_batch_defaults", import_id=import_id, fields=sorted(changes))

        try:
            result = (
                self.db.table(self.drafts_table)
                .update(changes)
                .eq("import_id", import_id)
                .eq("status", DraftStatus.DRAFT.value)
                .execute()
            )

            self.db.table(self.imports.imports_table).update({
                "default_settings": {**(session.get("default_settings") or {}), **changes},
            }).eq("id", import_id).execute()

        except Exception as e:
            logger.error("apply_batch_defaults_failed", import_id=import_id, error=str(e))
            raise DatabaseError("update", str(e))

        updated = len(result.data or [])
        logger.info("batch_defaults_applied", import_id=import_id, updated=updated)

        self.imports.mark_review(import_id)
        return updated


# Singleton instance
_draft_editor_service: Optional[DraftEditorService] = None


def get_draft_editor_service() -> DraftEditorService:
    """Get or create DraftEditorService instance."""
    global _draft_editor_service
    if _draft_editor_service is None:
        _draft_editor_service = DraftEditorService()
    return _draft_editor_service
