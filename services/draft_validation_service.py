"""
Draft validation before promotion.

Every non-promoted draft of an import is re-evaluated on each call. Failing
drafts become `error` with their reasons stored on the row; passing drafts
become `ready`. Business-rule failures are returned as data, never raised.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.bulk_import import (
    DraftProductResponse,
    DraftStatus,
    ValidationIssue,
    ValidationReport,
)
from exceptions import DatabaseError
from services.bulk_import_service import BulkImportService

logger = structlog.get_logger(__name__)

NAME_REQUIRED = "Product name is required"
IMAGE_REQUIRED = "At least one image is required"
PRICE_NEGATIVE = "Price cannot be negative"


def draft_errors(draft: DraftProductResponse) -> list[str]:
    """
    Check a draft against the promotion rules.

    All checks run; a draft can fail several at once.
    """
    errors = []
    if not (draft.name or "").strip():
        errors.append(NAME_REQUIRED)
    if not draft.images:
        errors.append(IMAGE_REQUIRED)
    if draft.price is not None and draft.price < 0:
        errors.append(PRICE_NEGATIVE)
    return errors


class DraftValidationService:
    """Validates the drafts of an import and records ready/error status."""

    def __init__(self, db=None, imports: Optional[BulkImportService] = None):
        self.db = db or get_supabase_client()
        self.imports = imports or BulkImportService(self.db)
        self.drafts_table = self.imports.drafts_table

    def validate_session(self, import_id: str) -> ValidationReport:
        """
        Validate every draft of an import that is not yet created.

        Args:
            import_id: Import UUID

        Returns:
            ValidationReport with one issue per failing draft

        Raises:
            ImportNotFoundError: If the import doesn't exist
            DatabaseError: If statuses cannot be written
        """
        self.imports.get_import_row(import_id)
        drafts = [
            d for d in self.imports.list_drafts(import_id)
            if d.status != DraftStatus.CREATED
        ]

        logger.info("validating_drafts", import_id=import_id, count=len(drafts))

        issues: list[ValidationIssue] = []
        ready_ids: list[str] = []

        for draft in drafts:
            errors = draft_errors(draft)
            if errors:
                issues.append(
                    ValidationIssue(draft_id=draft.id, draft_name=draft.name, errors=errors)
                )
            else:
                ready_ids.append(draft.id)

        try:
            if ready_ids:
                self.db.table(self.drafts_table).update({
                    "status": DraftStatus.READY.value,
                    "validation_errors": [],
                }).in_("id", ready_ids).execute()

            for issue in issues:
                self.db.table(self.drafts_table).update({
                    "status": DraftStatus.ERROR.value,
                    "validation_errors": issue.errors,
                }).eq("id", issue.draft_id).execute()

        except Exception as e:
            logger.error("validate_drafts_failed", import_id=import_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.info(
            "drafts_validated",
            import_id=import_id,
            ready=len(ready_ids),
            errors=len(issues)
        )

        self.imports.mark_review(import_id)
        return ValidationReport(valid=not issues, total=len(drafts), errors=issues)


# Singleton instance
_draft_validation_service: Optional[DraftValidationService] = None


def get_draft_validation_service() -> DraftValidationService:
    """Get or create DraftValidationService instance."""
    global _draft_validation_service
    if _draft_validation_service is None:
        _draft_validation_service = DraftValidationService()
    return _draft_validation_service
