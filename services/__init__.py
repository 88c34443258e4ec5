"""
Business logic services.

Each service handles one stage of the bulk import pipeline.
"""

from services.storage_service import StorageService, get_storage_service
from services.bulk_import_service import BulkImportService, get_bulk_import_service
from services.draft_editor_service import DraftEditorService, get_draft_editor_service
from services.draft_validation_service import (
    DraftValidationService,
    get_draft_validation_service,
    draft_errors,
)
from services.promotion_service import PromotionService, get_promotion_service
from services.cleanup_service import CleanupService, get_cleanup_service

__all__ = [
    "StorageService",
    "get_storage_service",
    "BulkImportService",
    "get_bulk_import_service",
    "DraftEditorService",
    "get_draft_editor_service",
    "DraftValidationService",
    "get_draft_validation_service",
    "draft_errors",
    "PromotionService",
    "get_promotion_service",
    "CleanupService",
    "get_cleanup_service",
]
