"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, TimestampMixin
from models.bulk_import import (
    ImportStatus,
    DraftStatus,
    UploadedFile,
    UploadOutcome,
    SkippedFile,
    DraftImageResponse,
    DraftProductResponse,
    ImportSessionResponse,
    ImportSummary,
    UploadResult,
    ImportCreate,
    DraftUpdate,
    SplitRequest,
    MergeRequest,
    ChangePrimaryRequest,
    BatchDefaults,
    ValidationIssue,
    ValidationReport,
    PromotedDraft,
    FailedDraft,
    PromotionResult,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",

    # Bulk import
    "ImportStatus",
    "DraftStatus",
    "UploadedFile",
    "UploadOutcome",
    "SkippedFile",
    "DraftImageResponse",
    "DraftProductResponse",
    "ImportSessionResponse",
    "ImportSummary",
    "UploadResult",
    "ImportCreate",
    "DraftUpdate",
    "SplitRequest",
    "MergeRequest",
    "ChangePrimaryRequest",
    "BatchDefaults",
    "ValidationIssue",
    "ValidationReport",
    "PromotedDraft",
    "FailedDraft",
    "PromotionResult",
]
