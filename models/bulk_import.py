"""
Bulk import schemas for validation and serialization.

Covers the import session, its draft products and their images, plus the
request/response bodies of the editing, validation and promotion endpoints.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import BaseSchema, TimestampMixin


class ImportStatus(str, Enum):
    """Coarse progress of an import session."""
    UPLOADING = "uploading"
    GROUPING = "grouping"
    REVIEW = "review"
    COMPLETED = "completed"
    ERROR = "error"


class DraftStatus(str, Enum):
    """
    Draft lifecycle.

    draft -> ready | error (validator, reversible) -> created (promotion, terminal)
    """
    DRAFT = "draft"
    READY = "ready"
    ERROR = "error"
    CREATED = "created"


# Fields a caller may change through update_draft
EDITABLE_DRAFT_FIELDS = (
    "name",
    "description",
    "sku",
    "price",
    "stock_quantity",
    "category_id",
    "tags",
    "status",
)

# Fields apply_batch_defaults broadcasts
BATCH_DEFAULT_FIELDS = ("price", "stock_quantity", "category_id", "tags")


# ===================
# UPLOAD
# ===================

@dataclass
class UploadedFile:
    """One file received from the upload endpoint."""
    filename: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadOutcome:
    """Per-file result of ingest: either stored in the temp namespace or skipped."""
    file: UploadedFile
    stored: bool
    storage_path: Optional[str] = None
    temp_url: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, file: UploadedFile, storage_path: str, temp_url: str) -> "UploadOutcome":
        return cls(file=file, stored=True, storage_path=storage_path, temp_url=temp_url)

    @classmethod
    def skipped(cls, file: UploadedFile, reason: str) -> "UploadOutcome":
        return cls(file=file, stored=False, reason=reason)


class SkippedFile(BaseSchema):
    """File that was not ingested, with the reason."""
    filename: str
    reason: str


# ===================
# RESPONSES
# ===================

class DraftImageResponse(BaseSchema, TimestampMixin):
    """An uploaded image owned by a draft."""

    id: str = Field(..., description="Draft image UUID")
    draft_product_id: str = Field(..., description="Owning draft UUID")
    temp_url: str = Field(..., description="Public URL in the temporary namespace")
    storage_path: Optional[str] = Field(None, description="Blob path in the temporary namespace")
    filename: str = Field(..., description="Stored filename")
    original_filename: Optional[str] = Field(None, description="Filename as uploaded")
    file_size: Optional[int] = Field(None, ge=0, description="Size in bytes")
    mime_type: Optional[str] = Field(None, description="MIME type")
    is_primary: bool = Field(False, description="Representative image of the draft")
    sort_order: float = Field(0, description="Position within the draft")


class DraftProductResponse(BaseSchema, TimestampMixin):
    """Full draft product response with nested images."""

    id: str = Field(..., description="Draft UUID")
    import_id: str = Field(..., description="Owning import UUID")
    group_key: str = Field(..., description="Filename-derived grouping key")
    name: str = Field("", description="Display name, seeded from the group key")
    description: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[int] = Field(None, description="Price in cents")
    stock_quantity: Optional[int] = None
    category_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    status: DraftStatus = DraftStatus.DRAFT
    sort_order: float = 0
    validation_errors: list[str] = Field(default_factory=list)
    created_product_id: Optional[str] = None
    original_filenames: list[str] = Field(default_factory=list)
    images: list[DraftImageResponse] = Field(default_factory=list)


class ImportSessionResponse(BaseSchema):
    """Import session row."""

    id: str = Field(..., description="Import UUID")
    store_id: str = Field(..., description="Owning store UUID")
    user_id: Optional[str] = Field(None, description="User who started the import")
    status: ImportStatus = Field(..., description="Coarse progress indicator")
    total_files: int = Field(0, ge=0)
    total_groups: int = Field(0, ge=0)
    total_products_created: int = Field(0, ge=0)
    default_settings: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportSummary(ImportSessionResponse):
    """Import session plus draft counts by status."""

    draft_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of drafts per status"
    )


class UploadResult(BaseSchema):
    """Result of ingesting one batch of files."""

    import_id: str
    total_files: int = Field(..., description="Files stored in this batch")
    total_groups: int = Field(..., description="Drafts created from this batch")
    skipped: list[SkippedFile] = Field(default_factory=list)
    drafts: list[DraftProductResponse] = Field(default_factory=list)


# ===================
# REQUESTS
# ===================

class ImportCreate(BaseSchema):
    """Start a new import session."""

    store_id: str = Field(..., min_length=1, description="Store UUID")
    user_id: str = Field(..., min_length=1, description="User UUID")


class DraftUpdate(BaseSchema):
    """
    Partial draft update.

    Only provided fields are applied.
    """

    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    sku: Optional[str] = Field(None, max_length=100)
    price: Optional[int] = Field(None, description="Price in cents")
    stock_quantity: Optional[int] = None
    category_id: Optional[str] = None
    tags: Optional[list[str]] = None
    status: Optional[DraftStatus] = None


class SplitRequest(BaseSchema):
    """Move a subset of a draft's images into a new draft."""

    image_ids: list[str] = Field(default_factory=list)


class MergeRequest(BaseSchema):
    """Move every image of source_draft_id into the target draft."""

    source_draft_id: str = Field(..., min_length=1)


class ChangePrimaryRequest(BaseSchema):
    """Designate the primary image of a draft."""

    image_id: str = Field(..., min_length=1)


class BatchDefaults(BaseSchema):
    """Values broadcast onto every draft still in draft status."""

    price: Optional[int] = Field(None, ge=0, description="Price in cents")
    stock_quantity: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    tags: Optional[list[str]] = None


# ===================
# VALIDATION / PROMOTION
# ===================

class ValidationIssue(BaseSchema):
    """Errors reported for one draft."""

    draft_id: str
    draft_name: str
    errors: list[str]


class ValidationReport(BaseSchema):
    """Outcome of validating every non-promoted draft of an import."""

    valid: bool
    total: int = Field(..., description="Drafts evaluated")
    errors: list[ValidationIssue] = Field(default_factory=list)


class PromotedDraft(BaseSchema):
    draft_id: str
    product_id: str
    name: str


class FailedDraft(BaseSchema):
    draft_id: str
    name: str
    error: str


class PromotionResult(BaseSchema):
    """Per-draft outcome of a promotion run."""

    created: list[PromotedDraft] = Field(default_factory=list)
    failed: list[FailedDraft] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def failed_count(self) -> int:
        return len(self.failed)
