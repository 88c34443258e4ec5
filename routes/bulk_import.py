"""
Bulk import API routes.

Upload images, review and fix the generated drafts, validate and promote
them into catalog products. Authentication is handled upstream; the caller
passes store and user IDs explicitly.
"""

from fastapi import APIRouter, BackgroundTasks, File, Query, UploadFile
from fastapi.responses import JSONResponse, Response
import structlog

from models.bulk_import import (
    BatchDefaults,
    ChangePrimaryRequest,
    DraftProductResponse,
    DraftUpdate,
    ImportCreate,
    ImportSessionResponse,
    ImportSummary,
    MergeRequest,
    SplitRequest,
    UploadedFile,
    UploadResult,
    ValidationReport,
)
from services.bulk_import_service import get_bulk_import_service
from services.cleanup_service import get_cleanup_service
from services.draft_editor_service import get_draft_editor_service
from services.draft_validation_service import get_draft_validation_service
from services.promotion_service import get_promotion_service
from exceptions import AppError, InputError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/bulk-import", tags=["Bulk Import"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# IMPORT SESSIONS
# ===================

@router.post("", status_code=201)
async def create_import(body: ImportCreate):
    """
    Start a new import session.

    Returns:
        {"import_id": "..."}
    """
    try:
        import_id = get_bulk_import_service().create_import(body.store_id, body.user_id)
        return {"import_id": import_id}
    except Exception as e:
        return handle_error(e)


@router.get("", response_model=list[ImportSessionResponse])
async def list_imports(
    store_id: str = Query(..., min_length=1, description="Store UUID"),
    limit: int = Query(10, ge=1, le=100, description="Maximum imports returned")
):
    """Recent imports of a store, newest first."""
    try:
        return get_bulk_import_service().list_imports(store_id, limit=limit)
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}", response_model=ImportSummary)
async def get_import(import_id: str):
    """
    Import session with draft counts by status.

    Raises:
        404: Import not found
    """
    try:
        return get_bulk_import_service().get_summary(import_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/upload", response_model=UploadResult)
async def upload_files(import_id: str, files: list[UploadFile] = File(...)):
    """
    Upload images and group them into drafts.

    Files that are not images, are too large or fail to store are listed
    in `skipped`; the rest are grouped by filename.
    """
    logger.info("upload_received", import_id=import_id, file_count=len(files))

    try:
        if not files:
            raise InputError("No files uploaded", details={"import_id": import_id})

        uploaded = [
            UploadedFile(
                filename=f.filename or "file",
                content=await f.read(),
                content_type=f.content_type or "application/octet-stream",
            )
            for f in files
        ]
        return get_bulk_import_service().ingest_upload(import_id, uploaded)
    except Exception as e:
        return handle_error(e)


@router.get("/{import_id}/drafts", response_model=list[DraftProductResponse])
async def list_drafts(import_id: str):
    """Drafts of an import with their images."""
    try:
        service = get_bulk_import_service()
        service.get_import_row(import_id)
        return service.list_drafts(import_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/defaults")
async def apply_defaults(import_id: str, body: BatchDefaults):
    """
    Apply default price/stock/category/tags to every draft still in draft status.

    Only fields present in the body are written.
    """
    try:
        updated = get_draft_editor_service().apply_batch_defaults(
            import_id, body.model_dump(exclude_unset=True)
        )
        return {"updated": updated}
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/validate", response_model=ValidationReport)
async def validate_import(import_id: str):
    """Validate every draft and mark it ready or error."""
    try:
        return get_draft_validation_service().validate_session(import_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{import_id}/promote")
async def promote_import(import_id: str, background_tasks: BackgroundTasks):
    """
    Create products from ready drafts.

    Temporary files are cleaned up in the background after the response.
    """
    try:
        result = get_promotion_service().promote_session(import_id)
    except Exception as e:
        return handle_error(e)

    background_tasks.add_task(get_cleanup_service().cleanup_temp_files, import_id)

    return {
        "created_count": result.created_count,
        "failed_count": result.failed_count,
        "created": [item.model_dump() for item in result.created],
        "failed": [item.model_dump() for item in result.failed],
    }


# ===================
# DRAFTS
# ===================

@router.patch("/drafts/{draft_id}", response_model=DraftProductResponse)
async def update_draft(draft_id: str, body: DraftUpdate):
    """
    Update draft fields. Only provided fields are changed.

    Raises:
        404: Draft not found
        422: Draft already created
    """
    try:
        return get_draft_editor_service().update_draft(
            draft_id, body.model_dump(exclude_unset=True)
        )
    except Exception as e:
        return handle_error(e)


@router.delete("/drafts/{draft_id}", status_code=204, response_class=Response)
async def delete_draft(draft_id: str):
    """Delete a draft and its images."""
    try:
        get_draft_editor_service().delete_draft(draft_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


@router.post("/drafts/{draft_id}/split", response_model=DraftProductResponse, status_code=201)
async def split_draft(draft_id: str, body: SplitRequest):
    """
    Move the given images into a new draft.

    Raises:
        400: No image IDs given
        422: An image does not belong to the draft
    """
    try:
        return get_draft_editor_service().split_group(draft_id, body.image_ids)
    except Exception as e:
        return handle_error(e)


@router.post("/drafts/{draft_id}/merge", response_model=DraftProductResponse)
async def merge_draft(draft_id: str, body: MergeRequest):
    """Merge source_draft_id into this draft."""
    try:
        return get_draft_editor_service().merge_groups(draft_id, body.source_draft_id)
    except Exception as e:
        return handle_error(e)


@router.post("/drafts/{draft_id}/primary", response_model=DraftProductResponse)
async def change_primary(draft_id: str, body: ChangePrimaryRequest):
    """Choose the primary image of a draft."""
    try:
        return get_draft_editor_service().change_primary_image(draft_id, body.image_id)
    except Exception as e:
        return handle_error(e)
