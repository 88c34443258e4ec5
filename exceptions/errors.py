"""
Custom exception classes for the application.

Every error carries a stable code and an HTTP status so routes can convert
it with AppError.to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "DRAFT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class InputError(AppError):
    """Required input missing or empty (400)."""

    def __init__(
        self,
        message: str,
        code: str = "INPUT_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details=details
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# STORAGE ERRORS
# ===================

class StorageError(ExternalServiceError):
    """Blob storage operation failed."""

    def __init__(self, operation: str, path: str, message: str):
        super().__init__(
            service="storage",
            message=f"Storage {operation} failed for {path}: {message}",
            details={"operation": operation, "path": path}
        )


# ===================
# BULK IMPORT ERRORS
# ===================

class ImportNotFoundError(NotFoundError):
    """Bulk import session not found."""

    def __init__(self, import_id: str):
        super().__init__(
            resource="Import",
            identifier=import_id,
            code="IMPORT_NOT_FOUND"
        )


class DraftNotFoundError(NotFoundError):
    """Draft product not found."""

    def __init__(self, draft_id: str):
        super().__init__(
            resource="Draft",
            identifier=draft_id,
            code="DRAFT_NOT_FOUND"
        )


class DraftImageNotFoundError(NotFoundError):
    """Draft image not found."""

    def __init__(self, image_id: str):
        super().__init__(
            resource="Draft image",
            identifier=image_id,
            code="DRAFT_IMAGE_NOT_FOUND"
        )


class InvalidReferenceError(ValidationError):
    """A referenced row exists but does not belong to the claimed owner."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="INVALID_REFERENCE",
            message=message,
            details=details
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid draft status transition."""

    def __init__(self, current_status: str, new_status: str, terminal_status: str = "created"):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition from {current_status} to {new_status}",
            details={
                "current_status": current_status,
                "new_status": new_status,
                "reason": f"{terminal_status} is terminal and only reachable through promotion"
            }
        )
